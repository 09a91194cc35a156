"""Authorization platform contract.

The engine only talks to the platform through this protocol. Failures are
raised as PlatformError(status_code, code, message).
"""

from typing import Protocol

from azpim.models import (
    ActivationRequest,
    ActivationResponse,
    ActiveRole,
    DeactivationRequest,
    EligibleRole,
    Subscription,
)


class AuthorizationService(Protocol):
    """Read and mutate PIM state for one principal."""

    async def fetch_subscriptions(self, principal_id: str) -> list[Subscription]: ...

    async def fetch_eligible_roles(
        self, subscription_id: str, principal_id: str
    ) -> list[EligibleRole]: ...

    async def fetch_active_roles(
        self,
        subscription_id: str,
        principal_id: str,
        subscription_name: str | None = None,
    ) -> list[ActiveRole]: ...

    async def activate(self, request: ActivationRequest) -> ActivationResponse: ...

    async def deactivate(self, request: DeactivationRequest) -> None: ...


def scope_display_name(scope: str) -> str:
    """Human-readable label for an ARM scope path."""
    if not scope:
        return "Unknown Scope"

    parts = scope.split("/")

    if "/managementGroups/" in scope:
        idx = parts.index("managementGroups")
        return f"Management Group: {parts[idx + 1]}"

    if "/resourceGroups/" in scope:
        rg_idx = parts.index("resourceGroups")
        sub_idx = parts.index("subscriptions")
        return f"Resource Group: {parts[rg_idx + 1]} (Subscription: {parts[sub_idx + 1]})"

    if "/subscriptions/" in scope:
        idx = parts.index("subscriptions")
        return f"Subscription: {parts[idx + 1]}"

    return scope
