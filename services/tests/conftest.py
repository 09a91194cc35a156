"""Pytest configuration and fixtures."""

from collections.abc import Collection, Sequence
from typing import Any

import pytest

from azpim.context import AuthContext
from azpim.errors import PlatformError
from azpim.models import (
    ActivationRequest,
    ActivationResponse,
    ActiveRole,
    DeactivationRequest,
    EligibleRole,
    RoleIdentity,
    Subscription,
)
from azpim.platform.base import scope_display_name
from azpim.store import MemoryStore

USER_ID = "11111111-2222-3333-4444-555555555555"
USER_UPN = "ops@example.com"
SUB_ID = "00000000-0000-0000-0000-000000000001"
SUB_SCOPE = f"/subscriptions/{SUB_ID}"


def make_eligible(role_id: str, role_name: str, scope: str = SUB_SCOPE) -> EligibleRole:
    """Create an eligible role for tests."""
    return EligibleRole(
        id=role_id,
        role_name=role_name,
        scope=scope,
        scope_display_name=scope_display_name(scope),
        role_definition_id=f"/providers/Microsoft.Authorization/roleDefinitions/{role_name}",
        role_eligibility_schedule_id=role_id,
    )


def make_active(
    role_id: str,
    role_name: str,
    subscription_id: str = SUB_ID,
    subscription_name: str = "Production",
) -> ActiveRole:
    """Create an active role for tests."""
    scope = f"/subscriptions/{subscription_id}"
    return ActiveRole(
        id=role_id,
        role_name=role_name,
        scope=scope,
        scope_display_name=scope_display_name(scope),
        role_definition_id=f"/providers/Microsoft.Authorization/roleDefinitions/{role_name}",
        linked_role_eligibility_schedule_id=f"{scope}/eligibility/{role_id}",
        subscription_id=subscription_id,
        subscription_name=subscription_name,
    )


class FakeAuthorizationService:
    """Scripted AuthorizationService that records every call."""

    def __init__(
        self,
        subscriptions: list[Subscription] | None = None,
        eligible: dict[str, list[EligibleRole]] | None = None,
        active: dict[str, list[ActiveRole]] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.subscriptions = subscriptions or []
        self.eligible = eligible or {}
        self.active = active or {}
        self.failures = failures or {}
        self.calls: list[tuple[str, Any]] = []

    def mutating_calls(self) -> list[tuple[str, Any]]:
        return [c for c in self.calls if c[0] in ("activate", "deactivate")]

    async def fetch_subscriptions(self, principal_id: str) -> list[Subscription]:
        self.calls.append(("fetch_subscriptions", principal_id))
        return list(self.subscriptions)

    async def fetch_eligible_roles(self, subscription_id: str, principal_id: str) -> list[EligibleRole]:
        self.calls.append(("fetch_eligible_roles", subscription_id))
        return list(self.eligible.get(subscription_id, []))

    async def fetch_active_roles(
        self, subscription_id: str, principal_id: str, subscription_name: str | None = None
    ) -> list[ActiveRole]:
        self.calls.append(("fetch_active_roles", subscription_id))
        return list(self.active.get(subscription_id, []))

    async def activate(self, request: ActivationRequest) -> ActivationResponse:
        self.calls.append(("activate", request))
        error = self.failures.get(request.role_eligibility_schedule_id)
        if error is not None:
            raise error
        return ActivationResponse(status="Provisioned")

    async def deactivate(self, request: DeactivationRequest) -> None:
        self.calls.append(("deactivate", request))
        for role_id, error in self.failures.items():
            if request.linked_role_eligibility_schedule_id.endswith(f"/{role_id}"):
                raise error


class ScriptedPrompter:
    """Prompter that replays canned answers and records the prompts.

    ``confirms`` answers confirmations in order; once used up, ``confirm``
    answers the rest. ``subscription`` picks by id, None means "go back".
    """

    def __init__(
        self,
        selections: list[list[str]] | None = None,
        confirm: bool = True,
        confirms: list[bool] | None = None,
        subscription: str | None = None,
        duration: int | None = None,
        texts: list[str] | None = None,
    ) -> None:
        self.selections = list(selections or [])
        self.confirm_answer = confirm
        self.confirms = list(confirms or [])
        self.subscription = subscription
        self.duration = duration
        self.texts = list(texts or [])
        self.select_prompts: list[tuple[str, list[str]]] = []
        self.confirm_prompts: list[str] = []
        self.subscription_prompts: list[list[str]] = []
        self.duration_defaults: list[int] = []
        self.text_prompts: list[tuple[str, str | None]] = []

    async def select_subset(self, message: str, candidates: Sequence[RoleIdentity]) -> list[str]:
        self.select_prompts.append((message, [c.id for c in candidates]))
        return self.selections.pop(0) if self.selections else []

    async def select_subscription(
        self,
        message: str,
        subscriptions: Sequence[Subscription],
        favorite_ids: Collection[str],
    ) -> Subscription | None:
        self.subscription_prompts.append([s.subscription_id for s in subscriptions])
        for sub in subscriptions:
            if sub.subscription_id == self.subscription:
                return sub
        return None

    async def prompt_duration(self, message: str, default: int, minimum: int, maximum: int) -> int:
        self.duration_defaults.append(default)
        return default if self.duration is None else self.duration

    async def prompt_text(self, message: str, default: str | None = None, min_length: int = 1) -> str:
        self.text_prompts.append((message, default))
        if self.texts:
            return self.texts.pop(0)
        return default or ""

    async def confirm(self, message: str, default: bool = True) -> bool:
        self.confirm_prompts.append(message)
        if self.confirms:
            return self.confirms.pop(0)
        return self.confirm_answer


def forbidden() -> PlatformError:
    return PlatformError(403, "AuthorizationFailed", "The client does not have authorization")


@pytest.fixture
def store() -> MemoryStore:
    """Empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def service() -> FakeAuthorizationService:
    """Fake platform with two same-named Reader roles and one Contributor role."""
    return FakeAuthorizationService(
        subscriptions=[
            Subscription(subscription_id=SUB_ID, display_name="Production"),
            Subscription(subscription_id="00000000-0000-0000-0000-000000000002", display_name="Staging"),
        ],
        eligible={
            SUB_ID: [
                make_eligible("e1", "Reader"),
                make_eligible("e2", "Reader", f"{SUB_SCOPE}/resourceGroups/rg-app"),
                make_eligible("e3", "Contributor"),
            ]
        },
    )


@pytest.fixture
def auth_context(service: FakeAuthorizationService, store: MemoryStore) -> AuthContext:
    """AuthContext bound to the fake service and memory store."""
    return AuthContext(
        user_id=USER_ID,
        user_principal_name=USER_UPN,
        service=service,
        store=store,
    )
