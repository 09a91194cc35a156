"""Azure Resource Manager client for PIM role schedules.

Talks to the Microsoft.Authorization schedule APIs over httpx:

    GET  /subscriptions
    GET  {scope}/providers/Microsoft.Authorization/roleEligibilitySchedules?$filter=asTarget()
    GET  {scope}/providers/Microsoft.Authorization/roleAssignmentSchedules?$filter=asTarget()
    PUT  {scope}/providers/Microsoft.Authorization/roleAssignmentScheduleRequests/{uuid}

Errors come back as ``{"error": {"code": ..., "message": ...}}`` and are
raised as PlatformError. No retries are attempted.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx

from azpim.config import settings
from azpim.errors import AUTHORIZATION_FAILED, PlatformError
from azpim.logging_config import get_logger
from azpim.models import (
    ActivationRequest,
    ActivationResponse,
    ActiveRole,
    DeactivationRequest,
    EligibleRole,
    Subscription,
    utc_now,
)
from azpim.platform.base import scope_display_name

logger = get_logger(__name__)

PIM_FILTER_AS_TARGET = "asTarget()"
AUTHORIZATION_PROVIDER = "providers/Microsoft.Authorization"
UNKNOWN_ROLE = "Unknown Role"


def _error_from_response(response: httpx.Response) -> PlatformError:
    """Build a PlatformError from an ARM error body."""
    code: str | None = None
    message = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code")
        message = body["error"].get("message") or message
    return PlatformError(response.status_code, code, message)


def _is_forbidden(error: PlatformError) -> bool:
    return error.status_code == 403 or error.code == AUTHORIZATION_FAILED


def _linked_schedule_id(schedule_id: str, scope: str) -> str:
    """Expand a bare eligibility schedule name into its full resource id."""
    if "/" in schedule_id:
        return schedule_id
    return f"{scope}/{AUTHORIZATION_PROVIDER}/roleEligibilitySchedules/{schedule_id}"


class ArmAuthorizationService:
    """AuthorizationService implementation backed by ARM REST calls."""

    def __init__(
        self,
        access_token: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.arm_base_url,
            timeout=settings.request_timeout_seconds,
        )
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def __aenter__(self) -> ArmAuthorizationService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(
                method, url, params=params, json=json, headers=self._headers
            )
        except httpx.HTTPError as e:
            raise PlatformError(None, type(e).__name__, str(e) or type(e).__name__) from e

        if resp.is_error:
            raise _error_from_response(resp)
        if not resp.content:
            return {}
        return resp.json()

    async def _list(self, url: str, params: dict[str, str]) -> list[dict[str, Any]]:
        """GET a collection, following nextLink pages."""
        items: list[dict[str, Any]] = []
        page = await self._request("GET", url, params=params)
        items.extend(page.get("value", []))
        while page.get("nextLink"):
            # nextLink already carries the query string
            page = await self._request("GET", page["nextLink"])
            items.extend(page.get("value", []))
        return items

    async def fetch_subscriptions(self, principal_id: str) -> list[Subscription]:
        logger.debug("Fetching subscriptions", principal_id=principal_id)
        raw = await self._list(
            "/subscriptions", {"api-version": settings.subscriptions_api_version}
        )
        subscriptions = [
            Subscription(
                subscription_id=item.get("subscriptionId") or "",
                display_name=item.get("displayName") or "N/A",
                tenant_id=item.get("tenantId") or "",
            )
            for item in raw
        ]
        logger.debug("Subscriptions fetched", count=len(subscriptions))
        return subscriptions

    async def fetch_eligible_roles(
        self, subscription_id: str, principal_id: str
    ) -> list[EligibleRole]:
        scope = f"/subscriptions/{subscription_id}"
        logger.debug("Querying eligible role schedules", scope=scope, filter=PIM_FILTER_AS_TARGET)
        try:
            raw = await self._list(
                f"{scope}/{AUTHORIZATION_PROVIDER}/roleEligibilitySchedules",
                {"api-version": settings.arm_api_version, "$filter": PIM_FILTER_AS_TARGET},
            )
        except PlatformError as e:
            if _is_forbidden(e):
                logger.warning(
                    "Insufficient permissions to list eligible roles",
                    subscription_id=subscription_id,
                )
                return []
            raise

        roles: list[EligibleRole] = []
        for item in raw:
            props = item.get("properties", {})
            if not item.get("id") or not props.get("roleDefinitionId"):
                continue
            role_scope = props.get("scope") or scope
            roles.append(
                EligibleRole(
                    id=item["id"],
                    role_eligibility_schedule_id=item["id"],
                    role_definition_id=props["roleDefinitionId"],
                    role_name=_role_display_name(props),
                    scope=role_scope,
                    scope_display_name=scope_display_name(role_scope),
                )
            )
        logger.debug("Eligible roles fetched", count=len(roles), subscription_id=subscription_id)
        return roles

    async def fetch_active_roles(
        self,
        subscription_id: str,
        principal_id: str,
        subscription_name: str | None = None,
    ) -> list[ActiveRole]:
        scope = f"/subscriptions/{subscription_id}"
        logger.debug("Querying active role schedules", scope=scope, filter=PIM_FILTER_AS_TARGET)
        try:
            raw = await self._list(
                f"{scope}/{AUTHORIZATION_PROVIDER}/roleAssignmentSchedules",
                {"api-version": settings.arm_api_version, "$filter": PIM_FILTER_AS_TARGET},
            )
        except PlatformError as e:
            if _is_forbidden(e):
                logger.warning(
                    "Insufficient permissions to list active roles",
                    subscription_id=subscription_id,
                )
                return []
            raise

        roles: list[ActiveRole] = []
        for item in raw:
            props = item.get("properties", {})
            if not item.get("id") or not props.get("roleDefinitionId"):
                continue
            # Permanent assignments are not PIM activations and cannot be deactivated here
            if props.get("assignmentType") != "Activated":
                continue
            role_scope = props.get("scope") or scope
            roles.append(
                ActiveRole(
                    id=item["id"],
                    role_definition_id=props["roleDefinitionId"],
                    role_name=_role_display_name(props),
                    scope=role_scope,
                    scope_display_name=scope_display_name(role_scope),
                    linked_role_eligibility_schedule_id=props.get(
                        "linkedRoleEligibilityScheduleId"
                    )
                    or "",
                    start_date_time=props.get("startDateTime") or "",
                    end_date_time=props.get("endDateTime") or "",
                    subscription_id=subscription_id,
                    subscription_name=subscription_name or subscription_id,
                )
            )
        logger.debug("Active roles fetched", count=len(roles), subscription_id=subscription_id)
        return roles

    async def activate(self, request: ActivationRequest) -> ActivationResponse:
        request_name = str(uuid.uuid4())
        duration = f"PT{request.duration_hours}H"
        body = {
            "properties": {
                "principalId": request.principal_id,
                "roleDefinitionId": request.role_definition_id,
                "requestType": "SelfActivate",
                "linkedRoleEligibilityScheduleId": _linked_schedule_id(
                    request.role_eligibility_schedule_id, request.scope
                ),
                "scheduleInfo": {
                    "startDateTime": utc_now().isoformat(),
                    "expiration": {"type": "AfterDuration", "duration": duration},
                },
                "justification": request.justification,
            }
        }

        logger.debug(
            "Submitting activation request",
            scope=request.scope,
            role_name=request.role_name,
            request_name=request_name,
            duration=duration,
        )
        data = await self._request(
            "PUT",
            f"{request.scope}/{AUTHORIZATION_PROVIDER}/roleAssignmentScheduleRequests/{request_name}",
            params={"api-version": settings.arm_api_version},
            json=body,
        )
        status = data.get("properties", {}).get("status")
        logger.info("Activation request submitted", role_name=request.role_name, status=status)
        return ActivationResponse(status=status)

    async def deactivate(self, request: DeactivationRequest) -> None:
        request_name = str(uuid.uuid4())
        body = {
            "properties": {
                "principalId": request.principal_id,
                "roleDefinitionId": request.role_definition_id,
                "requestType": "SelfDeactivate",
                "linkedRoleEligibilityScheduleId": request.linked_role_eligibility_schedule_id,
            }
        }

        logger.debug(
            "Submitting deactivation request",
            scope=request.scope,
            role_name=request.role_name,
            request_name=request_name,
        )
        await self._request(
            "PUT",
            f"{request.scope}/{AUTHORIZATION_PROVIDER}/roleAssignmentScheduleRequests/{request_name}",
            params={"api-version": settings.arm_api_version},
            json=body,
        )
        logger.info("Deactivation request submitted", role_name=request.role_name)


def _role_display_name(props: dict[str, Any]) -> str:
    expanded = props.get("expandedProperties") or {}
    role_definition = expanded.get("roleDefinition") or {}
    return role_definition.get("displayName") or UNKNOWN_ROLE
