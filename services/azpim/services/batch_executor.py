"""Sequential execution of activation/deactivation requests.

A batch either previews (dry run), is cancelled as a whole at the
confirmation prompt, or runs every target in order. A failing target is
recorded and the loop moves on; the caller decides what a partial failure
means.
"""

import asyncio
from collections.abc import Sequence

from azpim.errors import CancelledByUser, ConfigError, classify_error
from azpim.logging_config import get_logger
from azpim.models import (
    ActivationRequest,
    BatchResult,
    BatchResultItem,
    Command,
    DeactivationRequest,
    OptionSet,
    ResolvedTarget,
)
from azpim.platform.base import AuthorizationService
from azpim.prompter import Prompter

logger = get_logger(__name__)


def cancelled_item(target: ResolvedTarget) -> BatchResultItem:
    return BatchResultItem(
        target_id=target.id,
        role_name=target.role_name,
        scope_display_name=target.scope_display_name,
        success=False,
        error=CancelledByUser().message,
        error_type=CancelledByUser.error_type,
    )


class BatchExecutor:
    """Runs one command over a list of resolved targets."""

    def __init__(self, service: AuthorizationService, principal_id: str) -> None:
        self.service = service
        self.principal_id = principal_id

    async def _submit(
        self, command: Command, target: ResolvedTarget, options: OptionSet
    ) -> str | None:
        """Submit one request. Returns the platform status, if any."""
        if command == "activate":
            response = await self.service.activate(
                ActivationRequest(
                    principal_id=self.principal_id,
                    role_definition_id=target.role_definition_id,
                    role_eligibility_schedule_id=target.role_eligibility_schedule_id or target.id,
                    role_name=target.label,
                    scope=target.scope,
                    justification=options.justification or "",
                    duration_hours=options.duration_hours or 0,
                )
            )
            return response.status

        await self.service.deactivate(
            DeactivationRequest(
                principal_id=self.principal_id,
                role_definition_id=target.role_definition_id,
                linked_role_eligibility_schedule_id=target.linked_role_eligibility_schedule_id or "",
                scope=target.scope,
                subscription_id=target.subscription_id,
                role_name=target.label,
            )
        )
        return None

    async def run(
        self,
        command: Command,
        targets: Sequence[ResolvedTarget],
        options: OptionSet,
        *,
        dry_run: bool = False,
        yes: bool = False,
        prompter: Prompter | None = None,
        cancel_event: asyncio.Event | None = None,
        subscription_id: str | None = None,
        subscription_name: str | None = None,
    ) -> BatchResult:
        result = BatchResult(
            command=command,
            subscription_id=subscription_id,
            subscription_name=subscription_name,
            requested_role_names=list(options.role_names or []),
            resolved_targets=list(targets),
            duration_hours=options.duration_hours if command == "activate" else None,
            justification=options.justification or "",
            dry_run=dry_run,
        )

        if dry_run:
            logger.info("Dry run, no requests submitted", command=command, targets=len(targets))
            return result

        if not yes:
            if prompter is None:
                raise ConfigError("Confirmation required: pass --yes to run without prompting")
            confirmed = await prompter.confirm(f"Confirm {command} of {len(targets)} role(s)?")
            if not confirmed:
                logger.warning("Batch cancelled at confirmation", command=command)
                result.cancelled = True
                result.results = [cancelled_item(t) for t in targets]
                return result

        items: list[BatchResultItem] = []
        for index, target in enumerate(targets):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Batch interrupted, remaining targets cancelled",
                    command=command,
                    remaining=len(targets) - index,
                )
                result.cancelled = True
                items.extend(cancelled_item(t) for t in targets[index:])
                break

            try:
                status = await self._submit(command, target, options)
            except Exception as e:
                error = classify_error(e)
                logger.error(
                    "Request failed",
                    command=command,
                    role=target.label,
                    error_type=error.error_type,
                    status_code=error.status_code,
                    code=error.code,
                )
                items.append(
                    BatchResultItem(
                        target_id=target.id,
                        role_name=target.role_name,
                        scope_display_name=target.scope_display_name,
                        success=False,
                        error=error.message,
                        error_type=error.error_type,
                    )
                )
                continue

            logger.info("Request succeeded", command=command, role=target.label, status=status)
            items.append(
                BatchResultItem(
                    target_id=target.id,
                    role_name=target.role_name,
                    scope_display_name=target.scope_display_name,
                    success=True,
                    status=status,
                )
            )

        result.results = items
        return result
