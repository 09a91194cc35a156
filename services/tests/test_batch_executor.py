"""Tests for sequential batch execution."""

import asyncio

import pytest
from conftest import FakeAuthorizationService, ScriptedPrompter, forbidden, make_active, make_eligible

from azpim.errors import ConfigError, PlatformError, TransportError
from azpim.models import OptionSet, ResolvedTarget
from azpim.services.batch_executor import BatchExecutor

OPTIONS = OptionSet(role_names=["Reader"], duration_hours=2, justification="Deploy")
TARGETS = [ResolvedTarget.from_role(make_eligible(f"e{i}", "Reader")) for i in range(1, 4)]


def policy_error() -> PlatformError:
    return PlatformError(
        400,
        "RoleAssignmentRequestPolicyValidationFailed",
        "The following policy rules failed: [\"ExpirationRule\"]",
    )


class TestDryRun:
    """Test previews."""

    @pytest.mark.asyncio
    async def test_dry_run_makes_no_calls(self):
        """Test a dry run returns a preview without touching the platform."""
        service = FakeAuthorizationService()
        prompter = ScriptedPrompter()

        result = await BatchExecutor(service, "uid").run(
            "activate", TARGETS, OPTIONS, dry_run=True, prompter=prompter
        )

        assert result.dry_run is True
        assert result.results is None
        assert len(result.resolved_targets) == 3
        assert service.calls == []
        assert prompter.confirm_prompts == []


class TestConfirmation:
    """Test the confirmation step."""

    @pytest.mark.asyncio
    async def test_declined(self):
        """Test declining records every target as cancelled and submits nothing."""
        service = FakeAuthorizationService()
        prompter = ScriptedPrompter(confirm=False)

        result = await BatchExecutor(service, "uid").run("activate", TARGETS, OPTIONS, prompter=prompter)

        assert result.cancelled is True
        assert service.mutating_calls() == []
        assert [r.error for r in result.results] == ["Cancelled"] * 3
        assert {r.error_type for r in result.results} == {"CancelledByUser"}
        assert result.fail_count == 3

    @pytest.mark.asyncio
    async def test_confirm_without_prompter(self):
        """Test confirmation cannot be skipped silently."""
        with pytest.raises(ConfigError):
            await BatchExecutor(FakeAuthorizationService(), "uid").run("activate", TARGETS, OPTIONS)

    @pytest.mark.asyncio
    async def test_yes_skips_prompt(self):
        """Test --yes runs without asking."""
        prompter = ScriptedPrompter(confirm=False)

        result = await BatchExecutor(FakeAuthorizationService(), "uid").run(
            "activate", TARGETS, OPTIONS, yes=True, prompter=prompter
        )

        assert prompter.confirm_prompts == []
        assert result.success_count == 3


class TestExecution:
    """Test per-target execution and error classification."""

    @pytest.mark.asyncio
    async def test_activation_requests(self):
        """Test each target is submitted in order with the resolved options."""
        service = FakeAuthorizationService()

        result = await BatchExecutor(service, "uid").run("activate", TARGETS, OPTIONS, yes=True)

        requests = [call[1] for call in service.mutating_calls()]
        assert [r.role_eligibility_schedule_id for r in requests] == ["e1", "e2", "e3"]
        assert all(r.duration_hours == 2 and r.justification == "Deploy" for r in requests)
        assert all(r.principal_id == "uid" for r in requests)
        assert [r.status for r in result.results] == ["Provisioned"] * 3

    @pytest.mark.asyncio
    async def test_failures_do_not_abort(self):
        """Test a failing target is recorded and the rest still run."""
        service = FakeAuthorizationService(failures={"e1": forbidden(), "e2": policy_error()})

        result = await BatchExecutor(service, "uid").run("activate", TARGETS, OPTIONS, yes=True)

        assert len(service.mutating_calls()) == 3
        assert [r.success for r in result.results] == [False, False, True]
        assert result.results[0].error_type == "PermissionDenied"
        assert result.results[1].error_type == "DurationPolicyError"
        assert result.success_count == 1
        assert result.fail_count == 2

    @pytest.mark.asyncio
    async def test_unknown_errors_are_transport_errors(self):
        """Test unclassified failures become TransportError."""
        service = FakeAuthorizationService(
            failures={"e1": RuntimeError("connection reset"), "e2": PlatformError(500, "InternalServerError", "boom")}
        )

        result = await BatchExecutor(service, "uid").run("activate", TARGETS, OPTIONS, yes=True)

        assert result.results[0].error_type == "TransportError"
        assert result.results[0].error == "connection reset"
        assert result.results[1].error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_classified_error_passes_through(self):
        """Test an already-classified error keeps its type and message."""
        service = FakeAuthorizationService(failures={"e3": TransportError("socket closed")})

        result = await BatchExecutor(service, "uid").run("activate", TARGETS, OPTIONS, yes=True)

        assert result.results[2].error == "socket closed"
        assert result.results[2].error_type == "TransportError"

    @pytest.mark.asyncio
    async def test_deactivation_requests(self):
        """Test deactivation uses the linked eligibility schedule id."""
        service = FakeAuthorizationService()
        targets = [ResolvedTarget.from_role(make_active("a1", "Owner"))]

        result = await BatchExecutor(service, "uid").run(
            "deactivate", targets, OptionSet(role_names=["Owner"], justification="done"), yes=True
        )

        (name, request), = service.mutating_calls()
        assert name == "deactivate"
        assert request.linked_role_eligibility_schedule_id.endswith("/a1")
        assert result.duration_hours is None
        assert result.success_count == 1


class TestCancellation:
    """Test interruption at iteration boundaries."""

    @pytest.mark.asyncio
    async def test_cancel_event_stops_remaining(self):
        """Test setting the event mid-batch cancels the targets not yet started."""
        cancel = asyncio.Event()
        service = FakeAuthorizationService()
        original = service.activate

        async def activate_then_interrupt(request):
            response = await original(request)
            cancel.set()
            return response

        service.activate = activate_then_interrupt

        result = await BatchExecutor(service, "uid").run(
            "activate", TARGETS, OPTIONS, yes=True, cancel_event=cancel
        )

        assert len(service.mutating_calls()) == 1
        assert result.cancelled is True
        assert [r.success for r in result.results] == [True, False, False]
        assert [r.error_type for r in result.results[1:]] == ["CancelledByUser"] * 2

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        """Test an event set before the loop submits nothing."""
        cancel = asyncio.Event()
        cancel.set()
        service = FakeAuthorizationService()

        result = await BatchExecutor(service, "uid").run(
            "activate", TARGETS, OPTIONS, yes=True, cancel_event=cancel
        )

        assert service.mutating_calls() == []
        assert result.fail_count == 3
