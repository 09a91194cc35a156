"""Text and JSON rendering for CLI results."""

import json
from typing import Any

import click

from azpim.errors import CancelledByUser, DurationPolicyError, is_auth_error
from azpim.models import BatchResult

PAST_TENSE = {"activate": "activated", "deactivate": "deactivated"}


def echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2))


def render_error(message: str, output: str) -> None:
    if output == "json":
        echo_json({"ok": False, "error": message})
        return

    click.echo(click.style(f"An error occurred: {message}", fg="red"), err=True)
    if is_auth_error(message):
        click.echo(
            "Tip: Make sure Azure CLI is installed and you are logged in with 'az login'.",
            err=True,
        )


def render_summary(result: BatchResult) -> None:
    title = "Activation Summary" if result.command == "activate" else "Deactivation Summary"
    rows = []
    if result.subscription_name:
        rows.append(("Subscription", result.subscription_name))
    rows.append(("Role(s)", ", ".join(t.label for t in result.resolved_targets)))
    if result.duration_hours is not None:
        rows.append(("Duration", f"{result.duration_hours} hour(s)"))
    rows.append(("Justification", result.justification))
    rows.append(("Dry-run", "Yes" if result.dry_run else "No"))

    click.echo(click.style(title, bold=True))
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        click.echo(f"  {label.ljust(width)}  {value}")


def render_batch(result: BatchResult, output: str, quiet: bool) -> None:
    if output == "json":
        echo_json(result.to_json_dict())
        return

    if not quiet:
        render_summary(result)

    if result.dry_run:
        click.echo(
            click.style(
                f"Dry-run complete. No {result.command} requests were submitted.", fg="green"
            )
        )
        return

    items = result.results or []
    if result.cancelled and all(item.error_type == CancelledByUser.error_type for item in items):
        click.echo(click.style(f"{result.command.capitalize()} cancelled by user.", fg="yellow"))
        return

    for item in items:
        label = f"{item.role_name} @ {item.scope_display_name}"
        if item.success:
            status = f" ({item.status})" if item.status else ""
            click.echo(click.style(f"  ✔ {label}{status}", fg="green"))
            continue
        click.echo(click.style(f"  ✘ {label}: {item.error}", fg="red"))
        if item.error_type == DurationPolicyError.error_type:
            click.echo(
                "    The requested duration exceeds the PIM policy for this role. "
                "Try a shorter --duration-hours."
            )

    verb = PAST_TENSE[result.command]
    click.echo(f"{result.success_count} role(s) {verb}, {result.fail_count} failed.")
