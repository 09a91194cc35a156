"""Operator prompts used during selection, disambiguation and confirmation."""

from collections.abc import Collection, Sequence
from typing import Protocol

import click

from azpim.errors import CancelledByUser
from azpim.models import ActiveRole, RoleIdentity, Subscription

BACK_ANSWERS = ("", "q", "back")


class Prompter(Protocol):
    """Interactive decisions the engine delegates to the operator."""

    async def select_subset(self, message: str, candidates: Sequence[RoleIdentity]) -> list[str]:
        """Return the ids of the chosen candidates (possibly none)."""
        ...

    async def select_subscription(
        self,
        message: str,
        subscriptions: Sequence[Subscription],
        favorite_ids: Collection[str],
    ) -> Subscription | None:
        """Return the chosen subscription, or None to go back."""
        ...

    async def prompt_duration(self, message: str, default: int, minimum: int, maximum: int) -> int: ...

    async def prompt_text(self, message: str, default: str | None = None, min_length: int = 1) -> str: ...

    async def confirm(self, message: str, default: bool = True) -> bool: ...


def format_candidate(role: RoleIdentity) -> str:
    """One-line label for a role in a selection list."""
    label = f"{role.role_name} @ {role.scope_display_name}"
    if isinstance(role, ActiveRole):
        label += f" [{role.subscription_name}]"
        if role.start_date_time:
            label += f" since {role.start_date_time}"
    return label


def format_subscription(subscription: Subscription, favorite: bool = False) -> str:
    marker = "★ " if favorite else ""
    return f"{marker}{subscription.display_name} ({subscription.subscription_id})"


def parse_selection(answer: str, count: int) -> list[int]:
    """Parse "1,3", "2-4" or "all" into zero-based indexes.

    Raises ValueError on anything out of range or unparsable.
    """
    answer = answer.strip().lower()
    if not answer or answer == "none":
        return []
    if answer == "all":
        return list(range(count))

    indexes: list[int] = []
    for part in answer.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start, end = int(start_s), int(end_s)
            if start > end:
                raise ValueError(f"Invalid range: {part}")
            numbers = range(start, end + 1)
        else:
            numbers = range(int(part), int(part) + 1)
        for n in numbers:
            if n < 1 or n > count:
                raise ValueError(f"Choice out of range: {n}")
            if n - 1 not in indexes:
                indexes.append(n - 1)
    return indexes


class ClickPrompter:
    """Prompter that reads answers from the terminal with click."""

    async def select_subset(self, message: str, candidates: Sequence[RoleIdentity]) -> list[str]:
        click.echo(click.style(message, fg="cyan"), err=True)
        for i, role in enumerate(candidates, start=1):
            click.echo(f"  {i}) {format_candidate(role)}", err=True)

        while True:
            try:
                answer = click.prompt(
                    "Select (e.g. 1,3 or 2-4, 'all', 'none')",
                    default="none",
                    err=True,
                )
            except click.Abort as e:
                raise CancelledByUser() from e
            try:
                indexes = parse_selection(answer, len(candidates))
            except ValueError as e:
                click.echo(click.style(str(e), fg="red"), err=True)
                continue
            return [candidates[i].id for i in indexes]

    async def select_subscription(
        self,
        message: str,
        subscriptions: Sequence[Subscription],
        favorite_ids: Collection[str],
    ) -> Subscription | None:
        favorites = {i.lower() for i in favorite_ids}
        click.echo(click.style(message, fg="cyan"), err=True)
        for i, sub in enumerate(subscriptions, start=1):
            favorite = sub.subscription_id.lower() in favorites
            click.echo(f"  {i}) {format_subscription(sub, favorite)}", err=True)

        while True:
            try:
                answer = click.prompt("Subscription number ('q' to go back)", default="q", err=True)
            except click.Abort as e:
                raise CancelledByUser() from e
            answer = answer.strip().lower()
            if answer in BACK_ANSWERS:
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(subscriptions):
                return subscriptions[int(answer) - 1]
            click.echo(click.style(f"Choose a number between 1 and {len(subscriptions)}.", fg="red"), err=True)

    async def prompt_duration(self, message: str, default: int, minimum: int, maximum: int) -> int:
        try:
            return click.prompt(
                click.style(message, fg="cyan"),
                default=default,
                type=click.IntRange(minimum, maximum),
                err=True,
            )
        except click.Abort as e:
            raise CancelledByUser() from e

    async def prompt_text(self, message: str, default: str | None = None, min_length: int = 1) -> str:
        while True:
            try:
                answer = click.prompt(click.style(message, fg="cyan"), default=default, err=True)
            except click.Abort as e:
                raise CancelledByUser() from e
            answer = answer.strip()
            if len(answer) >= min_length:
                return answer
            click.echo(click.style(f"Please enter at least {min_length} character(s).", fg="red"), err=True)

    async def confirm(self, message: str, default: bool = True) -> bool:
        try:
            return click.confirm(click.style(message, fg="yellow"), default=default, err=True)
        except click.Abort as e:
            raise CancelledByUser() from e
