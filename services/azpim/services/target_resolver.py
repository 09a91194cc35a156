"""Turn requested role names into a deduplicated list of targets.

Every requested name is matched before anything is submitted, so a typo in
the third name aborts the command without touching the first two.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from azpim.errors import AmbiguousError, NoTargetsError, NotFoundError
from azpim.logging_config import get_logger
from azpim.models import Command, ResolvedTarget, RoleIdentity
from azpim.prompter import Prompter

logger = get_logger(__name__)


@dataclass
class ResolutionContext:
    """Describes where candidates came from, for messages."""

    command: Command
    subscription_name: str | None = None

    @property
    def role_kind(self) -> str:
        return "eligible" if self.command == "activate" else "active"

    @property
    def where(self) -> str:
        if self.subscription_name:
            return f' in subscription "{self.subscription_name}"'
        return ""


def normalize_role_name(name: str) -> str:
    return name.strip().lower()


def group_by_name(candidates: Sequence[RoleIdentity]) -> dict[str, list[RoleIdentity]]:
    """Group candidates by normalized role name, keeping fetch order."""
    groups: dict[str, list[RoleIdentity]] = {}
    for role in candidates:
        groups.setdefault(normalize_role_name(role.role_name), []).append(role)
    return groups


async def resolve_targets(
    requested_names: Sequence[str],
    candidates: Sequence[RoleIdentity],
    *,
    allow_multiple: bool,
    non_interactive: bool,
    prompter: Prompter | None,
    context: ResolutionContext,
) -> list[ResolvedTarget]:
    """Resolve role names against candidates.

    One match is taken as is. Several matches are all taken with
    ``allow_multiple``, rejected with AmbiguousError when non-interactive
    (or when there is no prompter), and otherwise narrowed by the prompter.
    Targets are deduplicated by id; the first occurrence keeps its place.
    """
    names = [name.strip() for name in requested_names if name and name.strip()]
    groups = group_by_name(candidates)
    kind = context.role_kind

    logger.debug(
        "Matching requested role names",
        requested_role_names=names,
        candidate_count=len(candidates),
        unique_role_names=list(groups),
    )

    picked: list[RoleIdentity] = []
    for name in names:
        matches = groups.get(normalize_role_name(name), [])
        logger.debug("Role name matched", role_name=name, match_count=len(matches))

        if not matches:
            raise NotFoundError(
                f'No {kind} roles found matching --role-name="{name}"{context.where}'
            )

        if len(matches) == 1 or allow_multiple:
            picked.extend(matches)
            continue

        if non_interactive or prompter is None:
            raise AmbiguousError(
                f'Ambiguous --role-name="{name}" matched {len(matches)} {kind} roles. '
                f"Use --allow-multiple to {context.command} all matches, "
                "or run without --no-interactive to select interactively.",
                match_count=len(matches),
            )

        selected_ids = set(
            await prompter.select_subset(
                f'Multiple {kind} roles match "{name}". Select which ones to {context.command}:',
                matches,
            )
        )
        picked.extend(role for role in matches if role.id in selected_ids)

    unique: dict[str, ResolvedTarget] = {}
    for role in picked:
        unique.setdefault(role.id, ResolvedTarget.from_role(role))

    if not unique:
        raise NoTargetsError(f"No {kind} roles selected to {context.command}.")
    return list(unique.values())
