"""Activate and deactivate flows.

Glue between option resolution, the platform fetches, target resolution
and the batch executor. Callers resolve options first and pass the result.

The one-shot flows take everything from flags. The interactive flows pick
the subscription (favorites first) and roles through the prompter, then
feed the same executor.
"""

import asyncio
from collections.abc import Collection, Sequence

from azpim.config import settings
from azpim.context import AuthContext
from azpim.errors import CancelledByUser, ConfigError, NoTargetsError, NotFoundError
from azpim.logging_config import get_logger
from azpim.models import ActiveRole, BatchResult, OptionSet, ResolvedTarget, RoleIdentity, Subscription
from azpim.prompter import Prompter
from azpim.services import favorites as fav
from azpim.services.batch_executor import BatchExecutor
from azpim.services.subscription_cache import SubscriptionCache
from azpim.services.target_resolver import ResolutionContext, resolve_targets

MIN_JUSTIFICATION_LENGTH = 5

logger = get_logger(__name__)


def check_non_interactive(non_interactive: bool, yes: bool, dry_run: bool) -> None:
    if non_interactive and not yes and not dry_run:
        raise ConfigError("--no-interactive requires --yes (or use --dry-run)")


def _require_role_names(options: OptionSet) -> list[str]:
    role_names = options.role_names or []
    if not role_names:
        raise ConfigError("Missing required flag: --role-name (can be repeated)")
    return role_names


def _unnamed(subscription_id: str) -> str:
    return f"{subscription_id} (name unavailable)"


async def activate_once(
    ctx: AuthContext,
    options: OptionSet,
    *,
    dry_run: bool = False,
    non_interactive: bool = False,
    yes: bool = False,
    prompter: Prompter | None = None,
    cancel_event: asyncio.Event | None = None,
    cache: SubscriptionCache | None = None,
) -> BatchResult:
    """Activate the requested eligible roles in one subscription."""
    subscription_id = (options.subscription_id or "").strip()
    if not subscription_id:
        raise ConfigError("Missing required flag: --subscription-id")
    role_names = _require_role_names(options)
    check_non_interactive(non_interactive, yes, dry_run)

    cache = cache or SubscriptionCache(ctx.store, ctx.service)
    validation = await cache.validate_subscription_id(ctx.user_id, subscription_id)
    if validation.subscription is not None:
        subscription_name = validation.subscription.display_name
    else:
        subscription_name = _unnamed(subscription_id)

    logger.info("Resolving eligible roles", subscription_id=subscription_id)
    eligible = await ctx.service.fetch_eligible_roles(subscription_id, ctx.user_id)

    targets = await resolve_targets(
        role_names,
        eligible,
        allow_multiple=bool(options.allow_multiple),
        non_interactive=non_interactive,
        prompter=None if non_interactive else prompter,
        context=ResolutionContext(command="activate", subscription_name=subscription_name),
    )

    executor = BatchExecutor(ctx.service, ctx.user_id)
    return await executor.run(
        "activate",
        targets,
        options,
        dry_run=dry_run,
        yes=yes,
        prompter=prompter,
        cancel_event=cancel_event,
        subscription_id=subscription_id,
        subscription_name=subscription_name,
    )


async def collect_active_roles(
    ctx: AuthContext,
    subscription_id: str | None,
    cache: SubscriptionCache,
) -> tuple[list[ActiveRole], str | None]:
    """Fetch active roles in one subscription, or in every known one.

    Returns the roles and the subscription name when a single one was searched.
    """
    if subscription_id:
        validation = await cache.validate_subscription_id(ctx.user_id, subscription_id)
        name = (
            validation.subscription.display_name
            if validation.subscription is not None
            else _unnamed(subscription_id)
        )
        roles = await ctx.service.fetch_active_roles(subscription_id, ctx.user_id, name)
        return roles, name

    cached = await cache.get(ctx.user_id)
    if not cached.subscriptions:
        raise NotFoundError("No subscriptions found. Use --subscription-id to specify a subscription.")

    logger.info("Searching all subscriptions for active roles", count=len(cached.subscriptions))
    roles: list[ActiveRole] = []
    for sub in cached.subscriptions:
        roles.extend(
            await ctx.service.fetch_active_roles(sub.subscription_id, ctx.user_id, sub.display_name)
        )
    return roles, None


async def deactivate_once(
    ctx: AuthContext,
    options: OptionSet,
    *,
    dry_run: bool = False,
    non_interactive: bool = False,
    yes: bool = False,
    prompter: Prompter | None = None,
    cancel_event: asyncio.Event | None = None,
    cache: SubscriptionCache | None = None,
) -> BatchResult:
    """Deactivate the requested active roles, searching all subscriptions if none is given."""
    role_names = _require_role_names(options)
    check_non_interactive(non_interactive, yes, dry_run)

    subscription_id = (options.subscription_id or "").strip() or None
    cache = cache or SubscriptionCache(ctx.store, ctx.service)
    active, subscription_name = await collect_active_roles(ctx, subscription_id, cache)
    if not active:
        raise NotFoundError("No active roles found for deactivation.")

    targets = await resolve_targets(
        role_names,
        active,
        allow_multiple=bool(options.allow_multiple),
        non_interactive=non_interactive,
        prompter=None if non_interactive else prompter,
        context=ResolutionContext(command="deactivate", subscription_name=subscription_name),
    )

    executor = BatchExecutor(ctx.service, ctx.user_id)
    return await executor.run(
        "deactivate",
        targets,
        options,
        dry_run=dry_run,
        yes=yes,
        prompter=prompter,
        cancel_event=cancel_event,
        subscription_id=subscription_id,
        subscription_name=subscription_name,
    )


def order_subscriptions(
    subscriptions: Sequence[Subscription], favorite_ids: Collection[str]
) -> list[Subscription]:
    """Favorites first, then the rest; each group sorted by display name."""
    favorites = {i.lower() for i in favorite_ids}

    def sort_key(sub: Subscription) -> tuple[bool, str]:
        return sub.subscription_id.lower() not in favorites, sub.display_name.casefold()

    return sorted(subscriptions, key=sort_key)


async def choose_subscription(ctx: AuthContext, prompter: Prompter, cache: SubscriptionCache) -> Subscription:
    """Pick a subscription from the cached listing and offer to toggle it as a favorite.

    With no subscriptions visible the operator may type an id instead.
    Raises CancelledByUser when the operator backs out.
    """
    loaded = await fav.load_favorites(ctx.store, ctx.user_id)
    cached = await cache.get(ctx.user_id)

    if not cached.subscriptions:
        logger.warning("No subscriptions found, asking for an id")
        manual = await prompter.prompt_text("No subscriptions found. Subscription ID:")
        return Subscription(subscription_id=manual, display_name=manual)

    favorite_ids = loaded.data.subscription_ids
    selected = await prompter.select_subscription(
        "Select a subscription:",
        order_subscriptions(cached.subscriptions, favorite_ids),
        favorite_ids,
    )
    if selected is None:
        raise CancelledByUser("No subscription selected.")

    name = selected.display_name
    if fav.is_favorite(loaded.data, selected.subscription_id):
        question = f'Remove "{name}" from favorites?'
    else:
        question = f'Add "{name}" to favorites?'
    if await prompter.confirm(question, default=False):
        updated, added = fav.toggle_favorite(loaded.data, selected.subscription_id)
        await fav.save_favorites(ctx.store, ctx.user_id, updated)
        logger.info(
            "Favorite added" if added else "Favorite removed",
            subscription_id=selected.subscription_id,
        )
    return selected


async def pick_targets(
    prompter: Prompter,
    roles: Sequence[RoleIdentity],
    context: ResolutionContext,
) -> list[ResolvedTarget]:
    """Let the operator choose from every listed role."""
    chosen = set(await prompter.select_subset(f"Select role(s) to {context.command}:", roles))
    targets = [ResolvedTarget.from_role(role) for role in roles if role.id in chosen]
    if not targets:
        raise NoTargetsError(f"No {context.role_kind} roles selected to {context.command}.")
    return targets


def _with_targets(options: OptionSet, targets: Sequence[ResolvedTarget], **updates: object) -> OptionSet:
    names = list(dict.fromkeys(t.role_name for t in targets))
    return options.model_copy(update={"role_names": names, **updates})


async def activate_interactive(
    ctx: AuthContext,
    options: OptionSet,
    *,
    prompter: Prompter,
    yes: bool = False,
    cancel_event: asyncio.Event | None = None,
    cache: SubscriptionCache | None = None,
) -> BatchResult:
    """Choose subscription, roles, duration and justification at the terminal, then activate.

    Resolved options only supply the defaults offered at each prompt.
    """
    cache = cache or SubscriptionCache(ctx.store, ctx.service)
    subscription = await choose_subscription(ctx, prompter, cache)

    logger.info("Listing eligible roles", subscription_id=subscription.subscription_id)
    eligible = await ctx.service.fetch_eligible_roles(subscription.subscription_id, ctx.user_id)
    if not eligible:
        raise NotFoundError("No eligible roles found for the selected subscription.")

    targets = await pick_targets(
        prompter, eligible, ResolutionContext(command="activate", subscription_name=subscription.display_name)
    )
    low, high = settings.min_duration_hours, settings.max_duration_hours
    duration_hours = await prompter.prompt_duration(
        f"Duration (hours, {low}-{high}):",
        options.duration_hours or settings.default_duration_hours,
        low,
        high,
    )
    justification = await prompter.prompt_text(
        "Justification for activation:",
        default=options.justification,
        min_length=MIN_JUSTIFICATION_LENGTH,
    )

    executor = BatchExecutor(ctx.service, ctx.user_id)
    return await executor.run(
        "activate",
        targets,
        _with_targets(
            options,
            targets,
            subscription_id=subscription.subscription_id,
            duration_hours=duration_hours,
            justification=justification,
        ),
        yes=yes,
        prompter=prompter,
        cancel_event=cancel_event,
        subscription_id=subscription.subscription_id,
        subscription_name=subscription.display_name,
    )


async def deactivate_interactive(
    ctx: AuthContext,
    options: OptionSet,
    *,
    prompter: Prompter,
    yes: bool = False,
    cancel_event: asyncio.Event | None = None,
    cache: SubscriptionCache | None = None,
) -> BatchResult:
    """Choose a subscription and its active roles at the terminal, then deactivate."""
    cache = cache or SubscriptionCache(ctx.store, ctx.service)
    subscription = await choose_subscription(ctx, prompter, cache)

    active = await ctx.service.fetch_active_roles(
        subscription.subscription_id, ctx.user_id, subscription.display_name
    )
    if not active:
        raise NotFoundError("No active roles found for deactivation.")

    targets = await pick_targets(
        prompter, active, ResolutionContext(command="deactivate", subscription_name=subscription.display_name)
    )

    executor = BatchExecutor(ctx.service, ctx.user_id)
    return await executor.run(
        "deactivate",
        targets,
        _with_targets(options, targets, subscription_id=subscription.subscription_id),
        yes=yes,
        prompter=prompter,
        cancel_event=cancel_event,
        subscription_id=subscription.subscription_id,
        subscription_name=subscription.display_name,
    )
