"""Command-line interface for azpim.

    azpim activate   [--subscription-id ID --role-name NAME ...]
    azpim deactivate [--role-name NAME ...]
    azpim preset     list | show | add | remove | set-default
    azpim favorites  list | add | remove | clear | import | export
    azpim cache      status | refresh | clear
"""

import asyncio
import signal
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any

import click
from click.core import ParameterSource

from azpim import __version__
from azpim.cli.render import echo_json, render_batch, render_error
from azpim.config import settings
from azpim.context import AuthContext
from azpim.errors import AzPimError, ConfigError, NotFoundError, PlatformError
from azpim.logging_config import configure_logging, get_logger
from azpim.models import Command, FavoritesDocument, OptionSet, PresetEntry
from azpim.platform.arm import ArmAuthorizationService
from azpim.platform.azure_cli import load_session
from azpim.prompter import ClickPrompter
from azpim.services import favorites as fav
from azpim.services import presets as preset_store
from azpim.services.option_resolver import OptionSource, OptionsInput, OptionValue, resolve_options
from azpim.services.pim_flows import (
    activate_interactive,
    activate_once,
    deactivate_interactive,
    deactivate_once,
)
from azpim.services.subscription_cache import SubscriptionCache, format_cache_age
from azpim.store import JsonFileStore

logger = get_logger(__name__)

OUTPUT_CHOICE = click.Choice(["text", "json"])


@asynccontextmanager
async def open_context() -> AsyncIterator[AuthContext]:
    """Sign in through the Azure CLI and bind the collaborators to the user."""
    session = await load_session()
    async with ArmAuthorizationService(session.access_token) as service:
        yield AuthContext(
            user_id=session.user_id,
            user_principal_name=session.user_principal_name,
            service=service,
            store=JsonFileStore(),
        )


@contextmanager
def interrupt_sets(event: asyncio.Event) -> Iterator[None]:
    """Route Ctrl+C to ``event``; a second Ctrl+C interrupts immediately."""

    def _handler(signum: int, frame: Any) -> None:
        if event.is_set():
            raise KeyboardInterrupt
        event.set()
        click.echo(
            "\nInterrupt received: finishing the current request. Press Ctrl+C again to abort.",
            err=True,
        )

    installed = True
    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread
        installed = False
        logger.debug("SIGINT handler not installed")

    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGINT, previous)


def run_command(ctx: click.Context, output: str, main: Callable[[], Awaitable[int]]) -> None:
    """Run an async command body and map errors to exit code 1."""
    try:
        code = asyncio.run(main())
    except (AzPimError, PlatformError) as e:
        logger.debug("Command failed", error_type=type(e).__name__, error=e.message)
        render_error(e.message, output)
        ctx.exit(1)
    ctx.exit(code)


def _option(ctx: click.Context, name: str, value: Any) -> OptionValue[Any]:
    """Tag a parameter with whether the operator typed it."""
    if ctx.get_parameter_source(name) == ParameterSource.COMMANDLINE:
        return OptionValue(value=value, source=OptionSource.EXPLICIT)
    return OptionValue(value=None, source=OptionSource.DEFAULT)


def _options_input(ctx: click.Context, params: dict[str, Any]) -> OptionsInput:
    return OptionsInput(
        subscription_id=_option(ctx, "subscription_id", params.get("subscription_id")),
        role_names=_option(ctx, "role_names", list(params.get("role_names") or [])),
        duration_hours=_option(ctx, "duration_hours", params.get("duration_hours")),
        justification=_option(ctx, "justification", params.get("justification")),
        allow_multiple=_option(ctx, "allow_multiple", params.get("allow_multiple")),
        preset_name=_option(ctx, "preset", params.get("preset")),
    )


ONE_SHOT_PARAMS = ("subscription_id", "role_names", "preset", "dry_run")


def _wants_one_shot(ctx: click.Context) -> bool:
    """True once any targeting flag is typed; otherwise prompt for everything."""
    return any(
        ctx.get_parameter_source(name) == ParameterSource.COMMANDLINE for name in ONE_SHOT_PARAMS
    )


def output_options(f: Callable[..., Any]) -> Callable[..., Any]:
    f = click.option(
        "--quiet", is_flag=True, help="Suppress non-essential output (recommended with --output json)"
    )(f)
    f = click.option("--output", type=OUTPUT_CHOICE, default="text", show_default=True, help="Output format")(f)
    return f


def pim_options(command: Command) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Options shared by activate and deactivate."""

    def decorator(f: Callable[..., Any]) -> Callable[..., Any]:
        f = output_options(f)
        f = click.option(
            "--dry-run", is_flag=True, help=f"Resolve targets without submitting {command} requests"
        )(f)
        f = click.option(
            "--allow-multiple", is_flag=True, help=f"Allow {command} of every match for a role name"
        )(f)
        f = click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")(f)
        f = click.option(
            "--no-interactive",
            "non_interactive",
            is_flag=True,
            help="Do not prompt; require flags to be unambiguous",
        )(f)
        f = click.option(
            "--preset", help="Use a saved preset (fills defaults; flags still override)"
        )(f)
        f = click.option("--justification", help=f"Justification for {command}")(f)
        f = click.option(
            "--role-name",
            "role_names",
            multiple=True,
            help="Role name to match (case-insensitive). Can be repeated.",
        )(f)
        return f

    return decorator


@click.group()
@click.version_option(version=__version__, prog_name="azpim")
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Set log level (overrides config file)",
)
def cli(debug: bool, log_level: str | None) -> None:
    """azpim - activate and deactivate Azure PIM roles from the command line.

    Sign in with 'az login' first; azpim reuses that session.
    """
    level = "DEBUG" if debug else (log_level or settings.log_level)
    configure_logging(json_logs=settings.json_logs, log_level=level)


async def _execute(
    command: Command,
    ctx: click.Context,
    params: dict[str, Any],
) -> int:
    options_input = _options_input(ctx, params)
    prompter = None if params["non_interactive"] else ClickPrompter()
    cancel_event = asyncio.Event()

    async with open_context() as auth:
        loaded = await preset_store.load_presets(auth.store, auth.user_id)
        options: OptionSet = resolve_options(
            command,
            options_input,
            loaded.data,
            preset_store.TemplateContext(
                user_id=auth.user_id, user_principal_name=auth.user_principal_name
            ),
            location=loaded.location,
        )

        with interrupt_sets(cancel_event):
            if prompter is not None and not _wants_one_shot(ctx):
                interactive = activate_interactive if command == "activate" else deactivate_interactive
                result = await interactive(
                    auth,
                    options,
                    prompter=prompter,
                    yes=params["yes"],
                    cancel_event=cancel_event,
                )
            else:
                flow = activate_once if command == "activate" else deactivate_once
                result = await flow(
                    auth,
                    options,
                    dry_run=params["dry_run"],
                    non_interactive=params["non_interactive"],
                    yes=params["yes"],
                    prompter=prompter,
                    cancel_event=cancel_event,
                )

    render_batch(result, params["output"], params["quiet"] or params["output"] == "json")
    return 1 if result.fail_count else 0


@cli.command()
@click.option("--subscription-id", help="Azure subscription ID")
@click.option(
    "--duration-hours",
    type=click.IntRange(settings.min_duration_hours, settings.max_duration_hours),
    help=f"Duration hours ({settings.min_duration_hours}-{settings.max_duration_hours})",
)
@pim_options("activate")
@click.pass_context
def activate(ctx: click.Context, **params: Any) -> None:
    """Activate eligible roles in one subscription.

    Without --subscription-id, --role-name, --preset or --dry-run, prompts for
    the subscription, roles, duration and justification.
    """
    run_command(ctx, params["output"], lambda: _execute("activate", ctx, params))


@cli.command()
@click.option("--subscription-id", help="Azure subscription ID (if omitted, searches all subscriptions)")
@pim_options("deactivate")
@click.pass_context
def deactivate(ctx: click.Context, **params: Any) -> None:
    """Deactivate active roles.

    Without targeting flags, prompts for the subscription and roles.
    """
    run_command(ctx, params["output"], lambda: _execute("deactivate", ctx, params))


# --- presets ---


@cli.group()
def preset() -> None:
    """Manage presets."""


@preset.command("list")
@output_options
@click.pass_context
def preset_list(ctx: click.Context, output: str, quiet: bool) -> None:
    """List available presets."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await preset_store.load_presets(auth.store, auth.user_id)
        names = preset_store.list_preset_names(loaded.data)
        defaults = loaded.data.defaults

        if output == "json":
            echo_json(
                {
                    "ok": True,
                    "filePath": loaded.location,
                    "defaults": defaults.to_json_dict(),
                    "presets": names,
                }
            )
            return 0

        if not quiet:
            click.echo(f"Presets file: {loaded.location}")
        if not names:
            click.echo("No presets found.")
            return 0
        for name in names:
            tags = []
            if defaults.activate_preset_name == name:
                tags.append("default:activate")
            if defaults.deactivate_preset_name == name:
                tags.append("default:deactivate")
            suffix = f" ({', '.join(tags)})" if tags else ""
            click.echo(f"{name}{suffix}")
        return 0

    run_command(ctx, output, _main)


@preset.command("show")
@click.argument("name")
@output_options
@click.pass_context
def preset_show(ctx: click.Context, name: str, output: str, quiet: bool) -> None:
    """Show one preset."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await preset_store.load_presets(auth.store, auth.user_id)
        entry = preset_store.require_preset(loaded.data, name, loaded.location)

        if output == "json":
            echo_json(
                {"ok": True, "filePath": loaded.location, "name": name, "preset": entry.to_json_dict()}
            )
            return 0

        click.echo(click.style(name, bold=True))
        if entry.description:
            click.echo(f"  {entry.description}")
        for command in ("activate", "deactivate"):
            block = entry.block(command)
            if block is None:
                continue
            click.echo(f"  {command}:")
            for key, value in block.to_json_dict().items():
                click.echo(f"    {key}: {value}")
        return 0

    run_command(ctx, output, _main)


@preset.command("add")
@click.argument("name")
@click.option("--description", help="Preset description")
@click.option(
    "--command",
    "commands",
    type=click.Choice(["activate", "deactivate"]),
    multiple=True,
    help="Command block(s) to define (default: both)",
)
@click.option("--subscription-id", help="Subscription ID to store")
@click.option("--role-name", "role_names", multiple=True, help="Role name to store. Can be repeated.")
@click.option("--duration-hours", type=click.IntRange(settings.min_duration_hours, settings.max_duration_hours))
@click.option("--justification", help="Justification template, e.g. 'Ops ${date}'")
@click.option("--allow-multiple/--no-allow-multiple", default=None)
@output_options
@click.pass_context
def preset_add(
    ctx: click.Context,
    name: str,
    description: str | None,
    commands: tuple[str, ...],
    subscription_id: str | None,
    role_names: tuple[str, ...],
    duration_hours: int | None,
    justification: str | None,
    allow_multiple: bool | None,
    output: str,
    quiet: bool,
) -> None:
    """Create or replace a preset from flags."""

    async def _main() -> int:
        block_values = {
            "subscription_id": subscription_id,
            "role_names": list(role_names) or None,
            "justification": justification,
            "allow_multiple": allow_multiple,
        }
        selected = set(commands or ("activate", "deactivate"))
        entry = PresetEntry(
            description=description,
            activate=OptionSet(**block_values, duration_hours=duration_hours) if "activate" in selected else None,
            deactivate=OptionSet(**block_values) if "deactivate" in selected else None,
        )
        async with open_context() as auth:
            loaded = await preset_store.load_presets(auth.store, auth.user_id)
            updated = preset_store.upsert_preset(loaded.data, name, entry)
            await preset_store.save_presets(auth.store, auth.user_id, updated)

        if output == "json":
            echo_json({"ok": True, "filePath": loaded.location, "name": name})
        else:
            click.echo(click.style(f"Preset saved: {name}", fg="green"))
        return 0

    run_command(ctx, output, _main)


@preset.command("remove")
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")
@output_options
@click.pass_context
def preset_remove(ctx: click.Context, name: str, yes: bool, output: str, quiet: bool) -> None:
    """Remove a preset."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await preset_store.load_presets(auth.store, auth.user_id)
            if preset_store.get_preset(loaded.data, name) is None:
                raise NotFoundError(f'Preset not found: "{name}"')
            if not yes and not await ClickPrompter().confirm(f'Remove preset "{name}"?', default=False):
                raise ConfigError("Aborted.")
            await preset_store.save_presets(
                auth.store, auth.user_id, preset_store.remove_preset(loaded.data, name)
            )

        if output == "json":
            echo_json({"ok": True, "filePath": loaded.location, "name": name})
        else:
            click.echo(click.style(f"Preset removed: {name}", fg="green"))
        return 0

    run_command(ctx, output, _main)


@preset.command("set-default")
@click.argument("command", type=click.Choice(["activate", "deactivate"]))
@click.argument("name", required=False)
@click.option("--clear", is_flag=True, help="Clear the default instead of setting it")
@output_options
@click.pass_context
def preset_set_default(
    ctx: click.Context, command: Command, name: str | None, clear: bool, output: str, quiet: bool
) -> None:
    """Set (or --clear) the default preset for a command."""

    async def _main() -> int:
        if not clear and not name:
            raise ConfigError("Provide a preset name or --clear")
        async with open_context() as auth:
            loaded = await preset_store.load_presets(auth.store, auth.user_id)
            if not clear:
                preset_store.require_preset(loaded.data, name or "", loaded.location)
            updated = preset_store.set_default_preset_name(
                loaded.data, command, None if clear else name
            )
            await preset_store.save_presets(auth.store, auth.user_id, updated)

        if output == "json":
            echo_json({"ok": True, "command": command, "preset": None if clear else name})
        elif clear:
            click.echo(f"Default {command} preset cleared.")
        else:
            click.echo(click.style(f"Default {command} preset: {name}", fg="green"))
        return 0

    run_command(ctx, output, _main)


# --- favorites ---


@cli.group()
def favorites() -> None:
    """Manage favorite subscriptions."""


@favorites.command("list")
@output_options
@click.pass_context
def favorites_list(ctx: click.Context, output: str, quiet: bool) -> None:
    """List favorite subscriptions."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await fav.load_favorites(auth.store, auth.user_id)
            names = await SubscriptionCache(auth.store, auth.service).get_subscription_name_map(
                auth.user_id
            )

        ids = loaded.data.subscription_ids
        if output == "json":
            echo_json(
                {
                    "ok": True,
                    "filePath": loaded.location,
                    "favorites": [
                        {"subscriptionId": i, "displayName": names.get(i)} for i in ids
                    ],
                }
            )
            return 0

        if not ids:
            click.echo("No favorites yet.")
            return 0
        for subscription_id in ids:
            name = names.get(subscription_id)
            click.echo(f"★ {name} ({subscription_id})" if name else f"★ {subscription_id}")
        return 0

    run_command(ctx, output, _main)


def _favorites_edit(
    ctx: click.Context,
    output: str,
    edit: Callable[[FavoritesDocument], FavoritesDocument],
    message: str,
) -> None:
    async def _main() -> int:
        async with open_context() as auth:
            loaded = await fav.load_favorites(auth.store, auth.user_id)
            updated = edit(loaded.data)
            await fav.save_favorites(auth.store, auth.user_id, updated)

        if output == "json":
            echo_json({"ok": True, "filePath": loaded.location, "subscriptionIds": updated.subscription_ids})
        else:
            click.echo(message)
        return 0

    run_command(ctx, output, _main)


@favorites.command("add")
@click.argument("subscription_id")
@output_options
@click.pass_context
def favorites_add(ctx: click.Context, subscription_id: str, output: str, quiet: bool) -> None:
    """Add a subscription to favorites."""
    _favorites_edit(
        ctx,
        output,
        lambda data: fav.add_favorite(data, subscription_id),
        f"Added to favorites: {subscription_id.strip().lower()}",
    )


@favorites.command("remove")
@click.argument("subscription_id")
@output_options
@click.pass_context
def favorites_remove(ctx: click.Context, subscription_id: str, output: str, quiet: bool) -> None:
    """Remove a subscription from favorites."""
    _favorites_edit(
        ctx,
        output,
        lambda data: fav.remove_favorite(data, subscription_id),
        f"Removed from favorites: {subscription_id.strip().lower()}",
    )


@favorites.command("clear")
@output_options
@click.pass_context
def favorites_clear(ctx: click.Context, output: str, quiet: bool) -> None:
    """Remove every favorite."""
    _favorites_edit(ctx, output, fav.clear_favorites, "Favorites cleared.")


@favorites.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--replace", is_flag=True, help="Replace existing favorites instead of merging")
@output_options
@click.pass_context
def favorites_import(ctx: click.Context, path: Path, replace: bool, output: str, quiet: bool) -> None:
    """Import favorites from an exported file."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await fav.load_favorites(auth.store, auth.user_id)
            updated, counts = fav.import_favorites(loaded.data, path, merge=not replace)
            await fav.save_favorites(auth.store, auth.user_id, updated)

        if output == "json":
            echo_json(
                {"ok": True, "imported": counts.imported, "skipped": counts.skipped, "total": counts.total}
            )
        else:
            click.echo(f"Imported {counts.imported} favorite(s), skipped {counts.skipped} duplicate(s).")
        return 0

    run_command(ctx, output, _main)


@favorites.command("export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@output_options
@click.pass_context
def favorites_export(ctx: click.Context, path: Path, output: str, quiet: bool) -> None:
    """Export favorites (with cached subscription names) to a file."""

    async def _main() -> int:
        async with open_context() as auth:
            loaded = await fav.load_favorites(auth.store, auth.user_id)
            names = await SubscriptionCache(auth.store, auth.service).get_subscription_name_map(
                auth.user_id
            )
        fav.export_favorites(loaded.data, path, names)

        if output == "json":
            echo_json({"ok": True, "path": str(path), "count": len(loaded.data.subscription_ids)})
        else:
            click.echo(f"Exported {len(loaded.data.subscription_ids)} favorite(s) to {path}")
        return 0

    run_command(ctx, output, _main)


# --- subscription cache ---


@cli.group()
def cache() -> None:
    """Inspect and manage the subscription cache."""


@cache.command("status")
@output_options
@click.pass_context
def cache_status(ctx: click.Context, output: str, quiet: bool) -> None:
    """Show cache age and size."""

    async def _main() -> int:
        async with open_context() as auth:
            subscription_cache = SubscriptionCache(auth.store, auth.service)
            document = await subscription_cache.load(auth.user_id)
            age = await subscription_cache.get_cache_age(auth.user_id)

        fresh = document is not None and subscription_cache.is_fresh(document)
        count = len(document.subscriptions) if document is not None else 0
        if output == "json":
            echo_json(
                {
                    "ok": True,
                    "exists": document is not None,
                    "fresh": fresh,
                    "ageSeconds": int(age.total_seconds()) if age is not None else None,
                    "subscriptions": count,
                }
            )
            return 0

        state = "fresh" if fresh else "stale"
        if document is None:
            click.echo("Subscription cache: no cache")
        else:
            click.echo(f"Subscription cache: {count} subscription(s), updated {format_cache_age(age)} ({state})")
        return 0

    run_command(ctx, output, _main)


@cache.command("refresh")
@output_options
@click.pass_context
def cache_refresh(ctx: click.Context, output: str, quiet: bool) -> None:
    """Fetch subscriptions now and rewrite the cache."""

    async def _main() -> int:
        async with open_context() as auth:
            cached = await SubscriptionCache(auth.store, auth.service).get(
                auth.user_id, force_refresh=True
            )

        if output == "json":
            echo_json({"ok": True, "subscriptions": len(cached.subscriptions)})
        else:
            click.echo(f"Subscription cache refreshed: {len(cached.subscriptions)} subscription(s).")
        return 0

    run_command(ctx, output, _main)


@cache.command("clear")
@output_options
@click.pass_context
def cache_clear(ctx: click.Context, output: str, quiet: bool) -> None:
    """Delete the cache."""

    async def _main() -> int:
        async with open_context() as auth:
            deleted = await SubscriptionCache(auth.store, auth.service).invalidate(auth.user_id)

        if output == "json":
            echo_json({"ok": True, "deleted": deleted})
        else:
            click.echo("Subscription cache cleared." if deleted else "No subscription cache to clear.")
        return 0

    run_command(ctx, output, _main)


def main() -> None:
    cli()
