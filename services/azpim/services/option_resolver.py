"""Four-tier option precedence for activate and deactivate.

For every option the first tier that supplies a value wins:

1. a value the operator typed on the command line,
2. the selected preset's block for the command,
3. the base defaults block for the command in the presets file,
4. a built-in constant.

Pure: no I/O and no clock reads outside the template context.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

from azpim.config import (
    DEFAULT_JUSTIFICATION_ACTIVATE,
    DEFAULT_JUSTIFICATION_DEACTIVATE,
    settings,
)
from azpim.errors import ConfigError
from azpim.logging_config import get_logger
from azpim.models import Command, OptionSet, PresetEntry, PresetsDocument
from azpim.services.presets import TemplateContext, expand_template, require_preset

logger = get_logger(__name__)

T = TypeVar("T")

OPTION_FIELDS = ("subscription_id", "role_names", "duration_hours", "justification", "allow_multiple")


class OptionSource(StrEnum):
    """Where an option value came from."""

    EXPLICIT = "explicit"
    DEFAULT = "default"


@dataclass
class OptionValue(Generic[T]):
    """A raw option value tagged with its provenance."""

    value: T | None = None
    source: OptionSource = OptionSource.DEFAULT

    @property
    def is_explicit(self) -> bool:
        return self.source == OptionSource.EXPLICIT and self.value is not None


def explicit(value: T) -> OptionValue[T]:
    return OptionValue(value=value, source=OptionSource.EXPLICIT)


@dataclass
class OptionsInput:
    """Raw command options with per-field provenance."""

    subscription_id: OptionValue[str] = field(default_factory=OptionValue)
    role_names: OptionValue[list[str]] = field(default_factory=OptionValue)
    duration_hours: OptionValue[int] = field(default_factory=OptionValue)
    justification: OptionValue[str] = field(default_factory=OptionValue)
    allow_multiple: OptionValue[bool] = field(default_factory=OptionValue)
    preset_name: OptionValue[str] = field(default_factory=OptionValue)

    def explicit_values(self) -> OptionSet:
        """The options the operator actually typed."""
        values: dict[str, Any] = {}
        for name in OPTION_FIELDS:
            option: OptionValue[Any] = getattr(self, name)
            if option.is_explicit:
                values[name] = option.value
        return OptionSet(**values)


def builtin_defaults(command: Command) -> OptionSet:
    """Tier 4: the built-in constants."""
    justification = (
        DEFAULT_JUSTIFICATION_ACTIVATE if command == "activate" else DEFAULT_JUSTIFICATION_DEACTIVATE
    )
    return OptionSet(
        subscription_id=None,
        role_names=[],
        duration_hours=settings.default_duration_hours,
        justification=justification,
        allow_multiple=False,
    )


def _select_preset(
    command: Command,
    options_input: OptionsInput,
    presets: PresetsDocument,
    location: str | None,
) -> tuple[str | None, PresetEntry | None]:
    """Pick the preset that supplies tier 2, if any."""
    if options_input.preset_name.is_explicit:
        name = (options_input.preset_name.value or "").strip()
        entry = require_preset(presets, name, location)
        if entry.block(command) is None:
            article = "an" if command == "activate" else "a"
            raise ConfigError(f'Preset "{name}" does not define {article} {command} block')
        return name, entry

    # The registered default only fills gaps the operator left open. Deactivate
    # uses the same rule: a typed --role-name alone still lets the default preset
    # narrow the search to its subscription instead of scanning every one.
    fully_specified = (
        options_input.subscription_id.is_explicit and options_input.role_names.is_explicit
    )
    default_name = presets.defaults.preset_name(command)
    if fully_specified or not default_name:
        return None, None

    entry = presets.presets.get(default_name)
    if entry is None:
        logger.warning("Default preset not found, ignoring", command=command, preset=default_name)
        return None, None
    return default_name, entry


def _first_set(tiers: list[OptionSet | None], name: str) -> Any:
    for tier in tiers:
        if tier is None:
            continue
        value = getattr(tier, name)
        if value is not None:
            return value
    return None


def validate_duration_hours(hours: int) -> int:
    low, high = settings.min_duration_hours, settings.max_duration_hours
    if not low <= hours <= high:
        raise ConfigError(f"Invalid duration: {hours}. Duration must be between {low} and {high} hours.")
    return hours


def resolve_options(
    command: Command,
    options_input: OptionsInput,
    presets: PresetsDocument,
    template_context: TemplateContext | None = None,
    location: str | None = None,
) -> OptionSet:
    """Merge CLI options, preset, base defaults and constants into one OptionSet.

    Raises NotFoundError for an unknown explicit preset and ConfigError when
    it lacks a block for ``command`` or the duration is out of range.
    """
    preset_name, preset = _select_preset(command, options_input, presets, location)
    tiers = [
        options_input.explicit_values(),
        preset.block(command) if preset is not None else None,
        presets.defaults.base(command),
        builtin_defaults(command),
    ]

    merged = {name: _first_set(tiers, name) for name in OPTION_FIELDS}
    merged["justification"] = expand_template(merged["justification"], template_context)
    if command == "activate":
        validate_duration_hours(merged["duration_hours"])
    else:
        merged["duration_hours"] = None

    resolved = OptionSet(**merged)
    logger.debug(
        "Options resolved",
        command=command,
        preset=preset_name,
        subscription_id=resolved.subscription_id,
        role_names=resolved.role_names,
        duration_hours=resolved.duration_hours,
        allow_multiple=resolved.allow_multiple,
    )
    return resolved
