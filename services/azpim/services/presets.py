"""Presets document: load, save and edit.

A preset is a named bundle of option defaults for activate and/or
deactivate. Edits return a new document; callers save the whole document.
"""

import re
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from azpim.errors import ConfigError, NotFoundError
from azpim.logging_config import get_logger
from azpim.models import Command, PresetDefaults, PresetEntry, PresetsDocument, utc_now
from azpim.store import PersistentStore, presets_key

logger = get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r"\$\{([^}]+)\}")
PRESET_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]{0,63}$")


@dataclass
class LoadedPresets:
    """A presets document and where it lives."""

    location: str
    data: PresetsDocument
    exists: bool


@dataclass
class TemplateContext:
    """Values available to justification templates."""

    user_id: str | None = None
    user_principal_name: str | None = None
    now: datetime | None = None


def parse_presets(raw: object) -> PresetsDocument:
    """Validate a raw presets document."""
    if not isinstance(raw, dict):
        raise ConfigError("Invalid presets file: expected a JSON object at the top level")
    if raw.get("version") != 1:
        raise ConfigError(
            f"Invalid presets file: expected {{ version: 1 }}, got version={raw.get('version')}"
        )
    try:
        return PresetsDocument.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        raise ConfigError(f"Invalid presets file: {where}: {first['msg']}") from e


async def load_presets(store: PersistentStore, user_id: str) -> LoadedPresets:
    """Load a user's presets; a missing file yields an empty document."""
    key = presets_key(user_id)
    location = store.describe(key)
    result = await store.get(key)
    if not result.exists:
        logger.debug("Presets file does not exist, using empty presets", location=location)
        return LoadedPresets(location=location, data=PresetsDocument(), exists=False)

    data = parse_presets(result.data)
    logger.debug(
        "Presets file loaded",
        location=location,
        preset_count=len(data.presets),
        default_activate=data.defaults.activate_preset_name,
        default_deactivate=data.defaults.deactivate_preset_name,
    )
    return LoadedPresets(location=location, data=data, exists=True)


async def save_presets(store: PersistentStore, user_id: str, data: PresetsDocument) -> None:
    await store.put(presets_key(user_id), data.to_json_dict())
    logger.debug("Presets file saved", preset_count=len(data.presets))


def list_preset_names(data: PresetsDocument) -> list[str]:
    return sorted(data.presets, key=str.lower)


def get_preset(data: PresetsDocument, name: str) -> PresetEntry | None:
    return data.presets.get(name)


def require_preset(data: PresetsDocument, name: str, location: str | None = None) -> PresetEntry:
    """Return a preset or raise NotFoundError listing what exists."""
    entry = get_preset(data, name)
    if entry is None:
        names = list_preset_names(data)
        available = ", ".join(names) if names else "(none)"
        where = f" Presets file: {location}." if location else ""
        raise NotFoundError(f'Preset not found: "{name}".{where} Available: {available}')
    return entry


def validate_preset_name(name: str) -> str:
    name = name.strip()
    if not PRESET_NAME_PATTERN.match(name):
        raise ConfigError(
            "Preset names use letters, numbers and . _ - (max 64 chars) "
            "and must start with a letter or number"
        )
    return name


def upsert_preset(data: PresetsDocument, name: str, entry: PresetEntry) -> PresetsDocument:
    presets = dict(data.presets)
    presets[validate_preset_name(name)] = entry
    return data.model_copy(update={"presets": presets})


def remove_preset(data: PresetsDocument, name: str) -> PresetsDocument:
    """Remove a preset and clear any default that pointed at it."""
    presets = {k: v for k, v in data.presets.items() if k != name}
    next_doc = data.model_copy(update={"presets": presets})
    if data.defaults.activate_preset_name == name:
        next_doc = set_default_preset_name(next_doc, "activate", None)
    if data.defaults.deactivate_preset_name == name:
        next_doc = set_default_preset_name(next_doc, "deactivate", None)
    return next_doc


def set_default_preset_name(
    data: PresetsDocument, command: Command, name: str | None
) -> PresetsDocument:
    field_name = "activate_preset_name" if command == "activate" else "deactivate_preset_name"
    defaults: PresetDefaults = data.defaults.model_copy(update={field_name: name})
    return data.model_copy(update={"defaults": defaults})


def expand_template(template: str, context: TemplateContext | None = None) -> str:
    """Expand ${date}, ${datetime}, ${userId} and ${userPrincipalName}.

    Unknown tokens are left untouched.
    """
    context = context or TemplateContext()
    now = context.now or utc_now()
    datetime_text = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    values = {
        "date": now.date().isoformat(),
        "datetime": datetime_text,
        "userId": context.user_id or "",
        "userPrincipalName": context.user_principal_name or "",
    }

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1).strip()
        return values.get(key, match.group(0))

    return TEMPLATE_PATTERN.sub(_replace, template)
