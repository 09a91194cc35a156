"""Persistent document store for per-user state.

Presets, favorites and the subscription cache are each a single JSON
document addressed by an opaque key. Every write replaces the whole
document; there is no locking (single desktop user, last writer wins).

Key patterns:
    users/{user_id}/presets.json
    users/{user_id}/favorites.json
    users/{user_id}/subscriptions-cache.json
"""

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from azpim.config import settings
from azpim.errors import ConfigError
from azpim.logging_config import get_logger

logger = get_logger(__name__)

USERS_DIR = "users"
PRESETS_FILE = "presets.json"
FAVORITES_FILE = "favorites.json"
SUBSCRIPTION_CACHE_FILE = "subscriptions-cache.json"


@dataclass
class StoreResult:
    """Result of a store lookup."""

    exists: bool
    data: Any = None


class PersistentStore(Protocol):
    """Async key/value store holding whole JSON documents."""

    async def get(self, key: str) -> StoreResult: ...

    async def put(self, key: str, data: Any) -> None: ...

    async def delete(self, key: str) -> bool: ...

    def describe(self, key: str) -> str: ...


def user_key(user_id: str, file_name: str) -> str:
    """Build the key of a per-user document."""
    return f"{USERS_DIR}/{user_id}/{file_name}"


def presets_key(user_id: str) -> str:
    """Presets key, honouring the AZPIM_PRESETS_PATH override."""
    if settings.presets_path is not None:
        return str(settings.presets_path)
    return user_key(user_id, PRESETS_FILE)


def favorites_key(user_id: str) -> str:
    """Favorites key, honouring the AZPIM_FAVORITES_PATH override."""
    if settings.favorites_path is not None:
        return str(settings.favorites_path)
    return user_key(user_id, FAVORITES_FILE)


def subscription_cache_key(user_id: str) -> str:
    return user_key(user_id, SUBSCRIPTION_CACHE_FILE)


class JsonFileStore:
    """Store backed by JSON files under a base directory.

    Relative keys resolve under ``base_dir``; absolute keys (env overrides)
    are used as-is.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir or settings.config_dir

    def path_for(self, key: str) -> Path:
        return self.base_dir / key

    def describe(self, key: str) -> str:
        return str(self.path_for(key))

    async def get(self, key: str) -> StoreResult:
        path = self.path_for(key)
        logger.debug("Loading JSON file", path=str(path))
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("JSON file does not exist", path=str(path))
            return StoreResult(exists=False)

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON file at {path}") from e
        return StoreResult(exists=True, data=data)

    async def put(self, key: str, data: Any) -> None:
        """Write via a sibling temp file so an interrupted write never truncates the document."""
        path = self.path_for(key)
        logger.debug("Saving JSON file", path=str(path))
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data, indent=2)
        tmp_path = path.with_name(f"{path.name}.tmp")
        tmp_path.write_text(f"{payload}\n", encoding="utf-8")
        os.replace(tmp_path, path)

    async def delete(self, key: str) -> bool:
        """Delete a document. Returns False if it did not exist."""
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted JSON file", path=str(path))
        return True


class MemoryStore:
    """In-process store. Documents are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.documents: dict[str, Any] = copy.deepcopy(initial or {})

    def describe(self, key: str) -> str:
        return f"memory://{key}"

    async def get(self, key: str) -> StoreResult:
        if key not in self.documents:
            return StoreResult(exists=False)
        return StoreResult(exists=True, data=copy.deepcopy(self.documents[key]))

    async def put(self, key: str, data: Any) -> None:
        self.documents[key] = copy.deepcopy(data)

    async def delete(self, key: str) -> bool:
        if key not in self.documents:
            return False
        del self.documents[key]
        return True
