"""Favorite subscriptions.

Ids are stored lower-cased and unique. Export writes a standalone file with
display names; import accepts that file or a bare ``{"subscriptionIds": [...]}``.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from azpim.errors import ConfigError
from azpim.logging_config import get_logger
from azpim.models import FavoritesDocument, utc_now
from azpim.store import PersistentStore, favorites_key

logger = get_logger(__name__)


@dataclass
class LoadedFavorites:
    location: str
    data: FavoritesDocument
    exists: bool


@dataclass
class ImportResult:
    """Counts reported after an import."""

    imported: int
    skipped: int
    total: int


def _normalize(subscription_id: str) -> str:
    return subscription_id.strip().lower()


async def load_favorites(store: PersistentStore, user_id: str) -> LoadedFavorites:
    key = favorites_key(user_id)
    result = await store.get(key)
    raw = result.data if result.exists and isinstance(result.data, dict) else {}
    data = FavoritesDocument(subscription_ids=raw.get("subscriptionIds", []))
    return LoadedFavorites(location=store.describe(key), data=data, exists=result.exists)


async def save_favorites(store: PersistentStore, user_id: str, data: FavoritesDocument) -> None:
    await store.put(favorites_key(user_id), data.to_json_dict())
    logger.debug("Favorites saved", count=len(data.subscription_ids))


def is_favorite(data: FavoritesDocument, subscription_id: str) -> bool:
    return _normalize(subscription_id) in data.subscription_ids


def add_favorite(data: FavoritesDocument, subscription_id: str) -> FavoritesDocument:
    if is_favorite(data, subscription_id):
        return data
    return FavoritesDocument(subscription_ids=[*data.subscription_ids, _normalize(subscription_id)])


def remove_favorite(data: FavoritesDocument, subscription_id: str) -> FavoritesDocument:
    normalized = _normalize(subscription_id)
    return FavoritesDocument(subscription_ids=[i for i in data.subscription_ids if i != normalized])


def toggle_favorite(data: FavoritesDocument, subscription_id: str) -> tuple[FavoritesDocument, bool]:
    """Flip membership. Returns the new document and whether the id was added."""
    if is_favorite(data, subscription_id):
        return remove_favorite(data, subscription_id), False
    return add_favorite(data, subscription_id), True


def clear_favorites(data: FavoritesDocument) -> FavoritesDocument:
    return FavoritesDocument()


def build_export(data: FavoritesDocument, subscription_names: dict[str, str] | None = None) -> dict[str, Any]:
    names = subscription_names or {}
    favorites = []
    for subscription_id in data.subscription_ids:
        item = {"subscriptionId": subscription_id}
        if subscription_id in names:
            item["displayName"] = names[subscription_id]
        favorites.append(item)
    return {
        "version": 1,
        "exportedAt": utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "favorites": favorites,
    }


def export_favorites(
    data: FavoritesDocument,
    output_path: Path,
    subscription_names: dict[str, str] | None = None,
) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(build_export(data, subscription_names), indent=2)
    output_path.write_text(f"{payload}\n", encoding="utf-8")
    logger.info("Favorites exported", path=str(output_path), count=len(data.subscription_ids))


def merge_import(
    current: FavoritesDocument, raw: Any, merge: bool = True, source: str = "import file"
) -> tuple[FavoritesDocument, ImportResult]:
    """Merge ids from an export or simple-format document into ``current``."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid favorites import file at {source}")

    if isinstance(raw.get("favorites"), list):
        incoming = [
            _normalize(item["subscriptionId"])
            for item in raw["favorites"]
            if isinstance(item, dict) and isinstance(item.get("subscriptionId"), str)
        ]
    elif isinstance(raw.get("subscriptionIds"), list):
        incoming = [
            _normalize(item) for item in raw["subscriptionIds"] if isinstance(item, str) and item.strip()
        ]
    else:
        raise ConfigError(f"Invalid favorites import file format at {source}")

    ids = list(current.subscription_ids) if merge else []
    seen = set(ids)
    imported = skipped = 0
    for subscription_id in incoming:
        if not subscription_id or subscription_id in seen:
            skipped += 1
            continue
        ids.append(subscription_id)
        seen.add(subscription_id)
        imported += 1

    return FavoritesDocument(subscription_ids=ids), ImportResult(imported, skipped, len(incoming))


def import_favorites(
    current: FavoritesDocument, input_path: Path, merge: bool = True
) -> tuple[FavoritesDocument, ImportResult]:
    try:
        raw = json.loads(input_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid favorites import file at {input_path}") from e
    return merge_import(current, raw, merge=merge, source=str(input_path))
