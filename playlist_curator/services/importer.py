from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from playlist_curator.models import (
    Entry,
    ExportDocument,
    ExportItem,
    ImportItem,
    ImportOptions,
    PendingMetadataEdit,
)
from playlist_curator.services.changeset import ImportPlan
from playlist_curator.services.csv_loader import CSVParseError, parse_import_csv
from playlist_curator.services.merge import base_value

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

ID_KEYS = ("itemid", "item_id", "id")
NAME_KEYS = ("name",)
TYPE_KEYS = ("type",)
FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "tags": ("tags",),
    "tagline": ("tagline", "taglines"),
    "sort_name": ("sortname", "sort_name", "forcedsortname"),
    "premiere_date": ("premieredate", "premiere_date", "releasedate", "release_date"),
    "production_year": ("productionyear", "production_year", "releaseyear", "year"),
}


class ImportParseError(Exception):
    pass


def load_import_document(raw: Union[str, bytes], filename: Optional[str] = None) -> Any:
    """Decode an uploaded import file: CSV by extension, JSON otherwise."""
    if filename and filename.lower().endswith(".csv"):
        try:
            if isinstance(raw, bytes):
                return parse_import_csv(csv_bytes=raw)
            return parse_import_csv(csv_text=raw)
        except CSVParseError as exc:
            raise ImportParseError(str(exc)) from exc

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ImportParseError("Import file is not valid UTF-8.") from exc
    if not raw.strip():
        raise ImportParseError("Import file is empty.")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ImportParseError(f"Import file is not valid JSON: {exc.msg} (line {exc.lineno}).") from exc


def _lowered(element: Dict[Any, Any]) -> Dict[str, Any]:
    return {str(key).lower(): value for key, value in element.items()}


def _lookup(lowered: Dict[str, Any], keys: Sequence[str]) -> Tuple[bool, Any]:
    for key in keys:
        if key in lowered:
            return True, lowered[key]
    return False, None


def _normalize_element(element: Any) -> Optional[ImportItem]:
    if isinstance(element, (str, int)) and not isinstance(element, bool):
        item_id = str(element).strip()
        return ImportItem(item_id=item_id) if item_id else None
    if not isinstance(element, dict):
        return None

    lowered = _lowered(element)
    item_id = None
    for key in ID_KEYS:
        value = lowered.get(key)
        if value not in (None, ""):
            item_id = str(value).strip()
            break
    if not item_id:
        return None

    metadata = PendingMetadataEdit()
    for field, keys in FIELD_KEYS.items():
        mentioned, value = _lookup(lowered, keys)
        if not mentioned:
            continue
        if field == "tagline" and isinstance(value, list):
            value = value[0] if value else None
        metadata.set(field, value)

    _, name = _lookup(lowered, NAME_KEYS)
    _, item_type = _lookup(lowered, TYPE_KEYS)
    return ImportItem(
        item_id=item_id,
        name=str(name) if name is not None else None,
        type=str(item_type) if item_type is not None else None,
        metadata=metadata,
    )


def normalize_import(payload: Any) -> List[ImportItem]:
    """
    Accept either a bare list or an object with an ``items`` list.

    Elements without a usable item id are dropped; the import is rejected
    only when nothing usable is left. A metadata key that is present (even
    as null) counts as mentioned, a missing key leaves the field alone.
    """
    if isinstance(payload, dict):
        raw_items = _lowered(payload).get("items")
    else:
        raw_items = payload

    if not isinstance(raw_items, list):
        raise ImportParseError("Import must be a list of items or an object with an 'items' list.")

    items: List[ImportItem] = []
    for index, element in enumerate(raw_items):
        item = _normalize_element(element)
        if item is None:
            logger.debug("Dropping import element %s without an item id", index)
            continue
        items.append(item)

    if not items:
        raise ImportParseError("Import contains no items with an item id.")

    logger.info("Normalized %s of %s import elements", len(items), len(raw_items))
    return items


def build_target_order(entries: Iterable[Entry], import_ids: Sequence[str], remove_extra: bool) -> List[str]:
    """
    Target entry-id order following the import file.

    Occurrences of the same item are handed out first-come-first-served, so
    duplicates keep their relative order. Without ``remove_extra`` every
    entry the import did not claim follows in its original order.
    """
    entries = [entry for entry in entries if entry.entry_id]
    queues: Dict[str, Deque[str]] = {}
    for entry in entries:
        queues.setdefault(entry.item_id, deque()).append(entry.entry_id)

    target: List[str] = []
    for item_id in import_ids:
        queue = queues.get(item_id)
        if queue:
            target.append(queue.popleft())

    if not remove_extra:
        claimed = set(target)
        target.extend(entry.entry_id for entry in entries if entry.entry_id not in claimed)
    return target


def reconcile(entries: Sequence[Entry], items: Sequence[ImportItem], options: ImportOptions) -> ImportPlan:
    import_ids = [item.item_id for item in items]
    present = {entry.item_id for entry in entries}
    wanted = set(import_ids)

    missing_ids = [item_id for item_id in import_ids if item_id not in present] if options.add_missing else []
    extra_entry_ids = (
        [entry.entry_id for entry in entries if entry.item_id not in wanted and entry.entry_id]
        if options.remove_extra
        else []
    )
    target_order = build_target_order(entries, import_ids, options.remove_extra) if options.reorder else None
    metadata_items = [item for item in items if not item.metadata.is_empty] if options.apply_metadata else []

    logger.info(
        "Import plan: %s to add, %s to remove, reorder=%s, %s items with metadata",
        len(missing_ids),
        len(extra_entry_ids),
        options.reorder,
        len(metadata_items),
    )
    return ImportPlan(
        options=options,
        missing_ids=missing_ids,
        extra_entry_ids=extra_entry_ids,
        import_ids=import_ids,
        target_order=target_order,
        metadata_items=metadata_items,
    )


def build_export(
    playlist_id: str,
    playlist_name: str,
    entries: Iterable[Entry],
    include_metadata: bool = False,
) -> ExportDocument:
    items: List[ExportItem] = []
    for entry in entries:
        values: Dict[str, Any] = {
            "item_id": entry.item_id,
            "name": entry.name,
            "type": entry.type,
            "series_name": entry.series_name,
            "season_number": entry.season_number,
            "episode_number": entry.episode_number,
            "episode_number_end": entry.episode_number_end,
            "premiere_date": entry.premiere_date,
            "production_year": entry.production_year,
        }
        if include_metadata:
            values["sort_name"] = entry.sort_name
            values["tags"] = list(entry.tags)
            values["tagline"] = base_value(entry, "tagline")
        items.append(ExportItem(**values))

    return ExportDocument(
        version=EXPORT_VERSION,
        playlist_id=playlist_id,
        playlist_name=playlist_name,
        exported_at=datetime.now(timezone.utc).isoformat(),
        items=items,
    )
