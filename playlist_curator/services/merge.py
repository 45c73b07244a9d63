from __future__ import annotations

import copy
import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional

import pandas as pd

from playlist_curator.models import (
    EDITABLE_FIELDS,
    EditResponse,
    EffectiveMetadata,
    Entry,
    ImportItem,
    PendingMetadataEdit,
)

logger = logging.getLogger(__name__)

TAG_SEPARATORS = re.compile(r"[,;]")
ISO_DATE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
INTEGER = re.compile(r"^[+-]?\d+$")


class InvalidEditValue(ValueError):
    pass


def normalize_tags(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parts: Iterable[Any] = TAG_SEPARATORS.split(raw)
    elif isinstance(raw, (list, tuple, set)):
        parts = raw
    else:
        raise InvalidEditValue(f"Tags must be text or a list, got {type(raw).__name__}.")

    tags: List[str] = []
    seen = set()
    for part in parts:
        tag = str(part).strip() if part is not None else ""
        if tag and tag.casefold() not in seen:
            seen.add(tag.casefold())
            tags.append(tag)
    return tags


def normalize_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def normalize_date(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = str(raw).strip()
    if not text:
        return None

    match = ISO_DATE.match(text)
    if match:
        try:
            return date.fromisoformat(match.group(1)).isoformat()
        except ValueError as exc:
            raise InvalidEditValue(f"Invalid date '{text}'.") from exc
    if ISO_PREFIX.match(text):
        raise InvalidEditValue(f"Invalid date '{text}'.")
    # pandas resolves words like "now" and "today" against the clock
    if not any(char.isdigit() for char in text):
        raise InvalidEditValue(f"Unrecognised date '{text}'.")

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        parsed = pd.NaT
    if parsed is pd.NaT or pd.isna(parsed):
        raise InvalidEditValue(f"Unrecognised date '{text}'.")
    return parsed.date().isoformat()


def normalize_year(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidEditValue("Year must be a whole number.")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)

    text = str(raw).strip()
    if not text:
        return None
    if not INTEGER.match(text):
        raise InvalidEditValue(f"Year must be a whole number, got '{text}'.")
    return int(text)


NORMALIZERS: Dict[str, Callable[[Any], Any]] = {
    "tags": normalize_tags,
    "tagline": normalize_text,
    "sort_name": normalize_text,
    "premiere_date": normalize_date,
    "production_year": normalize_year,
}


def normalize(field: str, raw: Any) -> Any:
    if field not in NORMALIZERS:
        raise ValueError(f"Field '{field}' is not editable.")
    return NORMALIZERS[field](raw)


def base_value(entry: Entry, field: str) -> Any:
    if field == "tags":
        return normalize_tags(entry.tags)
    if field == "tagline":
        return normalize_text(entry.taglines[0]) if entry.taglines else None
    if field == "sort_name":
        return normalize_text(entry.sort_name)
    if field == "premiere_date":
        try:
            return normalize_date(entry.premiere_date)
        except InvalidEditValue:
            logger.debug("Ignoring unreadable premiere date %r on %s", entry.premiere_date, entry.item_id)
            return None
    if field == "production_year":
        return entry.production_year
    raise ValueError(f"Field '{field}' is not editable.")


def values_equal(field: str, left: Any, right: Any) -> bool:
    if field == "tags":
        return {tag.casefold() for tag in left or []} == {tag.casefold() for tag in right or []}
    return left == right


def effective(entry: Entry, edits: Mapping[str, PendingMetadataEdit]) -> EffectiveMetadata:
    """Base metadata of the entry with its pending edit laid over it."""
    edit = edits.get(entry.item_id)
    values: Dict[str, Any] = {}
    for field in EDITABLE_FIELDS:
        if edit is not None and edit.has(field):
            values[field] = edit.value(field)
        else:
            values[field] = base_value(entry, field)
    values["tags"] = values["tags"] or []
    return EffectiveMetadata(**values)


def apply_edit(
    edits: MutableMapping[str, PendingMetadataEdit],
    entry: Entry,
    field: str,
    raw: Any,
) -> EditResponse:
    """
    Record an edit of one field, always comparing against the base value.

    Editing a field back to what the server already has drops that field's
    flag, and the whole edit once no flags remain.
    """
    item_id = entry.item_id
    current = edits.get(item_id)

    try:
        value = normalize(field, raw)
    except InvalidEditValue as exc:
        logger.info("Rejected %s edit for %s: %s", field, item_id, exc)
        return EditResponse(
            item_id=item_id,
            field=field,
            accepted=False,
            pending=current is not None and current.has(field),
            value=getattr(effective(entry, edits), field),
            message=str(exc),
        )

    edit = current if current is not None else PendingMetadataEdit()
    if values_equal(field, value, base_value(entry, field)):
        edit.unset(field)
    else:
        edit.set(field, value)

    if edit.is_empty:
        edits.pop(item_id, None)
    else:
        edits[item_id] = edit

    pending = edit.has(field)
    logger.debug("Edit %s.%s -> %r (pending=%s)", item_id, field, value, pending)
    return EditResponse(
        item_id=item_id,
        field=field,
        accepted=True,
        pending=pending,
        value=value,
        message="Pending change." if pending else "Matches the server value; nothing pending.",
    )


def stage_import_metadata(
    edits: MutableMapping[str, PendingMetadataEdit],
    entries: Iterable[Entry],
    items: Iterable[ImportItem],
) -> int:
    """Merge the fields an import mentioned into the pending edits.

    Items that are not in the playlist are skipped. Returns the number of
    items that end up with a pending edit.
    """
    by_item: Dict[str, Entry] = {}
    for entry in entries:
        by_item.setdefault(entry.item_id, entry)

    touched = set()
    for item in items:
        entry = by_item.get(item.item_id)
        if entry is None or item.metadata.is_empty:
            continue
        for field in item.metadata.flagged_fields:
            apply_edit(edits, entry, field, item.metadata.value(field))
        if item.item_id in edits:
            touched.add(item.item_id)
    return len(touched)


def _server_date(value: Optional[str]) -> Optional[str]:
    return f"{value}T00:00:00.0000000Z" if value else None


def patch_record(record: Dict[str, Any], edit: PendingMetadataEdit) -> Dict[str, Any]:
    """Copy of a full item record with only the flagged fields replaced."""
    patched = copy.deepcopy(record)
    if edit.has("tags"):
        patched["Tags"] = list(edit.value("tags") or [])
    if edit.has("tagline"):
        tagline = edit.value("tagline")
        patched["Taglines"] = [tagline] if tagline else []
    if edit.has("sort_name"):
        sort_name = edit.value("sort_name") or ""
        patched["ForcedSortName"] = sort_name
        patched["SortName"] = sort_name
    if edit.has("premiere_date"):
        patched["PremiereDate"] = _server_date(edit.value("premiere_date"))
    if edit.has("production_year"):
        patched["ProductionYear"] = edit.value("production_year")
    return patched


def apply_to_entry(entry: Entry, edit: PendingMetadataEdit) -> None:
    if edit.has("tags"):
        entry.tags = list(edit.value("tags") or [])
    if edit.has("tagline"):
        tagline = edit.value("tagline")
        entry.taglines = [tagline] if tagline else []
    if edit.has("sort_name"):
        entry.sort_name = edit.value("sort_name")
    if edit.has("premiere_date"):
        entry.premiere_date = _server_date(edit.value("premiere_date"))
    if edit.has("production_year"):
        entry.production_year = edit.value("production_year")
