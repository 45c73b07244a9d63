from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from unidecode import unidecode

from playlist_curator.models import Entry, PendingMetadataEdit
from playlist_curator.services.merge import effective

logger = logging.getLogger(__name__)


class InvalidOrderError(ValueError):
    pass


def fold_text(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return unidecode(text).casefold().strip() or None


def _episode_key(entry: Entry) -> Optional[Tuple[Any, ...]]:
    if entry.season_number is None and entry.episode_number is None:
        return None
    return (
        fold_text(entry.series_name) or "",
        entry.season_number if entry.season_number is not None else -1,
        entry.episode_number if entry.episode_number is not None else -1,
    )


SORT_KEYS: Dict[str, Callable[[Entry, Mapping[str, PendingMetadataEdit]], Any]] = {
    "name": lambda entry, edits: fold_text(entry.name),
    "sort_name": lambda entry, edits: fold_text(effective(entry, edits).sort_name or entry.name),
    "premiere_date": lambda entry, edits: effective(entry, edits).premiere_date,
    "production_year": lambda entry, edits: effective(entry, edits).production_year,
    "episode": lambda entry, edits: _episode_key(entry),
}


def sort_target(
    entries: Sequence[Entry],
    edits: Mapping[str, PendingMetadataEdit],
    key: str,
    ascending: bool = True,
) -> List[Entry]:
    """Stable sort by one column; entries without a value always go last."""
    if key not in SORT_KEYS:
        raise InvalidOrderError(f"Unknown sort key '{key}'.")
    selector = SORT_KEYS[key]

    keyed = [(selector(entry, edits), entry) for entry in entries]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [entry for value, entry in keyed if value is None]

    present.sort(key=lambda pair: pair[0], reverse=not ascending)
    logger.debug(
        "Sorted %s entries by %s (%s); %s without a value",
        len(present),
        key,
        "ascending" if ascending else "descending",
        len(missing),
    )
    return [entry for _, entry in present] + missing


def move_block(order: Sequence[Any], positions: Sequence[int], target_index: int) -> List[Any]:
    """
    Pull the selected positions out (keeping their relative order) and
    reinsert them as one block at ``target_index`` of the remaining list.
    """
    if not positions:
        raise InvalidOrderError("Nothing selected.")
    selected = sorted(set(positions))
    if selected[0] < 0 or selected[-1] >= len(order):
        raise InvalidOrderError(f"Selection out of range (0..{len(order) - 1}).")

    chosen = set(selected)
    block = [order[position] for position in selected]
    remaining = [item for position, item in enumerate(order) if position not in chosen]

    target_index = max(0, min(len(remaining), target_index))
    return remaining[:target_index] + block + remaining[target_index:]


def validate_rank(current_ids: Sequence[Optional[str]], ranked_ids: Sequence[str]) -> None:
    """A manual ranking must list every current entry exactly once."""
    if len(ranked_ids) != len(set(ranked_ids)):
        raise InvalidOrderError("Ranking lists an entry more than once.")
    if any(entry_id is None for entry_id in current_ids):
        raise InvalidOrderError("Some entries have no entry id and cannot be ranked.")
    if set(ranked_ids) != set(current_ids):
        raise InvalidOrderError("Ranking must contain exactly the entries of the playlist.")
