from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence

from playlist_curator.models import PendingMetadataEdit
from playlist_curator.services.changeset import PlaylistState
from playlist_curator.services.jellyfin_client import JellyfinClient, JellyfinError
from playlist_curator.services.merge import apply_to_entry, patch_record
from playlist_curator.services.planner import iter_plan, splice

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class MissingEntryIdError(Exception):
    pass


class BatchAbortedError(JellyfinError):
    """A chunked call failed part way; earlier chunks stay applied."""

    def __init__(self, action: str, applied: int, total: int, cause: Exception) -> None:
        super().__init__(f"{action} stopped after {applied} of {total}: {cause}")
        self.action = action
        self.applied = applied
        self.total = total
        self.cause = cause


class BatchExecutor:
    def __init__(
        self,
        client: JellyfinClient,
        state: PlaylistState,
        throttle_ms: int = 30,
        batch_size: int = 100,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1.")
        self.client = client
        self.state = state
        self.throttle_ms = max(0, throttle_ms)
        self.batch_size = batch_size
        self.sleep = sleep or asyncio.sleep

    async def move(self, current_pos: int, new_pos: int) -> bool:
        """Move one entry on the server, then mirror it locally."""
        if current_pos == new_pos:
            return False
        entries = self.state.entries
        if not 0 <= current_pos < len(entries) or not 0 <= new_pos < len(entries):
            raise ValueError(f"Invalid move {current_pos} -> {new_pos} (0..{len(entries) - 1}).")

        entry = entries[current_pos]
        if not entry.entry_id:
            raise MissingEntryIdError(
                f"Entry at position {current_pos} ({entry.name or entry.item_id}) has no playlist entry id; "
                "the server did not return PlaylistItemId."
            )

        await self.client.move_item(self.state.playlist_id, entry.entry_id, new_pos)
        splice(entries, current_pos, new_pos)
        logger.debug("Moved %s from %s to %s", entry.entry_id, current_pos, new_pos)
        return True

    async def apply_target_order(
        self,
        target_ids: Sequence[str],
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        self.state.changeset.target_order = None

        total = len(target_ids)
        moves = 0
        logger.info("Applying order of %s entries to playlist %s", total, self.state.playlist_id)
        for step, move in iter_plan(lambda: self.state.entry_ids, target_ids):
            if move is not None:
                await self.move(move.from_index, move.to_index)
                moves += 1
                await self.sleep(self.throttle_ms / 1000)
            self._report(progress, (step + 1) / total)

        logger.info("Order applied with %s moves", moves)
        return moves

    async def add_items(self, item_ids: Sequence[str]) -> int:
        applied = 0
        for chunk in self._chunks(item_ids):
            try:
                await self.client.add_to_playlist(self.state.playlist_id, chunk)
            except JellyfinError as exc:
                raise BatchAbortedError("Adding items", applied, len(item_ids), exc) from exc
            applied += len(chunk)
            logger.info("Added %s / %s items", applied, len(item_ids))
        return applied

    async def remove_entries(self, entry_ids: Sequence[str]) -> int:
        applied = 0
        for chunk in self._chunks(entry_ids):
            try:
                await self.client.remove_from_playlist(self.state.playlist_id, chunk)
            except JellyfinError as exc:
                raise BatchAbortedError("Removing entries", applied, len(entry_ids), exc) from exc
            applied += len(chunk)
            self._drop_local(chunk)
            logger.info("Removed %s / %s entries", applied, len(entry_ids))
        return applied

    async def update_metadata(self, item_id: str, edit: PendingMetadataEdit) -> None:
        """Read-modify-write of one item; unflagged fields pass through untouched."""
        record = await self.client.get_item(item_id)
        await self.client.update_item(item_id, patch_record(record, edit))
        for entry in self.state.entries:
            if entry.item_id == item_id:
                apply_to_entry(entry, edit)
        logger.info("Updated %s on item %s", ", ".join(edit.flagged_fields), item_id)

    def _chunks(self, ids: Sequence[str]) -> Iterator[List[str]]:
        for start in range(0, len(ids), self.batch_size):
            yield list(ids[start:start + self.batch_size])

    def _drop_local(self, entry_ids: Sequence[str]) -> None:
        removed = set(entry_ids)
        before = len(self.state.entries)
        self.state.entries = [entry for entry in self.state.entries if entry.entry_id not in removed]
        dropped = before - len(self.state.entries)
        self.state.cursor = max(0, self.state.cursor - dropped)
        if self.state.total is not None:
            self.state.total = max(0, self.state.total - dropped)

    @staticmethod
    def _report(progress: Optional[ProgressCallback], fraction: float) -> None:
        if progress is None:
            return
        try:
            progress(fraction)
        except Exception:  # pragma: no cover - progress is best-effort
            logger.debug("Progress callback failed", exc_info=True)
