from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterator, List, Optional, Sequence

from playlist_curator.config import Settings
from playlist_curator.models import (
    EditRequest,
    EditResponse,
    Entry,
    EntryView,
    ExportDocument,
    ImportItem,
    ImportOptions,
    ImportPreview,
    SaveResult,
    SessionView,
)
from playlist_curator.services.changeset import ChangeSet, ImportPlan, PlaylistState
from playlist_curator.services.executor import (
    BatchAbortedError,
    BatchExecutor,
    MissingEntryIdError,
    ProgressCallback,
)
from playlist_curator.services.importer import (
    ImportParseError,
    build_export,
    build_target_order,
    reconcile,
)
from playlist_curator.services.jellyfin_client import (
    JellyfinClient,
    JellyfinError,
    JellyfinResponseError,
    JellyfinTransportError,
)
from playlist_curator.services.loader import PaginatedLoader
from playlist_curator.services.merge import apply_edit, effective, stage_import_metadata
from playlist_curator.services.ordering import InvalidOrderError, move_block, sort_target, validate_rank
from playlist_curator.services.planner import plan_moves

logger = logging.getLogger(__name__)


class NothingPendingError(Exception):
    pass


class SessionBusyError(Exception):
    pass


class PlaylistConflictError(Exception):
    """The server-side playlist no longer matches what was loaded."""


class PreviewActiveError(Exception):
    pass


class IncompleteLoadError(Exception):
    pass


class UnknownItemError(LookupError):
    pass


def describe_error(exc: Exception) -> str:
    if isinstance(exc, BatchAbortedError):
        return f"{exc}. Chunks already sent were kept."
    if isinstance(exc, JellyfinResponseError):
        return f"Unexpected server response: {exc}"
    if isinstance(exc, JellyfinTransportError):
        return f"Server request failed: {exc}"
    if isinstance(exc, ImportParseError):
        return f"Import file rejected: {exc}"
    return str(exc)


class PlaylistSession:
    """One editing session on one playlist.

    Owns the state struct, the loader and the executor. Every run that talks
    to the server holds ``_lock``; a second run while one is in flight is
    rejected rather than queued.
    """

    def __init__(
        self,
        client: JellyfinClient,
        playlist_id: str,
        settings: Settings,
        page_size: Optional[int] = None,
        throttle_ms: Optional[int] = None,
        auto_load_all: Optional[bool] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        pause: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self.client = client
        self.state = PlaylistState(playlist_id=playlist_id)
        self.loader = PaginatedLoader(
            client,
            self.state,
            page_size=page_size or settings.page_size,
            auto_continue=settings.auto_load_all if auto_load_all is None else auto_load_all,
            prefer_large_pages=settings.prefer_large_pages,
            pause=pause,
        )
        self.executor = BatchExecutor(
            client,
            self.state,
            throttle_ms=settings.move_throttle_ms if throttle_ms is None else throttle_ms,
            batch_size=settings.batch_size,
            sleep=sleep,
        )
        self._lock = asyncio.Lock()

    @property
    def playlist_id(self) -> str:
        return self.state.playlist_id

    @property
    def changeset(self) -> ChangeSet:
        return self.state.changeset

    @property
    def entries(self) -> List[Entry]:
        return self.state.entries

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _set_status(self, message: str, level: int = logging.INFO) -> None:
        self.state.status = message
        logger.log(level, "[%s] %s", self.playlist_id, message)

    @asynccontextmanager
    async def _exclusive(self, action: str) -> AsyncIterator[None]:
        self._ensure_idle(action)
        async with self._lock:
            yield

    def _ensure_idle(self, action: str) -> None:
        if self._lock.locked():
            self._set_status(f"Cannot {action} while another operation is running.", logging.WARNING)
            raise SessionBusyError(f"Cannot {action} while another operation is running.")

    @contextmanager
    def _reporting(self, action: str) -> Iterator[None]:
        try:
            yield
        except (JellyfinError, MissingEntryIdError, ImportParseError, PlaylistConflictError, IncompleteLoadError) as exc:
            self._set_status(f"{action} failed: {describe_error(exc)}", logging.ERROR)
            raise

    def _require_complete(self, action: str) -> None:
        if not self.state.is_complete:
            message = (
                f"Cannot {action}: only {len(self.entries)} of "
                f"{self.state.total if self.state.total is not None else '?'} entries are loaded."
            )
            self._set_status(message, logging.WARNING)
            raise IncompleteLoadError(message)

    def _require_no_preview(self) -> None:
        if self.changeset.target_order is not None:
            message = "A sort preview is active. Apply or discard it before moving entries."
            self._set_status(message, logging.WARNING)
            raise PreviewActiveError(message)

    def _loaded_message(self) -> str:
        if self.state.total is not None:
            return f"Loaded {len(self.entries)} / {self.state.total}."
        return f"Loaded {len(self.entries)}."

    # -- loading --

    async def load(self) -> None:
        async with self._exclusive("reload"):
            with self._reporting("Loading"):
                self.changeset.clear()
                await self.loader.load(reset=True)
            self._set_status(self._loaded_message())

    async def load_more(self) -> None:
        async with self._exclusive("load more"):
            with self._reporting("Loading"):
                await self.loader.load(reset=False)
            self._set_status(self._loaded_message())

    async def _reload_entries(self) -> None:
        """Refetch every entry without touching the changeset."""
        await self.loader.load(reset=True, until_complete=True)
        self._require_complete("continue saving")

    # -- ordering --

    def preview_sort(self, key: str, ascending: bool = True) -> List[str]:
        self._ensure_idle("sort")
        self._require_complete("sort")
        ordered = sort_target(self.entries, self.changeset.edits, key, ascending)
        self.changeset.target_order = [entry.entry_id for entry in ordered if entry.entry_id]
        self._set_status("Sort preview ready. Save or apply it to reorder the playlist.")
        return self.changeset.target_order

    def rank(self, entry_ids: Sequence[str]) -> List[str]:
        self._ensure_idle("rank")
        self._require_complete("rank")
        try:
            validate_rank(self.state.entry_ids, entry_ids)
        except InvalidOrderError as exc:
            self._set_status(f"Ranking rejected: {exc}", logging.WARNING)
            raise
        self.changeset.target_order = list(entry_ids)
        self._set_status("Manual order staged. Save or apply it to reorder the playlist.")
        return self.changeset.target_order

    def discard_preview(self) -> None:
        self._ensure_idle("discard the preview")
        self.changeset.target_order = None
        self._set_status("Sort preview discarded.")

    async def apply_preview(self, progress: Optional[ProgressCallback] = None) -> int:
        async with self._exclusive("apply the order"):
            target = self.changeset.target_order
            if target is None:
                self._set_status("No sort preview is active.", logging.WARNING)
                raise NothingPendingError("No sort preview is active.")
            self._set_status("Applying order (this can take a while)...")
            try:
                with self._reporting("Applying order"):
                    moves = await self.executor.apply_target_order(target, progress)
            except Exception:
                self.changeset.target_order = target
                raise
            self._set_status(f"Order applied ({moves} moves).")
            return moves

    async def move(self, position: int, new_position: int) -> bool:
        self._require_no_preview()
        async with self._exclusive("move"):
            try:
                with self._reporting("Move"):
                    moved = await self.executor.move(position, new_position)
            except ValueError as exc:
                self._set_status(f"Invalid index: {exc}", logging.WARNING)
                raise
            if moved:
                self._set_status(f"Moved entry from {position} to {new_position}.")
            return moved

    async def move_selection(
        self,
        positions: Sequence[int],
        target_index: int,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        self._require_no_preview()
        self._require_complete("move the selection")
        async with self._exclusive("move the selection"):
            try:
                ordered = move_block(self.entries, positions, target_index)
            except InvalidOrderError as exc:
                self._set_status(str(exc), logging.WARNING)
                raise
            target = [entry.entry_id for entry in ordered if entry.entry_id]
            with self._reporting("Moving selection"):
                moves = await self.executor.apply_target_order(target, progress)
            self._set_status(f"Moved {len(set(positions))} entries ({moves} moves).")
            return moves

    # -- metadata --

    def edit(self, request: EditRequest) -> EditResponse:
        self._ensure_idle("edit")
        entry = next((entry for entry in self.entries if entry.item_id == request.item_id), None)
        if entry is None:
            self._set_status(f"Item {request.item_id} is not in the playlist.", logging.WARNING)
            raise UnknownItemError(request.item_id)

        response = apply_edit(self.changeset.edits, entry, request.field, request.value)
        level = logging.INFO if response.accepted else logging.WARNING
        self._set_status(f"{entry.name or entry.item_id}: {response.message}", level)
        return response

    # -- import / export --

    async def import_items(
        self,
        items: Sequence[ImportItem],
        options: ImportOptions,
        progress: Optional[ProgressCallback] = None,
    ) -> ImportPreview:
        self._ensure_idle("import")
        self._require_complete("import")

        plan = reconcile(self.entries, items, options)
        planned_moves = len(plan_moves(self.state.entry_ids, plan.target_order)) if plan.target_order else 0
        preview = ImportPreview(
            missing_ids=list(plan.missing_ids),
            extra_entry_ids=list(plan.extra_entry_ids),
            target_order=list(plan.target_order) if plan.target_order is not None else None,
            planned_moves=planned_moves,
            metadata_items=len(plan.metadata_items),
            dry_run=options.dry_run,
        )

        self.changeset.import_plan = plan
        self.changeset.target_order = None
        self._set_status(
            f"Import staged: {len(plan.missing_ids)} to add, {len(plan.extra_entry_ids)} to remove, "
            f"{planned_moves} moves, {len(plan.metadata_items)} items with metadata."
        )
        if not options.dry_run:
            await self.save(progress)
        return preview

    async def export(self, include_metadata: bool = False) -> ExportDocument:
        self._ensure_idle("export")
        self._require_complete("export")
        try:
            name = await self.client.get_playlist_name(self.playlist_id)
        except JellyfinError as exc:
            logger.warning("Could not read the name of playlist %s: %s", self.playlist_id, exc)
            name = ""
        document = build_export(self.playlist_id, name, self.entries, include_metadata)
        self._set_status(f"Exported {len(document.items)} entries.")
        return document

    # -- changeset --

    def discard_changes(self) -> None:
        self._ensure_idle("discard changes")
        self.changeset.clear()
        self._set_status("Pending changes discarded.")

    async def save(self, progress: Optional[ProgressCallback] = None) -> SaveResult:
        """
        Commit the changeset: import plan (add, remove, reload, reorder,
        metadata) or else the sort preview, then every metadata edit.

        The changeset is cleared only when everything went through; on any
        failure it stays in place so the save can be retried.
        """
        async with self._exclusive("save"):
            changeset = self.changeset
            if changeset.is_empty:
                self._set_status("Nothing pending to save.", logging.WARNING)
                raise NothingPendingError("Nothing pending to save.")

            result = SaveResult()
            preview = changeset.target_order
            self._set_status("Saving changes...")
            try:
                with self._reporting("Save"):
                    await self._check_for_conflicts()
                    if changeset.import_plan is not None:
                        await self._save_import(changeset.import_plan, result, progress)
                    elif preview is not None:
                        result.moves = await self.executor.apply_target_order(preview, progress)
                        preview = None
                    result.metadata_updated = await self._save_metadata()
            except Exception:
                if changeset.target_order is None and preview is not None:
                    changeset.target_order = preview
                raise

            changeset.clear()
            self._set_status(
                f"Saved: {result.added} added, {result.removed} removed, {result.moves} moves, "
                f"{result.metadata_updated} items updated."
            )
            return result

    async def _check_for_conflicts(self) -> None:
        plan = self.changeset.import_plan
        if self.state.total is None or (plan is not None and plan.needs_reload):
            return
        _, server_total = await self.client.get_playlist_items(self.playlist_id, start_index=0, limit=1)
        if server_total is not None and server_total != self.state.total:
            raise PlaylistConflictError(
                f"Playlist has {server_total} entries on the server but {self.state.total} were loaded; "
                "it was changed elsewhere. Reload before saving."
            )

    async def _save_import(self, plan: ImportPlan, result: SaveResult, progress: Optional[ProgressCallback]) -> None:
        if plan.missing_ids:
            try:
                result.added = await self.executor.add_items(plan.missing_ids)
            except BatchAbortedError as exc:
                del plan.missing_ids[:exc.applied]
                plan.needs_reload = plan.needs_reload or exc.applied > 0
                raise
            plan.missing_ids = []
            plan.needs_reload = True

        if plan.extra_entry_ids:
            try:
                result.removed = await self.executor.remove_entries(plan.extra_entry_ids)
            except BatchAbortedError as exc:
                del plan.extra_entry_ids[:exc.applied]
                plan.needs_reload = plan.needs_reload or exc.applied > 0
                raise
            plan.extra_entry_ids = []
            plan.needs_reload = True

        if plan.needs_reload:
            await self._reload_entries()
            plan.needs_reload = False
            result.reloaded = True

        if plan.options.reorder:
            target = build_target_order(self.entries, plan.import_ids, plan.options.remove_extra)
            result.moves = await self.executor.apply_target_order(target, progress)

        if plan.metadata_items:
            staged = stage_import_metadata(self.changeset.edits, self.entries, plan.metadata_items)
            logger.info("Staged imported metadata for %s items", staged)

    async def _save_metadata(self) -> int:
        updated = 0
        for item_id, edit in list(self.changeset.edits.items()):
            await self.executor.update_metadata(item_id, edit)
            self.changeset.edits.pop(item_id, None)
            updated += 1
        return updated

    # -- views --

    def view(self) -> SessionView:
        edits = self.changeset.edits
        order = self.entries
        target = self.changeset.target_order
        if target is not None:
            by_entry_id = {entry.entry_id: entry for entry in self.entries if entry.entry_id}
            targeted = set(target)
            order = [by_entry_id[entry_id] for entry_id in target if entry_id in by_entry_id]
            order += [entry for entry in self.entries if entry.entry_id not in targeted]

        views = []
        for position, entry in enumerate(order):
            edit = edits.get(entry.item_id)
            views.append(
                EntryView(
                    position=position,
                    item_id=entry.item_id,
                    entry_id=entry.entry_id,
                    name=entry.name,
                    type=entry.type,
                    series_name=entry.series_name,
                    season_number=entry.season_number,
                    episode_number=entry.episode_number,
                    metadata=effective(entry, edits),
                    pending_fields=edit.flagged_fields if edit else [],
                )
            )

        return SessionView(
            playlist_id=self.playlist_id,
            total=self.state.total,
            loaded=len(self.entries),
            complete=self.state.is_complete,
            status=self.state.status,
            preview_active=target is not None,
            changes=self.changeset.summary(),
            entries=views,
        )
