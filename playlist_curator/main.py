import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse

from playlist_curator.config import Settings, settings
from playlist_curator.models import (
    EditRequest,
    ImportOptions,
    LoadRequest,
    MoveRequest,
    RankRequest,
    SelectionMoveRequest,
    SortRequest,
)
from playlist_curator.services.connection_tester import (
    JellyfinConnectionError,
    JellyfinConnectionTester,
    check_jellyfin_connection,
)
from playlist_curator.services.executor import MissingEntryIdError
from playlist_curator.services.importer import ImportParseError, load_import_document, normalize_import
from playlist_curator.services.jellyfin_client import JellyfinClient, JellyfinError
from playlist_curator.services.progress import progress_tracker
from playlist_curator.services.session import (
    IncompleteLoadError,
    NothingPendingError,
    PlaylistConflictError,
    PlaylistSession,
    PreviewActiveError,
    SessionBusyError,
    UnknownItemError,
    describe_error,
)

LOG_DIR = Path("logs")
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "curator.log"

root_logger = logging.getLogger()
root_logger.handlers.clear()
root_logger.setLevel(logging.DEBUG)

console_handler = logging.StreamHandler()
console_handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
console_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(
    logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
)

root_logger.addHandler(console_handler)
root_logger.addHandler(file_handler)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    await registry.aclose()


app = FastAPI(title="Jellyfin Playlist Curator", lifespan=lifespan)

KNOWN_ERRORS = (
    JellyfinError,
    JellyfinConnectionError,
    SessionBusyError,
    PreviewActiveError,
    PlaylistConflictError,
    NothingPendingError,
    IncompleteLoadError,
    MissingEntryIdError,
    ImportParseError,
    UnknownItemError,
    ValueError,
)


class SessionRegistry:
    """Open editing sessions, one per playlist, sharing one Jellyfin client."""

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config
        self.transport = transport
        self._client: Optional[JellyfinClient] = None
        self._sessions: Dict[str, PlaylistSession] = {}
        self._client_lock = asyncio.Lock()

    async def client(self) -> JellyfinClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                self._client = await self._connect()
        return self._client

    async def _connect(self) -> JellyfinClient:
        logger.info("Testing connection to Jellyfin server: %s", self.config.jellyfin_url)
        success, working_url, connection_error = await check_jellyfin_connection(
            self.config.jellyfin_url,
            self.config.jellyfin_api_key,
            tester=JellyfinConnectionTester(timeout=self.config.request_timeout, transport=self.transport),
        )
        if not success:
            logger.error("Jellyfin connection failed: %s", connection_error)
            raise connection_error

        if working_url != self.config.jellyfin_url:
            logger.info("Using fallback URL: %s", working_url)

        return JellyfinClient(
            working_url,
            self.config.jellyfin_api_key,
            user_id=self.config.jellyfin_user_id or None,
            timeout=self.config.request_timeout,
            transport=self.transport,
        )

    def get(self, playlist_id: str) -> Optional[PlaylistSession]:
        return self._sessions.get(playlist_id)

    async def open(self, playlist_id: str, request: LoadRequest) -> PlaylistSession:
        existing = self._sessions.get(playlist_id)
        if existing is not None and existing.busy:
            raise SessionBusyError("Playlist is busy; wait for the running operation to finish.")

        session = PlaylistSession(
            await self.client(),
            playlist_id,
            self.config,
            page_size=request.page_size,
            throttle_ms=request.throttle_ms,
            auto_load_all=request.auto_load_all,
        )
        self._sessions[playlist_id] = session
        return session

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._sessions.clear()


registry = SessionRegistry(settings)


def get_registry() -> SessionRegistry:
    return registry


def _form_bool(value: Optional[str]) -> bool:
    return value is not None and value.lower() in {"on", "true", "1", "yes"}


def _status_code(exc: Exception) -> int:
    if isinstance(exc, (JellyfinError, JellyfinConnectionError)):
        return 502
    if isinstance(exc, UnknownItemError):
        return 404
    if isinstance(exc, (SessionBusyError, PreviewActiveError, PlaylistConflictError, IncompleteLoadError, MissingEntryIdError)):
        return 409
    return 400


def _failure(exc: Exception, session: Optional[PlaylistSession] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": describe_error(exc)}
    if isinstance(exc, JellyfinConnectionError):
        body["troubleshooting"] = exc.troubleshooting_steps
    if session is not None:
        body["status"] = session.state.status
    return JSONResponse(body, status_code=_status_code(exc))


def _missing_session(playlist_id: str) -> JSONResponse:
    return JSONResponse(
        {"error": f"Playlist {playlist_id} is not loaded. POST /playlists/{playlist_id}/load first."},
        status_code=404,
    )


def _view(session: PlaylistSession, **extra: Any) -> JSONResponse:
    body = session.view().model_dump(mode="json")
    body.update(extra)
    return JSONResponse(body)


def _job(job_id: str, label: str) -> Optional[Callable[[float], None]]:
    job_id = job_id.strip()
    if not job_id:
        return None
    progress_tracker.start(job_id, label=label)
    return lambda fraction: progress_tracker.report_fraction(job_id, fraction)


def _job_done(job_id: str, error: Optional[Exception] = None) -> None:
    job_id = job_id.strip()
    if not job_id:
        return
    if error is None:
        progress_tracker.finish(job_id)
    else:
        progress_tracker.error(job_id, describe_error(error))


@app.get("/playlists")
async def list_playlists(registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
    try:
        client = await registry.client()
        playlists = await client.list_playlists()
    except KNOWN_ERRORS as exc:
        logger.exception("Failed to list playlists: %s", exc)
        return _failure(exc)

    if not playlists:
        return JSONResponse({"playlists": [], "message": "No playlists found."})
    return JSONResponse({"playlists": [playlist.model_dump() for playlist in playlists]})


@app.post("/playlists/{playlist_id}/load")
async def load_playlist(
    playlist_id: str,
    request: Optional[LoadRequest] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session: Optional[PlaylistSession] = None
    try:
        session = await registry.open(playlist_id, request or LoadRequest())
        await session.load()
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.post("/playlists/{playlist_id}/load-more")
async def load_more(playlist_id: str, registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        await session.load_more()
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.get("/playlists/{playlist_id}")
async def get_playlist(playlist_id: str, registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    return _view(session)


@app.post("/playlists/{playlist_id}/sort")
async def sort_playlist(
    playlist_id: str,
    request: SortRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        session.preview_sort(request.key, request.ascending)
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.post("/playlists/{playlist_id}/rank")
async def rank_playlist(
    playlist_id: str,
    request: RankRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        session.rank(request.entry_ids)
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.post("/playlists/{playlist_id}/preview/discard")
async def discard_preview(playlist_id: str, registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        session.discard_preview()
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.post("/playlists/{playlist_id}/preview/apply")
async def apply_preview(
    playlist_id: str,
    job_id: str = Query(""),
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    progress = _job(job_id, "apply order")
    try:
        moves = await session.apply_preview(progress)
    except KNOWN_ERRORS as exc:
        _job_done(job_id, exc)
        return _failure(exc, session)
    _job_done(job_id)
    return _view(session, moves=moves)


@app.post("/playlists/{playlist_id}/move")
async def move_entry(
    playlist_id: str,
    request: MoveRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        await session.move(request.position, request.new_position)
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.post("/playlists/{playlist_id}/move-selection")
async def move_selection(
    playlist_id: str,
    request: SelectionMoveRequest,
    job_id: str = Query(""),
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    progress = _job(job_id, "move selection")
    try:
        moves = await session.move_selection(request.positions, request.target_index, progress)
    except KNOWN_ERRORS as exc:
        _job_done(job_id, exc)
        return _failure(exc, session)
    _job_done(job_id)
    return _view(session, moves=moves)


@app.post("/playlists/{playlist_id}/edit")
async def edit_item(
    playlist_id: str,
    request: EditRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        response = session.edit(request)
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    body = response.model_dump(mode="json")
    body["status"] = session.state.status
    return JSONResponse(body, status_code=200 if response.accepted else 422)


@app.post("/playlists/{playlist_id}/import")
async def import_playlist(
    playlist_id: str,
    payload: str = Form(""),
    import_file: Optional[UploadFile] = File(None),
    add_missing: Optional[str] = Form(None),
    remove_extra: Optional[str] = Form(None),
    reorder: Optional[str] = Form(None),
    apply_metadata: Optional[str] = Form(None),
    dry_run: Optional[str] = Form(None),
    job_id: str = Form(""),
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)

    defaults = ImportOptions()
    options = ImportOptions(
        add_missing=_form_bool(add_missing) if add_missing is not None else defaults.add_missing,
        remove_extra=_form_bool(remove_extra) if remove_extra is not None else defaults.remove_extra,
        reorder=_form_bool(reorder) if reorder is not None else defaults.reorder,
        apply_metadata=_form_bool(apply_metadata) if apply_metadata is not None else defaults.apply_metadata,
        dry_run=_form_bool(dry_run) if dry_run is not None else defaults.dry_run,
    )

    raw: Any = payload
    filename: Optional[str] = None
    if import_file is not None and import_file.filename:
        raw = await import_file.read()
        filename = import_file.filename

    logger.info(
        "Received import for playlist %s (file=%s, dry_run=%s)",
        playlist_id,
        filename or "<inline>",
        options.dry_run,
    )

    progress = _job(job_id, "import")
    try:
        items = normalize_import(load_import_document(raw, filename))
        preview = await session.import_items(items, options, progress)
    except KNOWN_ERRORS as exc:
        _job_done(job_id, exc)
        return _failure(exc, session)
    _job_done(job_id)
    return _view(session, import_preview=preview.model_dump(mode="json"))


@app.get("/playlists/{playlist_id}/export")
async def export_playlist(
    playlist_id: str,
    include_metadata: bool = Query(False),
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        document = await session.export(include_metadata)
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return JSONResponse(
        document.to_json(),
        headers={"Content-Disposition": f"attachment; filename=playlist-{playlist_id}.json"},
    )


@app.post("/playlists/{playlist_id}/save")
async def save_playlist(
    playlist_id: str,
    job_id: str = Query(""),
    registry: SessionRegistry = Depends(get_registry),
) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    progress = _job(job_id, "save")
    try:
        result = await session.save(progress)
    except KNOWN_ERRORS as exc:
        logger.exception("Save of playlist %s failed: %s", playlist_id, exc)
        _job_done(job_id, exc)
        return _failure(exc, session)
    _job_done(job_id)
    return _view(session, result=result.model_dump(mode="json"))


@app.post("/playlists/{playlist_id}/discard")
async def discard_changes(playlist_id: str, registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
    session = registry.get(playlist_id)
    if session is None:
        return _missing_session(playlist_id)
    try:
        session.discard_changes()
    except KNOWN_ERRORS as exc:
        return _failure(exc, session)
    return _view(session)


@app.get("/progress/{job_id}")
async def get_progress(job_id: str) -> JSONResponse:
    snapshot = progress_tracker.snapshot(job_id)
    if snapshot is None:
        return JSONResponse({"status": "unknown"}, status_code=404)
    status = snapshot.get("status")
    if status in {"completed", "error"}:
        progress_tracker.pop(job_id)
    return JSONResponse(snapshot)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.app_port)
