from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from playlist_curator.models import Entry
from playlist_curator.services.changeset import PlaylistState
from playlist_curator.services.jellyfin_client import JellyfinClient, JellyfinResponseError

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("PremiereDate", "ProductionYear", "SortName", "Tags", "Taglines")
SMALL_PAGE_SIZE = 50


async def _yield_to_loop() -> None:
    await asyncio.sleep(0)


class PaginatedLoader:
    def __init__(
        self,
        client: JellyfinClient,
        state: PlaylistState,
        page_size: int = 200,
        auto_continue: bool = True,
        prefer_large_pages: bool = True,
        pause: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("Page size must be at least 1.")
        self.client = client
        self.state = state
        self.page_size = page_size if prefer_large_pages else min(page_size, SMALL_PAGE_SIZE)
        self.auto_continue = auto_continue
        self.pause = pause or _yield_to_loop

    def reset(self) -> None:
        self.state.entries = []
        self.state.total = None
        self.state.cursor = 0

    async def load_page(self, reset: bool = False) -> int:
        """Fetch one page at the cursor; returns how many entries it added."""
        if reset:
            self.reset()

        state = self.state
        logger.debug(
            "Loading playlist %s page (startIndex=%s, limit=%s)",
            state.playlist_id,
            state.cursor,
            self.page_size,
        )
        dtos, total = await self.client.get_playlist_items(
            state.playlist_id,
            start_index=state.cursor,
            limit=self.page_size,
            fields=ITEM_FIELDS,
        )
        try:
            page = [Entry.from_dto(dto) for dto in dtos]
        except ValueError as exc:
            raise JellyfinResponseError(f"Malformed playlist page: {exc}") from exc

        state.entries.extend(page)
        state.cursor += len(page)
        if total is not None:
            state.total = total

        if state.total is not None:
            logger.info("Loaded %s / %s entries of playlist %s", len(state.entries), state.total, state.playlist_id)
        else:
            logger.info("Loaded %s entries of playlist %s", len(state.entries), state.playlist_id)
        return len(page)

    async def load(self, reset: bool = True, until_complete: Optional[bool] = None) -> None:
        """Load a page and, with auto-continue on, keep going until complete.

        ``until_complete`` overrides the configured auto-continue for one call.
        """
        keep_going = self.auto_continue if until_complete is None else until_complete
        added = await self.load_page(reset=reset)
        while keep_going and self._has_more():
            if added == 0:
                logger.warning(
                    "Server returned an empty page at %s of %s; stopping",
                    self.state.cursor,
                    self.state.total,
                )
                break
            await self.pause()
            added = await self.load_page()

    def _has_more(self) -> bool:
        return self.state.total is not None and len(self.state.entries) < self.state.total
