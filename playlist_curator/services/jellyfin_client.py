from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from playlist_curator.models import PlaylistSummary

logger = logging.getLogger(__name__)


class JellyfinError(Exception):
    pass


class JellyfinTransportError(JellyfinError):
    """The request never completed or the server answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JellyfinResponseError(JellyfinError):
    """The server answered but the body could not be interpreted."""


class JellyfinClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._user_id = user_id or None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-Emby-Token": api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> JellyfinClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise JellyfinTransportError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            logger.error("%s %s returned HTTP %s", method, path, response.status_code)
            raise JellyfinTransportError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise JellyfinResponseError(f"Unreadable response from {path}: {exc}") from exc

    async def system_info(self) -> Dict[str, Any]:
        return await self._json("GET", "/System/Info/Public")

    async def current_user_id(self) -> str:
        if self._user_id:
            return self._user_id
        me = await self._json("GET", "/Users/Me")
        user_id = me.get("Id") if isinstance(me, dict) else None
        if not user_id:
            raise JellyfinResponseError("Unable to determine the current user from /Users/Me.")
        self._user_id = str(user_id)
        return self._user_id

    async def list_playlists(self) -> List[PlaylistSummary]:
        user_id = await self.current_user_id()
        body = await self._json(
            "GET",
            f"/Users/{user_id}/Items",
            params={
                "IncludeItemTypes": "Playlist",
                "Recursive": "true",
                "SortBy": "SortName",
                "SortOrder": "Ascending",
                "Limit": 2000,
            },
        )
        items = body.get("Items") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise JellyfinResponseError("Playlist listing did not contain an Items array.")

        playlists = [
            PlaylistSummary(id=str(item["Id"]), name=item.get("Name") or str(item["Id"]))
            for item in items
            if isinstance(item, dict) and item.get("Id")
        ]
        return sorted(playlists, key=lambda playlist: playlist.name.casefold())

    async def get_item(self, item_id: str) -> Dict[str, Any]:
        user_id = await self.current_user_id()
        record = await self._json("GET", f"/Users/{user_id}/Items/{item_id}")
        if not isinstance(record, dict) or not record.get("Id"):
            raise JellyfinResponseError(f"Item {item_id} came back without an Id.")
        return record

    async def update_item(self, item_id: str, record: Dict[str, Any]) -> None:
        await self._request("POST", f"/Items/{item_id}", json=record)

    async def get_playlist_items(
        self,
        playlist_id: str,
        start_index: int,
        limit: int,
        fields: Iterable[str] = (),
    ) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        params: Dict[str, Any] = {"startIndex": start_index, "limit": limit}
        field_list = ",".join(fields)
        if field_list:
            params["fields"] = field_list
        if self._user_id:
            params["userId"] = self._user_id

        body = await self._json("GET", f"/Playlists/{playlist_id}/Items", params=params)
        if not isinstance(body, dict):
            raise JellyfinResponseError("Playlist page is not a JSON object.")
        items = body.get("Items") or []
        if not isinstance(items, list):
            raise JellyfinResponseError("Playlist page Items is not an array.")
        total = body.get("TotalRecordCount")
        return items, int(total) if total is not None else None

    async def add_to_playlist(self, playlist_id: str, item_ids: List[str]) -> None:
        params: Dict[str, Any] = {"ids": ",".join(item_ids)}
        if self._user_id:
            params["userId"] = self._user_id
        await self._request("POST", f"/Playlists/{playlist_id}/Items", params=params)

    async def remove_from_playlist(self, playlist_id: str, entry_ids: List[str]) -> None:
        await self._request(
            "DELETE",
            f"/Playlists/{playlist_id}/Items",
            params={"entryIds": ",".join(entry_ids)},
        )

    async def move_item(self, playlist_id: str, entry_id: str, new_index: int) -> None:
        await self._request("POST", f"/Playlists/{playlist_id}/Items/{entry_id}/Move/{new_index}")

    async def get_playlist_name(self, playlist_id: str) -> str:
        record = await self.get_item(playlist_id)
        return record.get("Name") or ""


__all__ = [
    "JellyfinClient",
    "JellyfinError",
    "JellyfinResponseError",
    "JellyfinTransportError",
]
