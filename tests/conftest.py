"""Test configuration and fixtures"""

import copy
import json
import re
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

from playlist_curator.config import Settings
from playlist_curator.services.jellyfin_client import JellyfinClient
from playlist_curator.services.session import PlaylistSession

BASE_URL = "http://jellyfin.test"
API_KEY = "secret-key"
USER_ID = "user-1"
PLAYLIST_ID = "pl1"


def make_record(item_id: str, name: str, **extra: Any) -> Dict[str, Any]:
    record = {
        "Id": item_id,
        "Name": name,
        "Type": "Movie",
        "PremiereDate": None,
        "ProductionYear": None,
        "SortName": name.lower(),
        "Tags": [],
        "Taglines": [],
        "Overview": f"About {name}",
        "Genres": ["Drama"],
        "ProviderIds": {"Imdb": f"tt-{item_id}"},
    }
    record.update(extra)
    return record


def default_library() -> Dict[str, Dict[str, Any]]:
    return {
        "m1": make_record(
            "m1",
            "Casablanca",
            PremiereDate="1942-11-26T00:00:00.0000000Z",
            ProductionYear=1942,
            Tags=["classic", "noir"],
            Taglines=["They had a date with fate in Casablanca!"],
        ),
        "m2": make_record("m2", "Alien", PremiereDate="1979-05-25T00:00:00.0000000Z", ProductionYear=1979, Tags=["sci-fi"]),
        "m3": make_record("m3", "Brazil", PremiereDate="1985-02-20T00:00:00.0000000Z", ProductionYear=1985),
        "m4": make_record("m4", "Zodiac", PremiereDate="2007-03-02T00:00:00.0000000Z", ProductionYear=2007),
        "m5": make_record("m5", "Metropolis", PremiereDate="1927-01-10T00:00:00.0000000Z", ProductionYear=1927),
    }


class FakeJellyfin:
    """In-memory stand-in for the parts of the Jellyfin API the curator uses."""

    def __init__(self, library: Dict[str, Dict[str, Any]], playlist: List[str]) -> None:
        self.records = library
        self.records[PLAYLIST_ID] = make_record(PLAYLIST_ID, "Movie Night", Type="Playlist")
        self.playlist: List[Dict[str, str]] = []
        self._next_entry = 1
        for item_id in playlist:
            self.append(item_id)

        self.calls: List[tuple] = []
        self.counts: Dict[str, int] = defaultdict(int)
        self.failures: Dict[str, Set[int]] = defaultdict(set)
        self.omit_entry_ids = False

    def append(self, item_id: str) -> str:
        entry_id = f"e{self._next_entry}"
        self._next_entry += 1
        self.playlist.append({"entry_id": entry_id, "item_id": item_id})
        return entry_id

    @property
    def order(self) -> List[str]:
        return [entry["item_id"] for entry in self.playlist]

    @property
    def entry_order(self) -> List[str]:
        return [entry["entry_id"] for entry in self.playlist]

    def calls_of(self, action: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == action]

    def fail(self, action: str, *call_numbers: int) -> None:
        self.failures[action].update(call_numbers)

    def _dto(self, entry: Dict[str, str]) -> Dict[str, Any]:
        dto = copy.deepcopy(self.records[entry["item_id"]])
        if not self.omit_entry_ids:
            dto["PlaylistItemId"] = entry["entry_id"]
        return dto

    def _record(self, action: str, params: Dict[str, Any]) -> Optional[httpx.Response]:
        self.counts[action] += 1
        self.calls.append((action, params))
        if self.counts[action] in self.failures[action]:
            return httpx.Response(500, json={"error": "boom"})
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        params = dict(request.url.params)

        if path == "/System/Info/Public":
            return httpx.Response(200, json={"ServerName": "fake", "Version": "10.9.0"})
        if path == "/System/Info":
            if request.headers.get("X-Emby-Token") != API_KEY:
                return httpx.Response(401)
            return httpx.Response(200, json={"ServerName": "fake"})
        if path == "/Users/Me":
            return httpx.Response(200, json={"Id": USER_ID})

        if method == "GET" and path == f"/Users/{USER_ID}/Items":
            return httpx.Response(200, json={"Items": [{"Id": PLAYLIST_ID, "Name": "Movie Night"}], "TotalRecordCount": 1})

        match = re.fullmatch(rf"/Users/{USER_ID}/Items/([^/]+)", path)
        if method == "GET" and match:
            failure = self._record("get_item", {"item_id": match.group(1)})
            if failure is not None:
                return failure
            record = self.records.get(match.group(1))
            if record is None:
                return httpx.Response(404)
            return httpx.Response(200, json=copy.deepcopy(record))

        match = re.fullmatch(r"/Items/([^/]+)", path)
        if method == "POST" and match:
            failure = self._record("update_item", {"item_id": match.group(1)})
            if failure is not None:
                return failure
            self.records[match.group(1)] = json.loads(request.content)
            return httpx.Response(204)

        match = re.fullmatch(rf"/Playlists/{PLAYLIST_ID}/Items/([^/]+)/Move/(\d+)", path)
        if method == "POST" and match:
            failure = self._record("move", {"entry_id": match.group(1), "index": int(match.group(2))})
            if failure is not None:
                return failure
            positions = {entry["entry_id"]: index for index, entry in enumerate(self.playlist)}
            if match.group(1) not in positions:
                return httpx.Response(404)
            entry = self.playlist.pop(positions[match.group(1)])
            self.playlist.insert(int(match.group(2)), entry)
            return httpx.Response(204)

        if path == f"/Playlists/{PLAYLIST_ID}/Items":
            if method == "GET":
                failure = self._record("page", params)
                if failure is not None:
                    return failure
                start = int(params.get("startIndex", 0))
                limit = int(params.get("limit", 100))
                page = [self._dto(entry) for entry in self.playlist[start:start + limit]]
                return httpx.Response(200, json={"Items": page, "TotalRecordCount": len(self.playlist), "StartIndex": start})
            if method == "POST":
                ids = [item_id for item_id in params.get("ids", "").split(",") if item_id]
                failure = self._record("add", {"ids": ids})
                if failure is not None:
                    return failure
                for item_id in ids:
                    self.append(item_id)
                return httpx.Response(204)
            if method == "DELETE":
                entry_ids = set(params.get("entryIds", "").split(","))
                failure = self._record("remove", {"entry_ids": sorted(entry_ids)})
                if failure is not None:
                    return failure
                self.playlist = [entry for entry in self.playlist if entry["entry_id"] not in entry_ids]
                return httpx.Response(204)

        return httpx.Response(404, json={"error": f"unhandled {method} {path}"})


@pytest.fixture
def fake_server():
    """Playlist of Casablanca, Alien, Brazil, Zodiac (entries e1..e4)."""
    return FakeJellyfin(default_library(), ["m1", "m2", "m3", "m4"])


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        jellyfin_url=BASE_URL,
        jellyfin_api_key=API_KEY,
        jellyfin_user_id=USER_ID,
        page_size=2,
        move_throttle_ms=0,
        batch_size=100,
        auto_load_all=True,
    )


@pytest.fixture
async def jellyfin(fake_server):
    client = JellyfinClient(BASE_URL, API_KEY, user_id=USER_ID, transport=httpx.MockTransport(fake_server.handler))
    yield client
    await client.aclose()


@pytest.fixture
def session(jellyfin, test_settings):
    return PlaylistSession(jellyfin, PLAYLIST_ID, test_settings)


@pytest.fixture
async def loaded_session(session):
    await session.load()
    return session
