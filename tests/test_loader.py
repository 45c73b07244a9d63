import pytest

from playlist_curator.services.changeset import PlaylistState
from playlist_curator.services.jellyfin_client import JellyfinResponseError, JellyfinTransportError
from playlist_curator.services.loader import SMALL_PAGE_SIZE, PaginatedLoader


@pytest.fixture
def state():
    return PlaylistState(playlist_id="pl1")


async def test_load_follows_pages_until_complete(jellyfin, fake_server, state):
    pauses = []

    async def pause():
        pauses.append(len(state.entries))

    loader = PaginatedLoader(jellyfin, state, page_size=3, pause=pause)
    await loader.load()

    assert [entry.entry_id for entry in state.entries] == ["e1", "e2", "e3", "e4"]
    assert state.total == 4
    assert state.cursor == 4
    assert state.is_complete
    assert pauses == [3]
    assert [call[1]["startIndex"] for call in fake_server.calls_of("page")] == ["0", "3"]


async def test_page_request_asks_for_metadata_fields(jellyfin, fake_server, state):
    await PaginatedLoader(jellyfin, state, page_size=10).load()

    params = fake_server.calls_of("page")[0][1]
    assert params["fields"] == "PremiereDate,ProductionYear,SortName,Tags,Taglines"
    assert state.entries[0].tags == ["classic", "noir"]


async def test_without_auto_continue_one_page_at_a_time(jellyfin, state):
    loader = PaginatedLoader(jellyfin, state, page_size=3, auto_continue=False)

    await loader.load()
    assert len(state.entries) == 3
    assert not state.is_complete

    await loader.load(reset=False)
    assert len(state.entries) == 4
    assert state.is_complete


async def test_failed_page_keeps_what_was_loaded(jellyfin, fake_server, state):
    fake_server.fail("page", 2)
    loader = PaginatedLoader(jellyfin, state, page_size=2)

    with pytest.raises(JellyfinTransportError):
        await loader.load()

    assert [entry.entry_id for entry in state.entries] == ["e1", "e2"]
    assert state.cursor == 2
    assert not state.is_complete

    await loader.load(reset=False)
    assert state.is_complete


async def test_reset_starts_over(jellyfin, state):
    loader = PaginatedLoader(jellyfin, state, page_size=10)
    await loader.load()
    await loader.load(reset=True)

    assert len(state.entries) == 4


async def test_malformed_item_is_a_response_error(jellyfin, fake_server, state):
    fake_server.records["m2"].pop("Id")

    with pytest.raises(JellyfinResponseError):
        await PaginatedLoader(jellyfin, state, page_size=10).load()


def test_small_pages_when_large_pages_are_not_preferred(jellyfin, state):
    assert PaginatedLoader(jellyfin, state, page_size=500, prefer_large_pages=False).page_size == SMALL_PAGE_SIZE
    with pytest.raises(ValueError):
        PaginatedLoader(jellyfin, state, page_size=0)
