import httpx

from playlist_curator.services.connection_tester import JellyfinConnectionTester, check_jellyfin_connection


def make_tester(handler):
    return JellyfinConnectionTester(timeout=1.0, transport=httpx.MockTransport(handler))


def handler_reachable_at(host, api_key="good"):
    def handler(request):
        if request.url.host != host:
            raise httpx.ConnectError("unreachable", request=request)
        if request.url.path == "/System/Info":
            return httpx.Response(200 if request.headers.get("X-Emby-Token") == api_key else 401)
        return httpx.Response(200, json={"ServerName": "fake"})

    return handler


async def test_primary_url_works():
    success, url, error = await check_jellyfin_connection(
        "http://jellyfin:8096", "good", tester=make_tester(handler_reachable_at("jellyfin"))
    )

    assert success
    assert url == "http://jellyfin:8096"
    assert error is None


async def test_falls_back_to_loopback():
    success, url, error = await check_jellyfin_connection(
        "http://jellyfin:8096", tester=make_tester(handler_reachable_at("localhost"))
    )

    assert success
    assert url == "http://localhost:8096"


async def test_unreachable_server_has_troubleshooting_steps():
    success, url, error = await check_jellyfin_connection(
        "http://jellyfin:8096", tester=make_tester(handler_reachable_at("nowhere"))
    )

    assert not success
    assert url is None
    assert "Cannot reach" in str(error)
    assert error.troubleshooting_steps


async def test_bad_api_key_is_reported():
    success, url, error = await check_jellyfin_connection(
        "http://jellyfin:8096", "wrong", tester=make_tester(handler_reachable_at("jellyfin"))
    )

    assert not success
    assert url == "http://jellyfin:8096"
    assert "API key" in str(error)
