"""
Jellyfin connection checks with troubleshooting guidance.
Tries the configured URL first, then the usual loopback/container aliases.
"""

import logging
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import httpx


logger = logging.getLogger(__name__)

DEFAULT_PORT = 8096


class JellyfinConnectionError(Exception):
    """Raised when Jellyfin cannot be reached, with troubleshooting guidance"""

    def __init__(self, message: str, troubleshooting_steps: List[str]):
        super().__init__(message)
        self.troubleshooting_steps = troubleshooting_steps


class JellyfinConnectionTester:
    """Checks Jellyfin server reachability and token validity"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def test_connection(self, url: str) -> bool:
        """
        Check that /System/Info/Public answers at the given URL.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http:
                response = await http.get(f"{url.rstrip('/')}/System/Info/Public")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Connection test failed for {url}: {e}")
            return False

    async def test_token(self, url: str, api_key: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http:
                response = await http.get(
                    f"{url.rstrip('/')}/System/Info",
                    headers={"X-Emby-Token": api_key},
                )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Token check failed for {url}: {e}")
            return False

    async def test_with_fallbacks(self, url: str) -> Tuple[bool, Optional[str]]:
        """
        Test the primary URL and fallback alternatives.
        Returns (success, working_url) tuple.
        """
        if await self.test_connection(url):
            return True, url

        parsed = urlparse(url)
        if not parsed.hostname:
            return False, None
        scheme = parsed.scheme or "http"
        port = parsed.port or DEFAULT_PORT

        for host in self._generate_fallback_hosts(parsed.hostname):
            fallback_url = f"{scheme}://{host}:{port}"
            if await self.test_connection(fallback_url):
                logger.info(f"Found working fallback URL: {fallback_url}")
                return True, fallback_url

        return False, None

    def get_detailed_error_info(self, url: str, reachable: bool) -> JellyfinConnectionError:
        if reachable:
            message = f"Jellyfin at {url} rejected the API key."
            troubleshooting_steps = [
                "Create an API key under Dashboard > API Keys",
                "Check JELLYFIN_API_KEY in your .env file",
                "Make sure the key was not revoked",
            ]
        else:
            message = f"Cannot reach Jellyfin server at {url}. Server may be down or unreachable."
            troubleshooting_steps = [
                "Verify the Jellyfin server is running",
                "Check the JELLYFIN_URL in your .env file",
                "Verify the port (usually 8096, or 8920 for HTTPS) is correct",
                "Try opening the Jellyfin web interface in a browser",
                "Check firewall settings on both client and server",
            ]
        return JellyfinConnectionError(message, troubleshooting_steps)

    def _generate_fallback_hosts(self, original_host: str) -> List[str]:
        candidates = ["127.0.0.1", "localhost", "host.docker.internal"]
        return [host for host in candidates if host != original_host]


async def check_jellyfin_connection(
    url: str,
    api_key: str = "",
    tester: Optional[JellyfinConnectionTester] = None,
) -> Tuple[bool, Optional[str], Optional[JellyfinConnectionError]]:
    """
    Check Jellyfin reachability (with fallbacks) and, when given, the API key.

    Returns:
        (success, working_url, error_info)
    """
    tester = tester or JellyfinConnectionTester()

    reachable, working_url = await tester.test_with_fallbacks(url)
    if not reachable:
        return False, None, tester.get_detailed_error_info(url, reachable=False)

    if api_key and not await tester.test_token(working_url, api_key):
        return False, working_url, tester.get_detailed_error_info(working_url, reachable=True)

    return True, working_url, None
