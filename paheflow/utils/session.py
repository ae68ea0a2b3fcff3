import asyncio
import logging
from typing import Dict, Mapping, Optional

import httpx

from paheflow.utils.http_utils import DownloadError, HttpSession, host_of

logger = logging.getLogger(__name__)


def parse_cookie_header(cookie: str) -> Dict[str, str]:
    """
    Split a ``Cookie`` header into a mapping.

    A bare name without ``=`` maps to ``"true"``; values may themselves hold ``=``.
    """
    cookies = {}
    for part in cookie.split(";"):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        cookies[name.strip()] = value if sep else "true"
    return cookies


class SessionStore:
    """
    Cookies collected while walking the provider's redirect chain.

    Values are kept per host. A request to any host carries every stored
    cookie, with the target host's own values winning on name clashes, so the
    session opened on the origin follows the chain across hosts. Merges never
    drop a name; a newer value for the same name replaces the old one.
    """

    def __init__(self, origin: str):
        self.origin = origin.rstrip("/")
        self._jar: Dict[str, Dict[str, str]] = {}
        self._lock = asyncio.Lock()

    @property
    def origin_host(self) -> str:
        return host_of(self.origin)

    def has_session(self) -> bool:
        return bool(self._jar.get(self.origin_host))

    async def merge(self, url_or_host: str, cookies: Mapping[str, str] | str | None) -> None:
        if not cookies:
            return
        if isinstance(cookies, str):
            cookies = parse_cookie_header(cookies)
        host = host_of(url_or_host)
        async with self._lock:
            self._jar.setdefault(host, {}).update(cookies)

    async def cookies_for(self, url: str) -> Dict[str, str]:
        host = host_of(url)
        async with self._lock:
            merged = {}
            for jar_host, values in self._jar.items():
                if jar_host != host:
                    merged.update(values)
            merged.update(self._jar.get(host, {}))
            return merged

    async def snapshot(self) -> Dict[str, Dict[str, str]]:
        async with self._lock:
            return {host: dict(values) for host, values in self._jar.items()}

    async def clear(self) -> None:
        async with self._lock:
            self._jar.clear()

    async def ensure_session(self, client: HttpSession, headers: Optional[dict] = None) -> bool:
        """
        Make sure the origin handed out its session cookies.

        Cheap when a session already exists: no request is made and nothing is
        refreshed. Transport failures are reported as ``False``, never raised.
        """
        if self.has_session():
            return True

        try:
            response = await client.get(f"{self.origin}/", headers=headers)
        except (httpx.HTTPError, DownloadError) as e:
            logger.warning("Session bootstrap against %s failed: %s", self.origin, e)
            return False

        await self.merge(self.origin, response.cookies)
        logger.debug("Session bootstrapped with %d cookies (status=%s)", len(response.cookies), response.status)
        return True
