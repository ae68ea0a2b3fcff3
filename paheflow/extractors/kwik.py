import logging
import re
from typing import Optional, Tuple
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from paheflow.configs import settings
from paheflow.const import ADFLY_TARGET_STATUS, KWIK_TARGET_STATUS
from paheflow.extractors.base import ParseError, SessionBootstrapFailed, TransportFailure
from paheflow.utils.adfly import descramble, extract_ysmm
from paheflow.utils.cipher import decode_params, parse_cipher_params
from paheflow.utils.http_utils import FetchResponse, HttpSession
from paheflow.utils.retry import poll_until_status
from paheflow.utils.session import SessionStore

logger = logging.getLogger(__name__)

FORM_ACTION_RE = re.compile(r'action="([^"]+)"')
FORM_TOKEN_RE = re.compile(r'value="([^"]+)"')


def parse_download_form(html: str) -> Tuple[str, str]:
    """Return the ``(action, _token)`` pair of the decrypted kwik download form."""
    soup = BeautifulSoup(html, "lxml")
    form = soup.find("form")
    action = form.get("action") if form else None
    token_input = soup.find("input", attrs={"name": "_token"}) or soup.find("input", attrs={"value": True})
    token = token_input.get("value") if token_input else None

    # The decrypted markup is sometimes a fragment lxml refuses to treat as a form.
    if not action:
        match = FORM_ACTION_RE.search(html)
        action = match.group(1) if match else None
    if not token:
        match = FORM_TOKEN_RE.search(html)
        token = match.group(1) if match else None

    if not action or not token:
        raise ParseError("Failed to extract form action and token from decrypted kwik page")
    return action, token


class KwikResolver:
    """Walks an ad-gate link through kwik to the final stream location.

    Both polling loops run against hosts that answer at random with the wrong
    status, so each retries at a fixed rate until the expected status shows up
    or ``max_attempts`` polls have been spent.
    """

    def __init__(
        self,
        client: HttpSession,
        session: SessionStore,
        kwik_referer: Optional[str] = None,
        max_attempts: Optional[int] = None,
        bootstrap_attempts: Optional[int] = None,
    ):
        self.client = client
        self.session = session
        self.kwik_referer = kwik_referer or settings.kwik_referer
        self.max_attempts = max_attempts or settings.max_attempts
        self.bootstrap_attempts = bootstrap_attempts or settings.bootstrap_attempts

    async def _send(self, method: str, url: str, **kwargs) -> FetchResponse:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {url} failed: {e!r}") from e

    async def open_session(self) -> None:
        for attempt in range(1, self.bootstrap_attempts + 1):
            if await self.session.ensure_session(self.client):
                return
            logger.warning("Session bootstrap attempt %d/%d failed", attempt, self.bootstrap_attempts)
        raise SessionBootstrapFailed(f"Could not open a session on {self.session.origin}")

    async def bypass_adfly(self, adfly_url: str) -> str:
        """Poll the ad-gate until it serves its page and return the kwik link hidden in it."""
        await self.open_session()

        async def hop() -> FetchResponse:
            gate = await self._send(
                "GET", adfly_url, cookies=await self.session.cookies_for(adfly_url), follow_redirects=False
            )
            target = urljoin(gate.url, gate.location) if gate.location else gate.url
            response = await self._send(
                "GET", target, cookies=await self.session.cookies_for(target), follow_redirects=False
            )
            await self.session.merge(response.url, response.cookies)
            return response

        response = await poll_until_status(hop, ADFLY_TARGET_STATUS, "adfly", max_attempts=self.max_attempts)
        kwik_url = descramble(extract_ysmm(response.text))
        if not kwik_url:
            raise ParseError(f"Ad-gate token for {adfly_url} carries no link")
        logger.debug("Ad-gate %s resolved to %s", adfly_url, kwik_url)
        return kwik_url

    async def fetch_download_form(self, kwik_url: str) -> Tuple[FetchResponse, str, str]:
        page = await self._send(
            "GET", kwik_url, headers={"referer": self.kwik_referer}, cookies=await self.session.cookies_for(kwik_url)
        )
        await self.session.merge(page.url, page.cookies)

        decrypted = decode_params(parse_cipher_params(page.text))
        action, token = parse_download_form(decrypted)
        return page, action, token

    async def exchange_token(self, action: str, token: str, referer: str) -> str:
        """Post the form token until kwik redirects, and return where it redirects to."""

        async def submit() -> FetchResponse:
            return await self._send(
                "POST",
                action,
                data={"_token": token},
                headers={"referer": referer},
                cookies=await self.session.cookies_for(action),
                follow_redirects=False,
            )

        response = await poll_until_status(submit, KWIK_TARGET_STATUS, "kwik", max_attempts=self.max_attempts)
        if not response.location:
            raise ParseError(f"kwik answered {KWIK_TARGET_STATUS} without a location for {action}")
        return response.location

    async def resolve_stream(self, adfly_url: str) -> Tuple[str, str]:
        """Return the stream URL behind ``adfly_url`` and the kwik page that handed it out."""
        kwik_url = await self.bypass_adfly(adfly_url)
        page, action, token = await self.fetch_download_form(kwik_url)
        stream_url = await self.exchange_token(action, token, referer=page.url)
        logger.info("Resolved %s to stream %s", adfly_url, stream_url)
        return stream_url, page.url

    async def resolve(self, adfly_url: str) -> str:
        stream_url, _ = await self.resolve_stream(adfly_url)
        return stream_url
