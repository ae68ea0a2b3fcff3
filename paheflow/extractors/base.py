from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import asyncio
import httpx
import logging

from paheflow.schemas import RetryState
from paheflow.utils.http_utils import DownloadError, FetchResponse, HttpSession

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    EXTRACTION = "extraction"
    PARSE = "parse"
    SESSION_BOOTSTRAP = "session_bootstrap"
    RETRY_EXHAUSTED = "retry_exhausted"
    LOOKUP_MISS = "lookup_miss"
    TRANSPORT = "transport"


class ExtractorError(Exception):
    """Base exception for all extractors."""

    kind = ErrorKind.EXTRACTION
    retryable = False


class ParseError(ExtractorError):
    """An expected pattern was not found in a page or script; the upstream format changed."""

    kind = ErrorKind.PARSE


class SessionBootstrapFailed(ExtractorError):
    """The provider origin could not be reached to open a session."""

    kind = ErrorKind.SESSION_BOOTSTRAP
    retryable = True


class RetryExhausted(ExtractorError):
    """A polling loop hit its attempt cap without seeing the status it waits for."""

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, message: str, loop: str, state: RetryState):
        super().__init__(message)
        self.loop = loop
        self.state = state


class LookupMiss(ExtractorError):
    """The requested episode number is not on the release page."""

    kind = ErrorKind.LOOKUP_MISS

    def __init__(self, message: str, episode: Optional[int] = None):
        super().__init__(message)
        self.episode = episode


class TransportFailure(ExtractorError):
    """The network gave out (timeout, reset, refused) before an answer arrived."""

    kind = ErrorKind.TRANSPORT


class BaseExtractor(ABC):
    """Base class for all URL extractors.

    - Built-in retry/backoff for transient network errors
    - Per-request cookies, headers and redirect control through ``HttpSession``
    """

    def __init__(self, request_headers: dict, client: Optional[HttpSession] = None):
        self.base_headers = dict(request_headers or {})
        self._owns_client = client is None
        self.client = client or HttpSession(headers=self.base_headers)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _make_request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict] = None,
        cookies: Optional[Mapping[str, str]] = None,
        follow_redirects: bool = True,
        retries: int = 3,
        backoff_factor: float = 0.5,
        raise_on_status: bool = True,
        **kwargs,
    ) -> FetchResponse:
        """
        Make HTTP request with retry support for transient network errors.

        Parameters
        ----------
        retries : int
            Number of attempts for transient errors.
        backoff_factor : float
            Base for exponential backoff between retries.
        raise_on_status : bool
            If True, HTTP 4xx/5xx raises DownloadError (preserves status code).
        """
        attempt = 0
        last_exc = None

        while attempt < retries:
            try:
                response = await self.client.request(
                    method,
                    url,
                    headers=headers,
                    cookies=cookies,
                    follow_redirects=follow_redirects,
                    **kwargs,
                )
                if raise_on_status and response.status >= 400:
                    logger.debug(
                        "HTTP error for %s (status=%s) -- body preview: %s", url, response.status, response.text[:500]
                    )
                    raise DownloadError(response.status, f"HTTP error {response.status} while requesting {url}")
                return response

            except DownloadError:
                raise
            except httpx.TransportError as e:
                last_exc = e
                attempt += 1
                if attempt >= retries:
                    break
                sleep_for = backoff_factor * (2 ** (attempt - 1))
                logger.warning(
                    "Transient network error (attempt %s/%s) for %s: %s, retrying in %.1fs",
                    attempt,
                    retries,
                    url,
                    e,
                    sleep_for,
                )
                await asyncio.sleep(sleep_for)

        logger.error("All retries failed for %s: %s", url, last_exc)
        raise TransportFailure(f"Request failed for URL {url}: {str(last_exc)}")

    @abstractmethod
    async def extract(self, url: str, **kwargs) -> Any:
        """Extract playable streams from ``url``."""
        pass
