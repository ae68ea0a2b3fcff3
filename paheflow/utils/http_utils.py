import json
import logging
import ssl
import typing
from dataclasses import dataclass, field
from urllib import parse

import httpx
from starlette.requests import Request

from paheflow.configs import settings
from paheflow.const import SUPPORTED_REQUEST_HEADERS

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def build_default_ssl_context() -> ssl.SSLContext:
    """
    Build the default SSL context using the system trust store.
    """
    return ssl.create_default_context()


DEFAULT_SSL_CONTEXT = build_default_ssl_context()


def create_httpx_client(
    follow_redirects: bool = True,
    ssl_context: ssl.SSLContext | None = None,
    **kwargs,
) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient with the configured transport mounts and TLS verification.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        ssl_context (ssl.SSLContext | None): Explicit SSLContext to use. Defaults to the system trust store.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    if "transport" not in kwargs:
        kwargs.setdefault("mounts", settings.transport_config.get_mounts())
    kwargs.setdefault("timeout", settings.transport_config.timeout)

    return httpx.AsyncClient(
        follow_redirects=follow_redirects,
        verify=ssl_context or DEFAULT_SSL_CONTEXT,
        **kwargs,
    )


def cookie_header(cookies: typing.Mapping[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


@dataclass
class FetchResponse:
    """What the extraction pipeline needs from a single HTTP exchange."""

    status: int
    url: str
    text: str
    headers: httpx.Headers
    cookies: dict[str, str] = field(default_factory=dict)

    @property
    def location(self) -> str | None:
        return self.headers.get("location")

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "FetchResponse":
        return cls(
            status=response.status_code,
            url=str(response.url),
            text=response.text,
            headers=response.headers,
            cookies={cookie.name: cookie.value for cookie in response.cookies.jar},
        )

    def json(self) -> typing.Any:
        return json.loads(self.text)


class HttpSession:
    """
    Thin async HTTP collaborator used by the extractors.

    Cookies are always sent through an explicit ``cookie`` header so the caller's
    session store decides what goes on the wire, not the client's own jar.
    Redirect following is decided per call, and ``url`` on the returned
    response is the final effective URL.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, headers: dict | None = None):
        self._owns_client = client is None
        self._client = client or create_httpx_client(follow_redirects=False)
        self.base_headers = {"user-agent": settings.user_agent}
        self.base_headers.update(headers or {})

    async def __aenter__(self) -> "HttpSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build_headers(self, headers: dict | None, cookies: typing.Mapping[str, str] | None) -> dict:
        request_headers = self.base_headers.copy()
        if headers:
            request_headers.update({k.lower(): v for k, v in headers.items()})
        if cookies:
            request_headers["cookie"] = cookie_header(cookies)
        return request_headers

    async def request(
        self,
        method: str,
        url: str,
        headers: dict | None = None,
        cookies: typing.Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        **kwargs,
    ) -> FetchResponse:
        response = await self._client.request(
            method,
            url,
            headers=self._build_headers(headers, cookies),
            follow_redirects=follow_redirects,
            **kwargs,
        )
        # httpx stores every Set-Cookie in the client jar; only the caller's cookies may go out.
        self._client.cookies.clear()
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return FetchResponse.from_httpx(response)

    async def get(
        self,
        url: str,
        headers: dict | None = None,
        cookies: typing.Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        **kwargs,
    ) -> FetchResponse:
        return await self.request("GET", url, headers=headers, cookies=cookies, follow_redirects=follow_redirects, **kwargs)

    async def post(
        self,
        url: str,
        data: dict | None = None,
        headers: dict | None = None,
        cookies: typing.Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        **kwargs,
    ) -> FetchResponse:
        return await self.request(
            "POST", url, data=data, headers=headers, cookies=cookies, follow_redirects=follow_redirects, **kwargs
        )


def host_of(url: str) -> str:
    """Return the lowercase host of ``url``, or the input itself when it carries no scheme."""
    netloc = parse.urlparse(url).netloc
    return (netloc or url).lower().split(":")[0]


@dataclass
class ProxyRequestHeaders:
    request: dict
    response: dict


def get_proxy_headers(request: Request) -> ProxyRequestHeaders:
    """
    Extract forwarded headers from request headers and query parameters.

    Args:
        request (Request): Incoming HTTP request.

    Returns:
        ProxyRequestHeaders: Request and response headers to forward.
    """
    request_headers = {k: v for k, v in request.headers.items() if k in SUPPORTED_REQUEST_HEADERS}
    request_headers.update({k[2:].lower(): v for k, v in request.query_params.items() if k.startswith("h_")})
    response_headers = {k[2:].lower(): v for k, v in request.query_params.items() if k.startswith("r_")}
    return ProxyRequestHeaders(request_headers, response_headers)
