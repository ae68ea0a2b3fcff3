"""
Pytest configuration.

Unit tests run against an in-memory upstream served through ``httpx.MockTransport``.
Live test URLs are loaded from environment variables for privacy.
Locally, add them to your .env file. For CI/CD, configure GitHub Secrets.
"""

import base64
import os
from pathlib import Path

import httpx
import pytest
from dotenv import load_dotenv

from paheflow.utils.http_utils import HttpSession

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

ORIGIN = "https://animepahe.com"
FRAME = "x" * 16


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


def reply(status_code: int = 200, **kwargs):
    """Response factory, so every request gets a fresh ``httpx.Response``."""
    return lambda request: httpx.Response(status_code, **kwargs)


class FakeUpstream:
    """
    Routes requests by exact ``(method, url)``.

    Each route holds a queue of responders; they are served in order and the
    last one keeps answering once the queue is drained. Unknown routes get 404.
    """

    def __init__(self):
        self.routes = {}
        self.calls: list[httpx.Request] = []

    def on(self, method: str, url: str, *responders):
        self.routes[(method, url)] = list(responders)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, str(request.url)))
        if not queue:
            return httpx.Response(404, text="not found")
        responder = queue[0] if len(queue) == 1 else queue.pop(0)
        return responder(request)

    def count(self, method: str, url: str) -> int:
        return sum(1 for call in self.calls if call.method == method and str(call.url) == url)

    def requests_to(self, method: str, url: str) -> list[httpx.Request]:
        return [call for call in self.calls if call.method == method and str(call.url) == url]


def scramble_link(link: str) -> str:
    """Build an ad-gate ``ysmm`` token that descrambles to ``link``."""
    chars = list(base64.b64encode((FRAME + link + FRAME).encode()).decode())
    digits = [index for index, char in enumerate(chars) if char.isdigit()]
    for first, second in zip(digits[0::2], digits[1::2]):
        value = int(chars[first]) ^ int(chars[second])
        if value < 10:
            chars[first] = str(value)

    half = (len(chars) + 1) // 2
    evens, odds = chars[:half], chars[half:][::-1]
    token = []
    for index in range(len(chars)):
        token.append(evens[index // 2] if index % 2 == 0 else odds[index // 2])
    return "".join(token)


def encode_cipher(text: str, key: str, offset: int, base: int) -> str:
    """Inverse of the kwik substitution cipher, for bases up to 10."""
    assert base <= 10
    encoded = []
    for char in text:
        value = ord(char) + offset
        digits = ""
        while value:
            digits = key[value % base] + digits
            value //= base
        encoded.append((digits or key[0]) + key[base])
    return "".join(encoded)


def kwik_page(form_html: str, key: str = "abcdefghij", offset: int = 17, base: int = 6) -> str:
    payload = encode_cipher(form_html, key, offset, base)
    return (
        "<html><body><script>eval(function(h,u,n,t,e,r){return decodeURIComponent(escape(r))}"
        f'("{payload}",53,"{key}",{offset},{base},42))</script></body></html>'
    )


def download_form(action: str, token: str) -> str:
    return (
        f'<form action="{action}" method="POST">'
        f'<input type="hidden" name="_token" value="{token}"></form>'
    )


def mount_quality(upstream: FakeUpstream, name: str, final_url: str, gate_misses: int = 0, post_misses: int = 0):
    """Serve the whole ad-gate → kwik → token exchange chain for one quality token."""
    gate_url = f"https://pahe.win/{name}"
    target_url = f"https://pahe.win/gate/{name}"
    kwik_url = f"https://kwik.cx/f/{name}"
    action_url = f"https://kwik.cx/d/{name}"

    upstream.on("GET", gate_url, reply(302, headers={"location": target_url}))
    upstream.on(
        "GET",
        target_url,
        *([reply(302)] * gate_misses),
        reply(
            200,
            text=f"<script>var ysmm = '{scramble_link(kwik_url)}';</script>",
            headers={"set-cookie": f"gate_{name}=ok; Path=/"},
        ),
    )
    upstream.on(
        "GET",
        kwik_url,
        reply(
            200,
            text=kwik_page(download_form(action_url, f"tok-{name}")),
            headers={"set-cookie": "kwik_session=s3cr3t; Path=/"},
        ),
    )
    upstream.on(
        "POST",
        action_url,
        *([reply(419)] * post_misses),
        reply(302, headers={"location": final_url}),
    )
    return gate_url


@pytest.fixture
def upstream() -> FakeUpstream:
    site = FakeUpstream()
    site.on("GET", f"{ORIGIN}/", reply(200, text="home", headers={"set-cookie": "__ddg1=origin; Path=/"}))
    return site


@pytest.fixture
def http_session(upstream) -> HttpSession:
    return HttpSession(client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)))


@pytest.fixture
def get_test_url():
    """
    Factory fixture that returns a function to get test URLs from environment.

    Usage:
        def test_something(get_test_url):
            url = get_test_url("AnimePahe")
            if url is None:
                pytest.skip("TEST_URL_ANIMEPAHE not set")
    """

    def _get_url(extractor_name: str) -> str | None:
        env_var = f"TEST_URL_{extractor_name.upper()}"
        return os.environ.get(env_var)

    return _get_url
