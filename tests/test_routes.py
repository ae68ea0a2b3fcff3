import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ORIGIN, mount_quality, reply
from paheflow.configs import settings
from paheflow.main import app
from paheflow.utils import http_utils
from paheflow.utils.session import SessionStore

LINKS_URL = f"{ORIGIN}/api?m=links&id=5&session=abc&p=kwik"
RELEASE_URL = f"{ORIGIN}/api?m=release&id=5&sort=episode_asc&page=1"
RELEASE_PAGE = (
    '{"total": 1, "per_page": 30, "current_page": 1, "last_page": 1, "data": ['
    '{"id": 1, "anime_id": 5, "episode": 1, "session": "abc", "title": "Pilot"}]}'
)


@pytest.fixture
def client(upstream, monkeypatch):
    monkeypatch.setattr(
        http_utils,
        "create_httpx_client",
        lambda **kwargs: httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
    )
    monkeypatch.setattr(settings, "api_password", None)
    monkeypatch.setattr(app.state, "session_store", SessionStore(ORIGIN))
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_streams(upstream, client):
    gate = mount_quality(upstream, "R1", "https://cdn.example.com/r1.mp4")
    upstream.on("GET", LINKS_URL, reply(200, json={"data": [{"1080p": {"kwik_adfly": gate, "audio": "jpn"}}]}))

    response = client.get("/extractor/streams", params={"d": LINKS_URL + "!!TRUE!!"})

    assert response.status_code == 200
    body = response.json()
    assert body["failures"] == []
    assert body["candidates"][0]["final_url"] == "https://cdn.example.com/r1.mp4"
    assert body["candidates"][0]["quality_label"] == "1080"
    assert body["candidates"][0]["name"] == "KWIK - 1080p [jpn]"


def test_streams_skip_policy(upstream, client):
    upstream.on("GET", LINKS_URL, reply(200, json={"720": {"kwik_adfly": "https://pahe.win/BROKEN"}}))
    upstream.on("GET", "https://pahe.win/BROKEN", reply(200, text="no token"))

    response = client.get("/extractor/streams", params={"d": LINKS_URL, "on_error": "skip"})

    assert response.status_code == 200
    assert response.json()["candidates"] == []
    assert response.json()["failures"][0]["quality"] == "720"


def test_streams_missing_episode_is_404(upstream, client):
    upstream.on("GET", RELEASE_URL, reply(200, text=RELEASE_PAGE))

    response = client.get("/extractor/streams", params={"d": RELEASE_URL + "&ep=9!!FALSE!!"})

    assert response.status_code == 404


def test_streams_exhausted_loop_is_502(upstream, client, monkeypatch):
    monkeypatch.setattr(settings, "max_attempts", 3)
    upstream.on("GET", LINKS_URL, reply(200, json={"720": {"kwik_adfly": "https://pahe.win/SLOW"}}))
    upstream.on("GET", "https://pahe.win/SLOW", reply(503))

    response = client.get("/extractor/streams", params={"d": LINKS_URL})

    assert response.status_code == 502
    # each poll hits the gate and then its (unredirected) target
    assert upstream.count("GET", "https://pahe.win/SLOW") == 6


def test_streams_upstream_status_is_forwarded(upstream, client):
    upstream.on("GET", LINKS_URL, reply(403, text="blocked"))

    response = client.get("/extractor/streams", params={"d": LINKS_URL})

    assert response.status_code == 403


def test_episodes(upstream, client):
    upstream.on("GET", RELEASE_URL, reply(200, text=RELEASE_PAGE))

    response = client.get("/extractor/episodes", params={"anime_id": "5"})

    assert response.status_code == 200
    assert response.json() == [
        {
            "descriptor": f"{LINKS_URL}!!TRUE!!",
            "episode": 1,
            "title": "Pilot",
            "snapshot": None,
            "created_at": None,
        }
    ]


def test_api_password_is_enforced(client, monkeypatch):
    monkeypatch.setattr(settings, "api_password", "secret")

    assert client.get("/extractor/episodes", params={"anime_id": "5"}).status_code == 403
    assert client.get("/health").status_code == 200


def test_streams_upstream_timeout_is_502(upstream, client):
    def timed_out(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gate = mount_quality(upstream, "R1", "https://cdn.example.com/r1.mp4")
    upstream.on("GET", LINKS_URL, reply(200, json={"720": {"kwik_adfly": gate}}))
    upstream.on("GET", "https://pahe.win/gate/R1", timed_out)

    response = client.get("/extractor/streams", params={"d": LINKS_URL})

    assert response.status_code == 502
    assert "timed out" in response.json()["detail"]
