import io
import json
from urllib.parse import quote
from wsgiref.util import setup_testing_defaults
from xml.etree import ElementTree as ET

import httpx
import pytest

from conftest import no_sleep
from pingcast.config import AppConfig, ServerConfig
from pingcast.runner import PingRunner, RunConfig
from pingcast.server import PingApp
from pingcast.state import RateLimiter

ATOM = "{http://www.w3.org/2005/Atom}"


class Client:
    """Minimal WSGI test client."""

    def __init__(self, app):
        self.app = app

    def request(
        self, method, path, body=b"", query="", remote="203.0.113.7", content_length=None
    ):
        environ = {}
        setup_testing_defaults(environ)
        environ.update(
            {
                "REQUEST_METHOD": method,
                "PATH_INFO": path,
                "QUERY_STRING": query,
                "REMOTE_ADDR": remote,
                "CONTENT_LENGTH": str(len(body)) if content_length is None else content_length,
                "wsgi.input": io.BytesIO(body),
            }
        )
        captured = {}

        def start_response(status, headers):
            captured["status"] = int(status.split(" ", 1)[0])
            captured["headers"] = dict(headers)

        chunks = self.app(environ, start_response)
        return captured["status"], captured["headers"], b"".join(chunks)

    def post_json(self, path, payload, **kwargs):
        return self.request("POST", path, json.dumps(payload).encode("utf-8"), **kwargs)


@pytest.fixture
def app(services, ok_handler):
    config = AppConfig(services=services, public_base_url="https://pings.example.com")
    runner = PingRunner(
        RunConfig.from_app_config(config),
        transport=httpx.MockTransport(ok_handler),
        sleep=no_sleep,
    )
    return PingApp(config, runner=runner)


@pytest.fixture
def client(app):
    return Client(app)


def test_ping_success(client):
    status, headers, body = client.post_json("/ping", {"urls": ["https://example.com/post"]})

    assert status == 200
    assert headers["Content-Type"].startswith("application/json")
    assert headers["Access-Control-Allow-Origin"] == "*"
    payload = json.loads(body)
    assert payload["success"] is True
    assert [r["service"] for r in payload["results"]] == ["Hub", "A", "B"]
    assert isinstance(payload["totalTime"], int)
    assert payload["feedUrl"].startswith("https://pings.example.com/feed?urls=")


def test_api_alias_path(client):
    status, _, _ = client.post_json("/api/ping", {"urls": ["https://example.com/"]})
    assert status == 200


def test_options_preflight(client):
    status, headers, body = client.request("OPTIONS", "/ping")

    assert status == 204
    assert body == b""
    assert "POST" in headers["Access-Control-Allow-Methods"]


def test_get_on_ping_is_method_not_allowed(client):
    status, headers, body = client.request("GET", "/ping")

    assert status == 405
    assert headers["Allow"] == "POST, OPTIONS"
    assert json.loads(body) == {"success": False, "error": "Method not allowed"}


def test_invalid_json_is_bad_request(client):
    status, _, body = client.request("POST", "/ping", b"{not json")

    assert status == 400
    assert json.loads(body)["error"] == "Request body must be valid JSON"


def test_private_url_is_rejected_with_details(client):
    status, _, body = client.post_json("/ping", {"urls": ["http://127.0.0.1/admin"]})

    payload = json.loads(body)
    assert status == 400
    assert payload["error"] == "Invalid request"
    assert payload["details"][0].startswith("http://127.0.0.1/admin: ")


def test_too_many_urls(client):
    urls = [f"https://example.com/{i}" for i in range(6)]
    status, _, body = client.post_json("/ping", {"urls": urls})

    assert status == 400
    assert json.loads(body)["details"] == ["Maximum 5 URLs allowed"]


def test_oversized_body_is_rejected(services):
    config = AppConfig(services=services, server=ServerConfig(max_body_bytes=32))
    client = Client(PingApp(config))

    status, _, body = client.post_json("/ping", {"urls": ["https://example.com/" + "a" * 64]})

    assert status == 413
    assert json.loads(body)["error"] == "Request body too large"


def test_rate_limit_returns_retry_after(services, ok_handler):
    config = AppConfig(services=services)
    runner = PingRunner(
        RunConfig.from_app_config(config),
        transport=httpx.MockTransport(ok_handler),
        sleep=no_sleep,
    )
    limiter = RateLimiter(max_requests=1, window=60, clock=lambda: 100.0)
    client = Client(PingApp(config, runner=runner, rate_limiter=limiter))

    first, _, _ = client.post_json("/ping", {"urls": ["https://example.com/"]})
    second, headers, body = client.post_json("/ping", {"urls": ["https://example.com/"]})
    other, _, _ = client.post_json("/ping", {"urls": ["https://example.com/"]}, remote="198.51.100.1")

    assert first == 200
    assert second == 429
    assert headers["Retry-After"] == "60"
    assert json.loads(body)["error"] == "Too many requests"
    assert other == 200


def test_unknown_path_is_not_found(client):
    status, _, body = client.request("GET", "/nope")

    assert status == 404
    assert json.loads(body) == {"success": False, "error": "Not found"}


def test_unexpected_failure_is_internal_error(client, app, monkeypatch):
    def broken(request):
        raise RuntimeError("boom")

    monkeypatch.setattr(app.runner, "run", broken)

    status, _, body = client.post_json("/ping", {"urls": ["https://example.com/"]})

    assert status == 500
    assert json.loads(body) == {"success": False, "error": "Internal server error"}


def test_feed_lists_urls_and_advertises_hub(client):
    urls = "https://example.com/a,https://www.example.org/b"
    status, headers, body = client.request("GET", "/feed", query="urls=" + quote(urls, safe=""))

    assert status == 200
    assert headers["Content-Type"].startswith("application/atom+xml")
    root = ET.fromstring(body)
    hub_links = [
        link.get("href") for link in root.iter(f"{ATOM}link") if link.get("rel") == "hub"
    ]
    assert hub_links == ["https://hub.example.com/"]
    entries = root.findall(f"{ATOM}entry")
    assert [e.findtext(f"{ATOM}id") for e in entries] == urls.split(",")
    assert entries[1].findtext(f"{ATOM}title") == "example.org"


def test_feed_head_has_no_body(client):
    status, _, body = client.request("HEAD", "/feed", query="urls=https%3A%2F%2Fexample.com%2F")

    assert status == 200
    assert body == b""


def test_feed_rejects_bad_urls(client):
    status, _, _ = client.request("GET", "/feed", query="urls=http%3A%2F%2F10.0.0.1%2F")
    assert status == 400

    status, _, _ = client.request("GET", "/feed")
    assert status == 400

    status, _, _ = client.request("POST", "/feed")
    assert status == 405


def test_negative_content_length_is_rejected_without_reading(services):
    config = AppConfig(services=services)
    client = Client(PingApp(config))
    body = json.dumps({"urls": ["https://example.com/" + "a" * 100_000]}).encode("utf-8")

    status, _, payload = client.request("POST", "/ping", body, content_length="-1")

    assert status == 400
    assert json.loads(payload)["error"] == "Invalid Content-Length header"


def test_unknown_service_reports_generic_error_with_details(client):
    status, _, body = client.post_json(
        "/ping", {"urls": ["https://example.com/"], "services": ["Nope"]}
    )

    payload = json.loads(body)
    assert status == 400
    assert payload["error"] == "Invalid request"
    assert payload["details"] == ["Unknown service: Nope"]
