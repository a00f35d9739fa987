"""WSGI front end exposing ``POST /ping`` and ``GET /feed``."""

from __future__ import annotations

import asyncio
import json
import logging
from http import HTTPStatus
from typing import Any, Callable, Iterable, List, Optional, Tuple
from wsgiref.simple_server import make_server

from .config import AppConfig
from .errors import ValidationError
from .feeds import FEED_PATH, build_feed_url, render_feed, urls_from_query
from .runner import PingRunner, RunConfig
from .state import RateLimiter, ResponseCache
from .validation import validate_request, validate_urls

logger = logging.getLogger(__name__)

PING_PATHS = ("/ping", "/api/ping")

CORS_HEADERS = [
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET, POST, OPTIONS"),
    ("Access-Control-Allow-Headers", "X-Requested-With, content-type, Authorization"),
]

Response = Tuple[int, List[Tuple[str, str]], bytes]


class HttpError(Exception):
    """An error that maps directly to an HTTP status code."""

    def __init__(
        self,
        status: int,
        message: str,
        details: Optional[List[str]] = None,
        headers: Optional[List[Tuple[str, str]]] = None,
    ):
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details
        self.headers = headers or []


def _json_response(status: int, payload: Any, headers=None) -> Response:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    return (
        status,
        [("Content-Type", "application/json; charset=utf-8")] + list(headers or []),
        body,
    )


class PingApp:
    """WSGI application; owns the long-lived runner and rate limiter."""

    def __init__(
        self,
        config: AppConfig,
        runner: Optional[PingRunner] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config
        self.runner = runner or PingRunner(
            RunConfig.from_app_config(config),
            cache=ResponseCache(ttl=config.cache_ttl_seconds),
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=config.rate_limit.max_requests,
            window=config.rate_limit.window_seconds,
        )

    def __call__(
        self, environ: dict, start_response: Callable[..., Any]
    ) -> Iterable[bytes]:
        path = environ.get("PATH_INFO", "/") or "/"
        method = environ.get("REQUEST_METHOD", "GET").upper()

        try:
            if path in PING_PATHS:
                status, headers, body = self.handle_ping(method, environ)
            elif path == FEED_PATH:
                status, headers, body = self.handle_feed(method, environ)
            else:
                raise HttpError(404, "Not found")
        except HttpError as exc:
            payload = {"success": False, "error": exc.message}
            if exc.details:
                payload["details"] = exc.details
            status, headers, body = _json_response(exc.status, payload, exc.headers)
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error serving %s %s", method, path)
            status, headers, body = _json_response(
                500, {"success": False, "error": "Internal server error"}
            )

        headers = headers + CORS_HEADERS + [("Content-Length", str(len(body)))]
        start_response(f"{status} {HTTPStatus(status).phrase}", headers)
        return [body]

    def _read_body(self, environ: dict) -> bytes:
        limit = self.config.server.max_body_bytes
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            raise HttpError(400, "Invalid Content-Length header")
        if length < 0:
            raise HttpError(400, "Invalid Content-Length header")
        if length > limit:
            raise HttpError(413, "Request body too large")
        stream = environ.get("wsgi.input")
        if stream is None or length == 0:
            return b""
        return stream.read(length)

    def handle_ping(self, method: str, environ: dict) -> Response:
        if method == "OPTIONS":
            return 204, [], b""
        if method != "POST":
            raise HttpError(405, "Method not allowed", headers=[("Allow", "POST, OPTIONS")])

        client = environ.get("REMOTE_ADDR") or "unknown"
        if not self.rate_limiter.allow(client):
            raise HttpError(
                429,
                "Too many requests",
                headers=[("Retry-After", str(self.rate_limiter.retry_after(client)))],
            )

        raw = self._read_body(environ)
        try:
            payload = json.loads(raw.decode("utf-8") or "null")
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise HttpError(400, "Request body must be valid JSON")

        try:
            request = validate_request(
                payload,
                [s.name for s in self.runner.config.services],
                max_urls=self.config.max_urls,
            )
        except ValidationError as exc:
            raise HttpError(400, "Invalid request", details=exc.reasons)

        response = asyncio.run(self.runner.run(request))
        return _json_response(200, response.to_dict())

    def handle_feed(self, method: str, environ: dict) -> Response:
        if method not in ("GET", "HEAD"):
            raise HttpError(405, "Method not allowed", headers=[("Allow", "GET, HEAD")])

        try:
            urls = validate_urls(
                urls_from_query(environ.get("QUERY_STRING", "")),
                max_urls=self.config.max_urls,
            )
        except ValidationError as exc:
            raise HttpError(400, "Invalid URLs", details=exc.reasons)

        hub = self.config.websub_service
        document = render_feed(
            urls,
            build_feed_url(urls, self.config.public_base_url),
            hub_url=hub.endpoint if hub else None,
        )
        body = b"" if method == "HEAD" else document.encode("utf-8")
        return 200, [("Content-Type", "application/atom+xml; charset=utf-8")], body


def serve(config: AppConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the WSGI app until interrupted."""
    host = host or config.server.host
    port = port or config.server.port
    app = PingApp(config)
    with make_server(host, port, app) as httpd:
        logger.info("Serving pingcast on http://%s:%s", host, port)
        httpd.serve_forever()
