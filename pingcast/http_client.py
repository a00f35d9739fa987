"""httpx client construction and HTTP status helpers."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Tuple

import httpx

from .errors import FailureKind

logger = logging.getLogger(__name__)

USER_AGENT = "pingcast/1.0 (+https://pypi.org/project/pingcast/)"
DEFAULT_RETRY_AFTER = 60
RATE_LIMIT_STATUSES = (429,)


def build_async_client(
    timeout: float = 10.0,
    max_connections: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the client shared by every outbound call of one run.

    ``max_connections`` caps simultaneous sockets; the runner passes
    ``batch_size * service_count``.
    """
    limits = httpx.Limits(max_connections=max_connections)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        limits=limits,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        transport=transport,
    )


def failure_kind_for_status(
    status_code: int, rate_limit_statuses: Tuple[int, ...] = RATE_LIMIT_STATUSES
) -> Optional[FailureKind]:
    """Classify an HTTP status code; None means success.

    Statuses in ``rate_limit_statuses`` are RATE_LIMIT; any other 5xx is SERVER.
    """
    if 200 <= status_code < 300:
        return None
    if status_code in rate_limit_statuses:
        return FailureKind.RATE_LIMIT
    if status_code >= 500:
        return FailureKind.SERVER
    return FailureKind.PROTOCOL


def status_message(response: httpx.Response) -> str:
    return f"HTTP {response.status_code}: {response.reason_phrase}"


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> int:
    """Convert a Retry-After header (seconds or HTTP date) to whole seconds."""
    if not value:
        return DEFAULT_RETRY_AFTER

    value = value.strip()
    if value.isdigit():
        return int(value)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug("Unparseable Retry-After header: %r", value)
        return DEFAULT_RETRY_AFTER
    if when is None:
        return DEFAULT_RETRY_AFTER
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    current = now or datetime.now(timezone.utc)
    delta = (when - current).total_seconds()
    return max(0, math.ceil(delta))
