"""WebSub (PubSubHubbub) publisher notifications.

Implements the publish side of https://www.w3.org/TR/websub/: a
form-encoded POST of ``hub.mode=publish`` and ``hub.url=<feed>``. Hubs
answer 204 No Content or 202 Accepted on success.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from .errors import FailureKind
from .http_client import failure_kind_for_status, parse_retry_after, status_message
from .models import WEBSUB, DeliveryOutcome, ServiceConfig

logger = logging.getLogger(__name__)

MAX_ERROR_TEXT = 200
# hubs signal overload with 503 as well as 429
HUB_RATE_LIMIT_STATUSES = (429, 503)


@dataclass(frozen=True)
class HubResult:
    """Interpreted hub response for a single notification."""

    success: bool
    status_code: int
    message: str
    elapsed: float
    kind: Optional[FailureKind] = None
    retry_after: Optional[int] = None
    error: Optional[str] = None


def _error_text(raw_value: str) -> str:
    """Return readable text from a (possibly HTML) error body."""
    if not raw_value or not raw_value.strip():
        return ""
    text = BeautifulSoup(raw_value, "html.parser").get_text(separator=" ", strip=True)
    text = re.sub(r"\s{2,}", " ", text).strip()
    if len(text) > MAX_ERROR_TEXT:
        text = text[:MAX_ERROR_TEXT].rstrip() + "..."
    return text


async def notify_hub(
    client: httpx.AsyncClient,
    feed_url: str,
    hub_url: str,
    timeout: float,
) -> HubResult:
    """Tell ``hub_url`` that ``feed_url`` changed."""
    start = time.monotonic()
    logger.debug("WebSub: notifying %s of %s", hub_url, feed_url)

    try:
        response = await client.post(
            hub_url,
            data={"hub.mode": "publish", "hub.url": feed_url},
            timeout=timeout,
        )
    except httpx.TimeoutException:
        return HubResult(
            success=False,
            status_code=0,
            message=f"Request timed out after {timeout:g}s",
            elapsed=time.monotonic() - start,
            kind=FailureKind.TIMEOUT,
            error="timed out",
        )
    except httpx.TransportError as exc:
        logger.warning("WebSub hub %s: got %s: %s", hub_url, exc.__class__.__name__, exc)
        return HubResult(
            success=False,
            status_code=0,
            message="Network error: hub unreachable",
            elapsed=time.monotonic() - start,
            kind=FailureKind.NETWORK,
            error="network error",
        )

    elapsed = time.monotonic() - start
    kind = failure_kind_for_status(response.status_code, HUB_RATE_LIMIT_STATUSES)
    if kind is None:
        logger.info("%s: WebSub notification sent to %s", feed_url, hub_url)
        return HubResult(
            success=True,
            status_code=response.status_code,
            message="Hub notified successfully",
            elapsed=elapsed,
        )

    retry_after: Optional[int] = None
    if kind is FailureKind.RATE_LIMIT:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))

    message = _error_text(response.text) or status_message(response)
    logger.warning(
        "%s: hub %s returned status code %s: %s",
        feed_url,
        hub_url,
        response.status_code,
        message,
    )
    return HubResult(
        success=False,
        status_code=response.status_code,
        message=message,
        elapsed=elapsed,
        kind=kind,
        retry_after=retry_after,
        error=f"HTTP {response.status_code}",
    )


async def send_ping(
    client: httpx.AsyncClient, service: ServiceConfig, feed_url: str
) -> DeliveryOutcome:
    """Notify the service's hub and express the result as a ``DeliveryOutcome``."""
    result = await notify_hub(client, feed_url, service.endpoint, service.timeout)
    return DeliveryOutcome(
        service=service.name,
        success=result.success,
        message=result.message,
        method=WEBSUB,
        elapsed=result.elapsed,
        error=result.error,
        kind=result.kind,
        status_code=result.status_code or None,
        retry_after=result.retry_after,
    )
