"""Per-service delivery: timeout, retry and exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable

from .errors import FailureKind, is_retryable
from .models import DeliveryOutcome, ServiceConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0

Attempt = Callable[[], Awaitable[DeliveryOutcome]]
Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    return base_delay * (2 ** (attempt - 1))


async def run_attempt(service: ServiceConfig, attempt: Attempt) -> DeliveryOutcome:
    """Run one codec call under the service timeout, converting any failure."""
    start = time.monotonic()
    try:
        return await asyncio.wait_for(attempt(), timeout=service.timeout)
    except asyncio.TimeoutError:
        return DeliveryOutcome(
            service=service.name,
            success=False,
            message=f"Request timed out after {service.timeout:g}s",
            method=service.protocol,
            elapsed=time.monotonic() - start,
            error="timed out",
            kind=FailureKind.TIMEOUT,
        )
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error while pinging %s", service.name)
        return DeliveryOutcome(
            service=service.name,
            success=False,
            message="Service temporarily unavailable",
            method=service.protocol,
            elapsed=time.monotonic() - start,
            error="unexpected error",
            kind=FailureKind.PROTOCOL,
        )


async def deliver(
    service: ServiceConfig,
    attempt: Attempt,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> DeliveryOutcome:
    """Call ``attempt`` until it succeeds, fails terminally or retries run out.

    The returned outcome's ``elapsed`` covers every attempt and every
    backoff pause.
    """
    max_attempts = max(0, service.max_retries) + 1
    total = 0.0
    outcome = None

    for number in range(1, max_attempts + 1):
        outcome = await run_attempt(service, attempt)
        total += outcome.elapsed

        if outcome.success:
            if number > 1:
                logger.info("%s succeeded on attempt %d", service.name, number)
            return replace(outcome, elapsed=total, attempts=number)

        if not is_retryable(outcome.kind):
            logger.info(
                "%s non-retryable failure (%s): %s",
                service.name,
                outcome.kind.value if outcome.kind else "unknown",
                outcome.message,
            )
            return replace(outcome, elapsed=total, attempts=number)

        if number < max_attempts:
            delay = backoff_delay(number, base_delay)
            logger.warning(
                "%s failed (retryable): %s; retry %d/%d in %.2fs",
                service.name,
                outcome.message,
                number,
                max_attempts - 1,
                delay,
            )
            await sleep(delay)
            total += delay

    suffix = f" (after {max_attempts} attempts)" if max_attempts > 1 else ""
    return replace(
        outcome,
        message=f"{outcome.message}{suffix}",
        elapsed=total,
        attempts=max_attempts,
    )
