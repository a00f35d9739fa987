"""High-level orchestration: fan a batch of URLs out to every ping service."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from . import websub, xmlrpc
from .config import DEFAULT_SERVICES, AppConfig
from .delivery import DEFAULT_BASE_DELAY, Sleep, deliver
from .errors import FailureKind
from .feeds import build_feed_url
from .http_client import build_async_client
from .models import (
    WEBSUB,
    AggregatedServiceResult,
    BatchRequest,
    BatchResponse,
    DeliveryOutcome,
    ServiceConfig,
)
from .state import ResponseCache
from .validation import site_name_for

logger = logging.getLogger(__name__)

SKIPPED_MESSAGE = "Skipped - timeout protection"

UrlOutcomes = Tuple[str, List[DeliveryOutcome]]


@dataclass
class RunConfig:
    """Runtime options for one runner instance."""

    services: List[ServiceConfig] = field(default_factory=lambda: list(DEFAULT_SERVICES))
    budget_seconds: float = 25.0
    safety_margin_seconds: float = 10.0
    batch_size: int = 2
    retry_base_delay: float = DEFAULT_BASE_DELAY
    public_base_url: str = "http://localhost:8080"

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "RunConfig":
        return cls(
            services=list(app_config.services),
            budget_seconds=app_config.budget_seconds,
            safety_margin_seconds=app_config.safety_margin_seconds,
            batch_size=app_config.batch_size,
            retry_base_delay=app_config.retry_base_delay,
            public_base_url=app_config.public_base_url,
        )


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def skipped_outcome(service: ServiceConfig) -> DeliveryOutcome:
    return DeliveryOutcome(
        service=service.name,
        success=False,
        message=SKIPPED_MESSAGE,
        method=service.protocol,
        elapsed=0.0,
        error="skipped",
        kind=FailureKind.TIMEOUT,
        attempts=0,
    )


def aggregate_outcomes(per_url: Sequence[UrlOutcomes]) -> List[AggregatedServiceResult]:
    """Fold per-URL outcomes into one result per service.

    The first URL seeds each service's result. A later failure downgrades a
    successful result to a partial failure; a later success never upgrades
    a failed one.
    """
    results: Dict[str, AggregatedServiceResult] = {}
    for url, outcomes in per_url:
        for outcome in outcomes:
            current = results.get(outcome.service)
            if current is None:
                results[outcome.service] = AggregatedServiceResult(
                    service=outcome.service,
                    success=outcome.success,
                    message=outcome.message,
                    method=outcome.method,
                    elapsed=outcome.elapsed,
                    error=outcome.error,
                    retry_after=outcome.retry_after,
                )
                continue

            current.elapsed += outcome.elapsed
            if not outcome.success and current.success:
                current.success = False
                current.message = f"Partial failure: failed for {url}: {outcome.message}"
                current.error = outcome.error
                current.retry_after = outcome.retry_after
    return list(results.values())


class PingRunner:
    """Runs batches against the configured services.

    The runner owns its response cache; nothing is shared through module
    globals, so separate runners are fully isolated.
    """

    def __init__(
        self,
        config: RunConfig,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.cache = cache
        self._transport = transport
        self._clock = clock
        self._sleep = sleep

    def select_services(self, names: Optional[Sequence[str]]) -> List[ServiceConfig]:
        if not names:
            return list(self.config.services)
        wanted = set(names)
        return [s for s in self.config.services if s.name in wanted]

    def _out_of_time(self, start: float) -> bool:
        remaining = self.config.budget_seconds - (self._clock() - start)
        return remaining < self.config.safety_margin_seconds

    async def run(self, request: BatchRequest) -> BatchResponse:
        """Deliver every URL of ``request`` and aggregate the outcomes."""
        start = self._clock()
        services = self.select_services(request.services)
        if not services:
            raise ValueError("No configured service matches the request.")

        cache_key = ResponseCache.key_for(request.urls, [s.name for s in services])
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Returning cached response for %d URL(s)", len(request.urls))
                return cached

        feed_url = build_feed_url(request.urls, self.config.public_base_url)
        logger.info(
            "Pinging %d URL(s) across %d service(s)", len(request.urls), len(services)
        )

        client = build_async_client(
            timeout=max(s.timeout for s in services),
            max_connections=self.config.batch_size * len(services),
            transport=self._transport,
        )
        async with client:
            per_url = await self._run_batches(client, request.urls, services, feed_url, start)

        results = aggregate_outcomes(per_url)
        success = any(o.success for _, outcomes in per_url for o in outcomes)
        response = BatchResponse(
            success=success,
            results=results,
            total_time=self._clock() - start,
            feed_url=feed_url,
        )
        logger.info(
            "Completed ping run in %.2fs: %d/%d service(s) succeeded",
            response.total_time,
            sum(1 for r in results if r.success),
            len(results),
        )

        if self.cache is not None and success:
            self.cache.put(cache_key, response)
        return response

    async def _run_batches(
        self,
        client: httpx.AsyncClient,
        urls: Sequence[str],
        services: Sequence[ServiceConfig],
        feed_url: str,
        start: float,
    ) -> List[UrlOutcomes]:
        per_url: List[UrlOutcomes] = []
        for batch in chunked(urls, self.config.batch_size):
            if self._out_of_time(start):
                logger.warning(
                    "Execution budget nearly spent; skipping %d URL(s)", len(batch)
                )
                per_url.extend((url, [skipped_outcome(s) for s in services]) for url in batch)
                continue

            outcomes = await asyncio.gather(
                *(self.ping_url(client, url, services, feed_url, start) for url in batch)
            )
            per_url.extend(zip(batch, outcomes))
        return per_url

    async def ping_url(
        self,
        client: httpx.AsyncClient,
        url: str,
        services: Sequence[ServiceConfig],
        feed_url: str,
        start: float,
    ) -> List[DeliveryOutcome]:
        """Deliver one URL to every service concurrently."""
        if self._out_of_time(start):
            logger.warning("Execution budget nearly spent; skipping %s", url)
            return [skipped_outcome(s) for s in services]

        site_name = site_name_for(url)
        calls = []
        for service in services:
            if service.protocol == WEBSUB:
                attempt = partial(websub.send_ping, client, service, feed_url)
            else:
                attempt = partial(xmlrpc.send_ping, client, service, site_name, url)
            calls.append(
                deliver(
                    service,
                    attempt,
                    base_delay=self.config.retry_base_delay,
                    sleep=self._sleep,
                )
            )

        settled = await asyncio.gather(*calls, return_exceptions=True)
        outcomes: List[DeliveryOutcome] = []
        for service, result in zip(services, settled):
            if isinstance(result, BaseException):
                logger.error("Delivery to %s raised %r", service.name, result)
                result = DeliveryOutcome(
                    service=service.name,
                    success=False,
                    message="Service temporarily unavailable",
                    method=service.protocol,
                    elapsed=0.0,
                    error="unexpected error",
                    kind=FailureKind.PROTOCOL,
                )
            outcomes.append(result)
        return outcomes


async def execute(
    request: BatchRequest,
    config: RunConfig,
    cache: Optional[ResponseCache] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BatchResponse:
    """Run a single batch with a throwaway runner."""
    return await PingRunner(config, cache=cache, transport=transport).run(request)
