import asyncio
import time

import httpx

from conftest import xmlrpc_response
from pingcast.models import BatchRequest, ServiceConfig
from pingcast.runner import PingRunner, RunConfig


def _services(count):
    return [
        ServiceConfig(f"Svc{i}", f"http://svc-{i}.example.com/RPC2", "xmlrpc", timeout=5, max_retries=0)
        for i in range(count)
    ]


def test_services_are_pinged_in_parallel():
    """Verify that one URL fans out to all services at once."""

    DELAY = 0.3
    NUM_SERVICES = 5

    async def slow_handler(request):
        await asyncio.sleep(DELAY)
        return httpx.Response(200, text=xmlrpc_response())

    runner = PingRunner(
        RunConfig(services=_services(NUM_SERVICES)),
        transport=httpx.MockTransport(slow_handler),
    )

    start = time.monotonic()
    response = asyncio.run(runner.run(BatchRequest(urls=["https://example.com/"])))
    duration = time.monotonic() - start

    assert response.success
    # Serial would be DELAY * NUM_SERVICES
    assert duration < (DELAY * NUM_SERVICES) / 2
    assert duration >= DELAY


def test_batches_run_sequentially_with_overlap_inside_a_batch():
    DELAY = 0.1
    in_flight = {"now": 0, "peak": 0}
    started = []

    async def tracking_handler(request):
        started.append(request.content)
        in_flight["now"] += 1
        in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        await asyncio.sleep(DELAY)
        in_flight["now"] -= 1
        return httpx.Response(200, text=xmlrpc_response())

    runner = PingRunner(
        RunConfig(services=_services(2), batch_size=2),
        transport=httpx.MockTransport(tracking_handler),
    )
    urls = [f"https://site{i}.example.com/" for i in range(5)]

    response = asyncio.run(runner.run(BatchRequest(urls=urls)))

    assert response.success
    assert len(started) == 10
    # two URLs per batch, two services each
    assert in_flight["peak"] == 4
    # URLs of a later batch never start before an earlier batch finishes
    order = [next(i for i, u in enumerate(urls) if u.encode() in body) for body in started]
    batches = [i // 2 for i in order]
    assert batches == sorted(batches)
