import textwrap

import httpx
import pytest

from pingcast.models import ServiceConfig


def xmlrpc_response(message="Thanks for the ping!", flerror=0):
    return textwrap.dedent(
        f"""\
        <?xml version="1.0"?>
        <methodResponse>
          <params>
            <param>
              <value>
                <struct>
                  <member>
                    <name>flerror</name>
                    <value><boolean>{flerror}</boolean></value>
                  </member>
                  <member>
                    <name>message</name>
                    <value>{message}</value>
                  </member>
                </struct>
              </value>
            </param>
          </params>
        </methodResponse>
        """
    )


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def no_sleep(_delay):
    return None


@pytest.fixture
def services():
    return [
        ServiceConfig("Hub", "https://hub.example.com/", "websub", timeout=5, max_retries=0),
        ServiceConfig("A", "http://a.example.com/RPC2", "xmlrpc", timeout=5, max_retries=0),
        ServiceConfig("B", "http://b.example.com/RPC2", "xmlrpc", timeout=5, max_retries=0),
    ]


@pytest.fixture
def ok_handler():
    """Transport handler where every service accepts the ping."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "hub.example.com":
            return httpx.Response(204)
        return httpx.Response(200, text=xmlrpc_response())

    return handler
