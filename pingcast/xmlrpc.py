"""XML-RPC ``weblogUpdates.ping`` client.

Used by Ping-o-Matic, Yandex Blogs, Twingly, Weblogs.com and similar blog
ping directories. A response looks like::

    <methodResponse>
      <params><param><value><struct>
        <member><name>flerror</name><value><boolean>0</boolean></value></member>
        <member><name>message</name><value>Thanks for the ping!</value></member>
      </struct></value></param></params>
    </methodResponse>

Servers in the wild add whitespace, wrap text in CDATA, entity-encode it or
drop the ``<string>`` wrapper, so parsing goes through ElementTree first and
falls back to tolerant regular expressions for documents that are not
well-formed XML.
"""

from __future__ import annotations

import html
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, Optional
from xml.etree import ElementTree as ET

import httpx

from .errors import FailureKind
from .http_client import failure_kind_for_status, parse_retry_after, status_message
from .models import XMLRPC, DeliveryOutcome, ServiceConfig
from .renderers import build_weblog_ping

logger = logging.getLogger(__name__)

UNPARSEABLE_MESSAGE = "Could not parse XML-RPC response"

_FAULT = re.compile(r"<fault\b", re.IGNORECASE)
_MEMBER = re.compile(
    r"<member>\s*<name>\s*([^<]+?)\s*</name>\s*<value>(.*?)</value>\s*</member>",
    re.IGNORECASE | re.DOTALL,
)
_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_TAG = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class PingResponse:
    """Outcome of parsing a methodResponse document."""

    is_fault: bool
    message: str


def build_ping_request(site_name: str, site_url: str) -> str:
    """Return the methodCall body for ``weblogUpdates.ping``."""
    return build_weblog_ping(site_name, site_url)


def parse_ping_response(body: str) -> PingResponse:
    """Parse a ``weblogUpdates.ping`` response.

    A ``<fault>`` anywhere wins over any ``flerror`` member. A document with
    neither a fault nor a recognisable ``flerror``/``message`` member is a
    failure.
    """
    if not body or not body.strip():
        return PingResponse(True, UNPARSEABLE_MESSAGE)

    try:
        root = ET.fromstring(body.strip())
    except ET.ParseError:
        logger.debug("XML-RPC response is not well-formed; using lenient parser")
        return _parse_lenient(body)

    fault = root.find(".//fault")
    if fault is not None:
        members = _element_members(fault)
        return PingResponse(True, members.get("faultString") or "XML-RPC fault")

    return _from_members(_element_members(root))


def _element_members(root: ET.Element) -> Dict[str, str]:
    members: Dict[str, str] = {}
    for member in root.iter("member"):
        name = (member.findtext("name") or "").strip()
        value = member.find("value")
        if name and value is not None:
            members.setdefault(name, "".join(value.itertext()).strip())
    return members


def _parse_lenient(body: str) -> PingResponse:
    members: Dict[str, str] = {}
    for name, raw_value in _MEMBER.findall(body):
        members.setdefault(name.strip(), _lenient_text(raw_value))

    if _FAULT.search(body):
        return PingResponse(True, members.get("faultString") or "XML-RPC fault")
    return _from_members(members)


def _lenient_text(raw_value: str) -> str:
    cdata = _CDATA.search(raw_value)
    if cdata:
        return cdata.group(1).strip()
    return html.unescape(_TAG.sub("", raw_value)).strip()


def _from_members(members: Dict[str, str]) -> PingResponse:
    flerror = members.get("flerror")
    message = members.get("message")

    if flerror is None and message is None:
        return PingResponse(True, UNPARSEABLE_MESSAGE)

    is_fault = flerror is not None and flerror.strip().lower() not in ("0", "false")
    if not message:
        message = "Ping rejected" if is_fault else "Ping accepted"
    return PingResponse(is_fault, message)


async def send_ping(
    client: httpx.AsyncClient,
    service: ServiceConfig,
    site_name: str,
    site_url: str,
) -> DeliveryOutcome:
    """Make one ``weblogUpdates.ping`` call; never raises for delivery errors."""
    start = time.monotonic()

    def outcome(success: bool, message: str, **extra) -> DeliveryOutcome:
        return DeliveryOutcome(
            service=service.name,
            success=success,
            message=message,
            method=XMLRPC,
            elapsed=time.monotonic() - start,
            **extra,
        )

    try:
        response = await client.post(
            service.endpoint,
            content=build_ping_request(site_name, site_url).encode("utf-8"),
            headers={"Content-Type": "text/xml; charset=utf-8"},
            timeout=service.timeout,
        )
    except httpx.TimeoutException:
        return outcome(
            False,
            f"Request timed out after {service.timeout:g}s",
            error="timed out",
            kind=FailureKind.TIMEOUT,
        )
    except httpx.TransportError as exc:
        logger.warning("XML-RPC %s (%s) failed: %s", service.name, service.endpoint, exc)
        return outcome(
            False,
            "Network error: service unreachable",
            error="network error",
            kind=FailureKind.NETWORK,
        )

    kind = failure_kind_for_status(response.status_code)
    if kind is not None:
        retry_after: Optional[int] = None
        if kind is FailureKind.RATE_LIMIT:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
        return outcome(
            False,
            status_message(response),
            error=f"HTTP {response.status_code}",
            kind=kind,
            status_code=response.status_code,
            retry_after=retry_after,
        )

    parsed = parse_ping_response(response.text)
    if parsed.is_fault:
        return outcome(
            False,
            parsed.message,
            error="fault",
            kind=FailureKind.PROTOCOL,
            status_code=response.status_code,
        )
    return outcome(True, parsed.message, status_code=response.status_code)
