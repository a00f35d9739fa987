"""Request validation, URL normalisation and the private-address guard."""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Any, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit

from .errors import ValidationError
from .models import BatchRequest

logger = logging.getLogger(__name__)

MAX_URLS = 5
MAX_URL_LENGTH = 2048
RESTRICTED_CHARS = re.compile(r"[<>\"{}|\\^`\s]")
DOMAIN_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
VALID_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


def site_name_for(url: str) -> str:
    """Return the hostname without a leading ``www.``, or the raw URL."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host


def _blocked_address(host: str) -> Optional[str]:
    """Describe why an IP-literal host is not allowed, or return None."""
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return None

    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped

    if address.is_loopback:
        return "loopback address"
    if address.is_link_local:
        return "link-local address"
    if address.is_private:
        return "private network address"
    if address.is_unspecified or address.is_reserved or address.is_multicast:
        return "reserved address"
    return ""


def _check_domain(host: str) -> List[str]:
    labels = host.split(".")
    if len(labels) < 2:
        return ["Invalid domain format"]
    for label in labels:
        if not label or not DOMAIN_LABEL.match(label):
            return ["Invalid domain name format"]
        if len(label) > 63:
            return ["Domain part exceeds maximum length"]
    tld = labels[-1]
    if len(tld) < 2 or tld.isdigit():
        return ["Invalid top-level domain"]
    return []


def normalize_url(url: str) -> str:
    """Validate a single URL and return its normalised form.

    Raises ``ValidationError`` with every reason found.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError(["URL must be a non-empty string"])

    candidate = url.strip()
    errors: List[str] = []

    if len(candidate) > MAX_URL_LENGTH:
        errors.append(f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")
    if RESTRICTED_CHARS.search(candidate):
        errors.append("URL contains invalid characters")

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        raise ValidationError(errors + ["Invalid URL format"])

    scheme = parts.scheme.lower()
    if scheme not in VALID_SCHEMES:
        errors.append("URL must use HTTP or HTTPS protocol")
    if parts.username or parts.password:
        errors.append("URL must not contain credentials")

    host = (parts.hostname or "").rstrip(".")
    if not host:
        errors.append("URL is missing a host")
    elif host == "localhost" or host.endswith(".localhost"):
        errors.append("URL points to a loopback address")
    else:
        blocked = _blocked_address(host)
        if blocked:
            errors.append(f"URL points to a {blocked}")
        elif blocked is None:
            errors.extend(_check_domain(host))

    if errors:
        raise ValidationError(errors)

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{scheme}://{netloc}{path}{query}"


def validate_urls(urls: Any, max_urls: int = MAX_URLS) -> List[str]:
    """Validate the whole URL list; any invalid entry rejects the batch."""
    if not isinstance(urls, list) or not urls:
        raise ValidationError(["No URLs provided"])
    if len(urls) > max_urls:
        raise ValidationError([f"Maximum {max_urls} URLs allowed"])

    normalized: List[str] = []
    errors: List[str] = []
    for url in urls:
        try:
            normalized.append(normalize_url(url))
        except ValidationError as exc:
            errors.append(f"{url}: {', '.join(exc.reasons)}")

    if errors:
        logger.info("Rejected batch with %d invalid URL(s)", len(errors))
        raise ValidationError(errors)
    return normalized


def validate_request(
    payload: Any,
    known_services: Sequence[str],
    max_urls: int = MAX_URLS,
) -> BatchRequest:
    """Turn a decoded request body into a ``BatchRequest``."""
    if not isinstance(payload, dict):
        raise ValidationError(["Request body must be a JSON object"])

    urls = validate_urls(payload.get("urls"), max_urls=max_urls)
    services = _validate_services(payload.get("services"), known_services)
    return BatchRequest(urls=urls, services=services)


def _validate_services(
    services: Any, known_services: Iterable[str]
) -> Optional[List[str]]:
    if services is None:
        return None
    if not isinstance(services, list) or not all(isinstance(s, str) for s in services):
        raise ValidationError(["services must be a list of service names"])
    if not services:
        raise ValidationError(["services must not be empty"])

    known = set(known_services)
    unknown = [name for name in services if name not in known]
    if unknown:
        raise ValidationError([f"Unknown service: {name}" for name in unknown])
    return list(dict.fromkeys(services))
