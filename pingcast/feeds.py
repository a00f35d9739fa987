"""Atom feed of pinged URLs, announced to WebSub hubs."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence
from urllib.parse import parse_qs, quote

from .renderers import build_atom_feed

logger = logging.getLogger(__name__)

FEED_PATH = "/feed"


def build_feed_url(urls: Sequence[str], base_url: str) -> str:
    """Return a stable, dereferenceable feed URL for the given URL list."""
    joined = ",".join(urls)
    return f"{base_url.rstrip('/')}{FEED_PATH}?urls={quote(joined, safe='')}"


def urls_from_query(query_string: str) -> List[str]:
    """Recover the URL list encoded by ``build_feed_url``."""
    values = parse_qs(query_string or "").get("urls", [])
    urls: List[str] = []
    for value in values:
        urls.extend(part.strip() for part in value.split(",") if part.strip())
    return urls


def render_feed(
    urls: Sequence[str],
    feed_url: str,
    hub_url: Optional[str] = None,
    updated: Optional[datetime] = None,
) -> str:
    """Render the Atom document served at ``feed_url``."""
    logger.debug("Rendering feed with %d entries", len(urls))
    return build_atom_feed(urls, feed_url, hub_url=hub_url, updated=updated)
