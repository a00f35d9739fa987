"""Rendering helpers for outbound XML documents."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .templating import get_environment


def build_weblog_ping(site_name: str, site_url: str) -> str:
    """Render the ``weblogUpdates.ping`` methodCall body."""
    template = get_environment().get_template("weblog_ping.xml")
    return template.render(site_name=site_name, site_url=site_url)


def build_atom_feed(
    urls: Sequence[str],
    feed_url: str,
    hub_url: Optional[str] = None,
    updated: Optional[datetime] = None,
    title: str = "Recently updated pages",
) -> str:
    """Render an Atom document listing the given URLs."""
    template = get_environment().get_template("atom.xml")
    return template.render(
        urls=list(urls),
        feed_url=feed_url,
        hub_url=hub_url,
        updated=updated,
        title=title,
    )
