"""Jinja2 environment for pingcast templates."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from .validation import site_name_for

_ENV: Environment | None = None

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _rfc3339(value: datetime | None) -> str:
    """Format a datetime the way Atom expects it."""
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates.

    Every template is XML, so autoescaping covers ``& < > " '`` in all
    interpolated values.
    """
    global _ENV
    if _ENV is None:
        _ENV = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _ENV.filters["rfc3339"] = _rfc3339
        _ENV.filters["hostname"] = site_name_for
    return _ENV
