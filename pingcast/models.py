"""Shared data models for pingcast."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .errors import FailureKind

WEBSUB = "websub"
XMLRPC = "xmlrpc"
PROTOCOLS = (WEBSUB, XMLRPC)


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for a single downstream ping service."""

    name: str
    endpoint: str
    protocol: str
    timeout: float = 10.0
    max_retries: int = 1


@dataclass(frozen=True)
class DeliveryOutcome:
    """Final result of delivering one URL to one service, retries included."""

    service: str
    success: bool
    message: str
    method: str
    elapsed: float
    error: Optional[str] = None
    kind: Optional[FailureKind] = None
    status_code: Optional[int] = None
    retry_after: Optional[int] = None
    attempts: int = 1


@dataclass
class AggregatedServiceResult:
    """Per-service result folded across every URL of a batch."""

    service: str
    success: bool
    message: str
    method: str
    elapsed: float
    error: Optional[str] = None
    retry_after: Optional[int] = None

    def to_dict(self) -> dict:
        payload = {
            "service": self.service,
            "success": self.success,
            "message": self.message,
            "method": self.method,
            "responseTime": _to_millis(self.elapsed),
        }
        if self.error:
            payload["error"] = self.error
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload


@dataclass(frozen=True)
class BatchRequest:
    """Validated, normalised input for one orchestration run."""

    urls: List[str]
    services: Optional[List[str]] = None


@dataclass
class BatchResponse:
    """Terminal artifact of one orchestration run."""

    success: bool
    results: List[AggregatedServiceResult] = field(default_factory=list)
    total_time: float = 0.0
    feed_url: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {
            "success": self.success,
            "results": [result.to_dict() for result in self.results],
            "totalTime": _to_millis(self.total_time),
        }
        if self.feed_url:
            payload["feedUrl"] = self.feed_url
        return payload


def _to_millis(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))
