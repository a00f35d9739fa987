"""Failure taxonomy shared by the codecs, the delivery unit and the runner."""

from __future__ import annotations

import enum
from typing import Iterable, List, Optional


class FailureKind(str, enum.Enum):
    """Closed set of reasons a delivery attempt can fail."""

    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"


RETRYABLE_KINDS = frozenset({FailureKind.NETWORK, FailureKind.TIMEOUT, FailureKind.SERVER})


def is_retryable(kind: Optional[FailureKind]) -> bool:
    """Return True when a failure of this kind is worth another attempt."""
    return kind in RETRYABLE_KINDS


class ValidationError(ValueError):
    """Raised when a batch request is rejected before any network call."""

    def __init__(self, reasons: Iterable[str]):
        self.reasons: List[str] = list(reasons)
        super().__init__("; ".join(self.reasons) or "Invalid request")
