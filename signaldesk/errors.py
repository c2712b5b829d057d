from __future__ import annotations

from enum import Enum


class RejectReason(str, Enum):
    MISSING_SYMBOL = "MissingSymbol"
    MISSING_PRICE = "MissingPrice"
    INVALID_PRICE = "InvalidPrice"
    DISABLED = "Disabled"
    THROTTLED = "Throttled"
    NO_STRATEGY = "NoStrategy"


HTTP_STATUS: dict[RejectReason, int] = {
    RejectReason.MISSING_SYMBOL: 422,
    RejectReason.MISSING_PRICE: 422,
    RejectReason.INVALID_PRICE: 422,
    RejectReason.DISABLED: 403,
    RejectReason.THROTTLED: 429,
    RejectReason.NO_STRATEGY: 400,
}


class IngestError(Exception):
    """Base class for everything the ingestion path raises."""


class Rejection(IngestError):
    """Client-caused refusal. Never retried by the engine."""

    def __init__(self, reason: RejectReason, detail: str | None = None):
        self.reason = reason
        self.detail = detail or reason.value
        super().__init__(self.detail)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.reason, 400)


class StoreUnavailable(IngestError):
    """The Store could not durably record a signal or trade."""
