"""Error taxonomy for ledger operations."""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for errors raised by the ledger and its collaborators.

    Each subclass carries the HTTP status and machine readable ``code`` used
    by the API layer, so callers never need to map exception types by hand.
    """

    status_code: int = 400
    code: str = "ledger_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": "error", "code": self.code, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError, ValueError):
    """Malformed or contradictory input: same source and target, bad quantity."""

    status_code = 400
    code = "validation_error"


class InsufficientStockError(ValidationError):
    """The derived stock cannot cover the requested quantity."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        message: str,
        *,
        product_id: int,
        available: int,
        requested: int,
        location_id: int | None = None,
    ) -> None:
        details: dict[str, Any] = {
            "product_id": product_id,
            "available": available,
            "requested": requested,
        }
        if location_id is not None:
            details["location_id"] = location_id
        super().__init__(message, **details)
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.location_id = location_id


class NotFoundError(LedgerError, LookupError):
    status_code = 404
    code = "not_found"


class ConfigurationError(LedgerError):
    """A required reference entity, such as the default location, is missing."""

    status_code = 503
    code = "configuration_error"


class StoreUnavailableError(LedgerError):
    """The backing store rejected or failed a call."""

    status_code = 503
    code = "store_unavailable"


__all__ = [
    "ConfigurationError",
    "InsufficientStockError",
    "LedgerError",
    "NotFoundError",
    "StoreUnavailableError",
    "ValidationError",
]
