from __future__ import annotations


class MarketGateError(RuntimeError):
    """Base class for every error raised by the marketplace core."""


class BackendError(MarketGateError):
    """Raised when the backend service answers with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_message: str | None = None,
        request_method: str | None = None,
        request_path: str | None = None,
        retry_after: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_message = error_message
        self.request_method = request_method
        self.request_path = request_path
        self.retry_after = retry_after


class NetworkError(MarketGateError):
    """Transient failure at a suspension point; safe to retry at the caller's discretion."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionResolutionError(MarketGateError):
    """Session could not be resolved. Callers never see it: the gate degrades to unauthenticated."""


class InvalidTransition(MarketGateError):
    def __init__(self, message: str, *, order_id: str | None = None, reason: str = "") -> None:
        super().__init__(message)
        self.order_id = order_id
        self.reason = reason


class CartConflict(MarketGateError):
    def __init__(self, message: str, *, product_id: str | None = None) -> None:
        super().__init__(message)
        self.product_id = product_id


class ReconciliationError(MarketGateError):
    """Order exists but its source cart line could not be removed."""

    def __init__(self, message: str, *, order_id: str, product_id: str) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.product_id = product_id


class ForbiddenError(MarketGateError):
    """Raised when an actor calls an operation reserved for another role."""
