from __future__ import annotations

from enum import StrEnum

import httpx

from marketgate.domain.errors import BackendError, CartConflict, NetworkError


class ErrorCategory(StrEnum):
    NETWORK = "network"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    FATAL = "fatal"


def classify_backend_error(exc: Exception) -> ErrorCategory:
    if isinstance(exc, NetworkError):
        return ErrorCategory.NETWORK
    if isinstance(exc, CartConflict):
        return ErrorCategory.CONFLICT
    if isinstance(exc, httpx.TransportError | TimeoutError):
        return ErrorCategory.NETWORK
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        status = int(exc.response.status_code)
    elif isinstance(exc, BackendError):
        status = int(exc.status_code) if exc.status_code is not None else None
    else:
        status = None

    if status is None:
        return ErrorCategory.FATAL
    if status == 429 or status >= 500:
        return ErrorCategory.NETWORK
    if status == 409:
        return ErrorCategory.CONFLICT
    if status in {401, 403}:
        return ErrorCategory.FORBIDDEN
    if status == 404:
        return ErrorCategory.NOT_FOUND
    if status in {400, 422}:
        return ErrorCategory.INVALID
    return ErrorCategory.FATAL


def is_retryable(exc: Exception) -> bool:
    return classify_backend_error(exc) == ErrorCategory.NETWORK
