from __future__ import annotations

import httpx
import pytest

from marketgate.domain.errors import BackendError, CartConflict, NetworkError
from marketgate.services.backend_errors import ErrorCategory, classify_backend_error, is_retryable


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (NetworkError("reset"), ErrorCategory.NETWORK),
        (BackendError("busy", status_code=503), ErrorCategory.NETWORK),
        (BackendError("slow down", status_code=429), ErrorCategory.NETWORK),
        (BackendError("taken", status_code=409), ErrorCategory.CONFLICT),
        (CartConflict("gone"), ErrorCategory.CONFLICT),
        (BackendError("nope", status_code=401), ErrorCategory.FORBIDDEN),
        (BackendError("nope", status_code=403), ErrorCategory.FORBIDDEN),
        (BackendError("missing", status_code=404), ErrorCategory.NOT_FOUND),
        (BackendError("bad", status_code=400), ErrorCategory.INVALID),
        (BackendError("bad", status_code=422), ErrorCategory.INVALID),
        (BackendError("odd", status_code=418), ErrorCategory.FATAL),
        (BackendError("no status"), ErrorCategory.FATAL),
        (httpx.ReadTimeout("timeout"), ErrorCategory.NETWORK),
        (RuntimeError("boom"), ErrorCategory.FATAL),
    ],
)
def test_classify_backend_error(exc: Exception, expected: ErrorCategory) -> None:
    assert classify_backend_error(exc) == expected


def test_http_status_error_uses_response_status() -> None:
    request = httpx.Request("GET", "http://backend.test/api/orders")
    response = httpx.Response(502, request=request)
    exc = httpx.HTTPStatusError("bad gateway", request=request, response=response)

    assert classify_backend_error(exc) == ErrorCategory.NETWORK
    assert is_retryable(exc)


def test_only_network_category_is_retryable() -> None:
    assert is_retryable(NetworkError("reset"))
    assert not is_retryable(BackendError("taken", status_code=409))
