"""Map service errors to HTTP responses."""
from fastapi import HTTPException

from telecare.services.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    TelecareError,
    ValidationError,
)

_STATUS_BY_ERROR = (
    (AuthorizationError, 403),
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConfigurationError, 500),
    (NetworkError, 503),
    (ProviderError, 502),
    (PersistenceError, 409),
)


def http_error(e: TelecareError) -> HTTPException:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(e, error_type)),
        500,
    )
    detail = {"message": str(e), "kind": e.kind, "retryable": e.retryable}
    remote_ref = getattr(e, "remote_ref", None)
    if remote_ref:
        detail["remote_ref"] = remote_ref
    return HTTPException(status_code=status_code, detail=detail)
