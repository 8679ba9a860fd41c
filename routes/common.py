"""Shared router dependencies and domain-error translation."""

from __future__ import annotations

from fastapi import HTTPException, Request

from veiledcasts.errors import (
    AuthorizationError,
    CapacityError,
    ComputationTimeoutError,
    DuplicateError,
    EncryptionSetupError,
    LedgerSubmissionError,
    NotFoundError,
    PollError,
    ValidationError,
)
from veiledcasts.runtime import Runtime

_STATUS = (
    (ValidationError, 400),
    (CapacityError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (DuplicateError, 409),
    (LedgerSubmissionError, 502),
    (EncryptionSetupError, 503),
    (ComputationTimeoutError, 504),
)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def http_error(exc: PollError) -> HTTPException:
    for kind, status in _STATUS:
        if isinstance(exc, kind):
            if isinstance(exc, ComputationTimeoutError):
                return HTTPException(status_code=status, detail=f"{exc} {exc.hint}")
            if isinstance(exc, LedgerSubmissionError):
                return HTTPException(status_code=status, detail=exc.diagnostics())
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


__all__ = ["get_runtime", "http_error"]
