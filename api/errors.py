"""
api/errors.py -- Map core ErrorKind values onto HTTP responses.

Route handlers receive Err values from auth.access / auth.session and turn
them into HTTPException with the same {"code", "message"} detail dict the
exception handlers in api/main.py wrap into the ErrorResponse envelope.
"""

from __future__ import annotations

from fastapi import HTTPException

from core.result import Err, ErrorKind

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.EXPIRED_TOKEN: 401,
    ErrorKind.INVALID_REFRESH_TOKEN: 401,
    ErrorKind.REFRESH_TOKEN_EXPIRED: 401,
    ErrorKind.EMAIL_TAKEN: 400,
    ErrorKind.PASSWORD_TOO_LONG: 400,
    ErrorKind.SELF_MODIFICATION_DENIED: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND_OR_FORBIDDEN: 404,
    ErrorKind.INTERNAL: 500,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND.get(kind, 500)


def http_error(err: Err) -> HTTPException:
    """Build (not raise) the HTTPException for an Err. Usage: raise http_error(result)."""
    return HTTPException(
        status_code=status_for(err.kind),
        detail={"code": err.kind.value, "message": err.message},
    )


def not_found(message: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": ErrorKind.NOT_FOUND_OR_FORBIDDEN.value, "message": message},
    )
