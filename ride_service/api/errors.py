"""
Maps ``RideError`` kinds to HTTP responses.

``HTTP_STATUS`` must cover every ``ErrorKind``; the app factory checks this
at startup.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ride_service.domain.enums import ErrorKind
from ride_service.domain.errors import RideError

HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.DRIVER_UNAVAILABLE: 409,
    ErrorKind.PAYMENT_METHOD_MISSING: 402,
    ErrorKind.PAYMENT_FAILED: 402,
    ErrorKind.PAYMENT_SERVICE: 503,
}

RETRY_AFTER_SECONDS = 5


def check_error_mapping() -> None:
    missing = set(ErrorKind) - set(HTTP_STATUS)
    if missing:
        raise RuntimeError(f"No HTTP status for error kinds: {sorted(missing)}")


async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(
        status_code=HTTP_STATUS[exc.kind],
        content={"detail": str(exc), "kind": exc.kind.value},
        headers=headers,
    )
