"""Error taxonomy of the booking engine and its HTTP translation.

Core functions raise these; the web layer turns them into JSON bodies of the
form ``{"kind": ..., "message": ..., "details": {...}}``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger("agenda.errors")


class BookingError(Exception):
    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": jsonable_encoder(self.details),
        }


class ValidationError(BookingError):
    kind = "validation_error"
    status_code = 400


class ConflictError(BookingError):
    kind = "conflict_error"
    status_code = 409

    def __init__(self, message: str, conflicts: list[int], **details):
        super().__init__(message, conflicts=sorted(conflicts), **details)
        self.conflicts = sorted(conflicts)


class NotFoundError(BookingError):
    kind = "not_found"
    status_code = 404


class PermissionDenied(BookingError):
    kind = "permission_denied"
    status_code = 403


async def booking_error_handler(request: Request, exc: BookingError):
    logger.info(
        "booking_error",
        kind=exc.kind,
        message=exc.message,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "kind": ValidationError.kind,
            "message": "Invalid request payload",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
