"""Error taxonomy shared by the gate, the ledgers and the settlement workflow."""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("campbooking.errors")


class BookingError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", outcome: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code.replace("_", " ")
        self.outcome = outcome


class Unauthenticated(BookingError):
    status_code = 401
    code = "unauthorized_access"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden_access"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class Conflict(BookingError):
    status_code = 409
    code = "conflict"


class PartialSettlementFailure(BookingError):
    """Payment was recorded but at least one later settlement step failed."""

    status_code = 500
    code = "partial_settlement_failure"


class SettlementAborted(BookingError):
    """Nothing was settled: the payment audit failed or the transaction rolled back."""

    status_code = 503
    code = "settlement_aborted"


def _booking_error_handler(request: Request, exc: BookingError):
    body = {"error": True, "code": exc.code, "message": exc.message}
    if exc.outcome is not None:
        body["outcome"] = exc.outcome
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(BookingError, _booking_error_handler)
