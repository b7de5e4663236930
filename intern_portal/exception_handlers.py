"""
Exception handlers rendering every failure as the portal's JSON envelope:
``{"success": false, "message": ..., "error": ...}``.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
"""
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.env import is_local_env
from .services.recovery.errors import RecoveryError

logger = logging.getLogger(__name__)

FIELD_LABELS = {
    "phone": "phone number",
    "otp": "OTP",
    "newPassword": "new password",
    "new_password": "new password",
}


def _envelope(status_code: int, message: str, error: str, **extra) -> JSONResponse:
    content = {"success": False, "message": message, "error": error}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _human_join(labels):
    if len(labels) == 1:
        return labels[0]
    if len(labels) == 2:
        return f"{labels[0]} and {labels[1]}"
    return ", ".join(labels[:-1]) + f", and {labels[-1]}"


async def recovery_error_handler(request: Request, exc: RecoveryError):
    return _envelope(exc.status_code, exc.message, exc.code, **exc.extra())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Missing or ill-typed body fields -> 400 envelope"""
    labels = []
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            return _envelope(400, "Invalid JSON body", "invalid_request")
        loc = err.get("loc") or ()
        field = loc[-1] if loc else None
        # Only named body fields get a label; integer locations are list indexes or byte offsets
        if not isinstance(field, str) or field == "body":
            continue
        label = FIELD_LABELS.get(field, field)
        if label not in labels:
            labels.append(label)

    message = f"Please provide {_human_join(labels)}" if labels else "Invalid request data"
    return _envelope(400, message, "invalid_request")


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _envelope(exc.status_code, detail, "http_error")


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)

    # In production, don't leak internal error details to clients
    if is_local_env():
        message = f"Internal server error: {exc}"
    else:
        message = "Internal server error"
    return _envelope(500, message, "internal_error")


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(RecoveryError, recovery_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
