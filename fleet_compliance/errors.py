"""
Domain errors and their HTTP rendering.

Services raise these; routes let them propagate and the handlers registered by
``register_exception_handlers`` turn them into ``{"detail": ..., "error": ...}``.
"""
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = structlog.get_logger("fleet_compliance.errors")


class ComplianceError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ComplianceError):
    status_code = 400
    code = "validation_error"


class NoRecipientError(ValidationError):
    """The notification has no e-mail address to send to."""
    code = "no_recipient"


class InvalidTokenError(ValidationError):
    code = "invalid_token"


class AuthError(ComplianceError):
    status_code = 401
    code = "unauthorized"


class NotFound(ComplianceError):
    status_code = 404
    code = "not_found"


class Conflict(ComplianceError):
    status_code = 409
    code = "conflict"


class DeliveryError(ComplianceError):
    status_code = 502
    code = "delivery_failed"


class UpstreamStoreError(ComplianceError):
    status_code = 500
    code = "store_error"


class ConfigurationError(ComplianceError):
    status_code = 500
    code = "configuration_error"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ComplianceError)
    async def _compliance_error(request: Request, exc: ComplianceError):
        level = "error" if exc.status_code >= 500 else "warning"
        getattr(log, level)(
            "request_failed",
            method=request.method,
            path=request.url.path,
            status=exc.status_code,
            error=exc.code,
            message=exc.message,
        )
        body = {"detail": exc.message, "error": exc.code}
        if exc.details:
            body["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
        log.warning(
            "request_failed",
            method=request.method,
            path=request.url.path,
            status=400,
            error=ValidationError.code,
            message=message,
        )
        return JSONResponse(
            status_code=400,
            content={"detail": message, "error": ValidationError.code, "details": {"errors": errors}},
        )
