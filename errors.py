"""
Exceptions for the school administration API
============================================

Raise these from services and routes; the handlers registered in
``register_exception_handlers`` turn them into the JSON envelope

    {"success": false, "message": ..., "error": ...}

Business-rule denials (gate closed, unpaid fees) are not exceptions; they
are returned as decisions by the gatepass service.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


class SchoolError(Exception):
    """Base exception for all domain errors"""

    status_code = 500

    def __init__(self, message: str, code: str = "INTERNAL_ERROR", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "error": self.code}
        body.update(self.details)
        return body


class ValidationFailure(SchoolError):
    """Missing or malformed input"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_FAILED", details=details)


class AuthenticationFailure(SchoolError):
    status_code = 401

    def __init__(self, message: str = "Not authorized to access this route"):
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationFailure(SchoolError):
    """Wrong role or not the owner of the resource"""

    status_code = 403

    def __init__(self, message: str = "You are not authorized to access this resource"):
        super().__init__(message, code="NOT_AUTHORIZED")


class NotFound(SchoolError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(message, code="NOT_FOUND")


class ConflictFailure(SchoolError):
    """Duplicate record, already-used pass, or a concurrent modification"""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFLICT", details=details)


def error_response(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SchoolError)
    async def school_error_handler(request: Request, exc: SchoolError):
        if exc.status_code >= 500:
            logger.error("Unhandled domain error on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
        return error_response(400, "Invalid request data", "; ".join(problems))

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        logger.warning("Duplicate key on %s: %s", request.url.path, exc)
        return error_response(400, "Duplicate record", "CONFLICT")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "Internal server error", type(exc).__name__)
