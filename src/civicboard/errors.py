# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Error taxonomy for the auth core and the handlers that render it.

Every error body has the shape ``{"error": {"code", "message", "details"?}}``.
Bodies never carry per-request ids, so two identical failures render
byte-identical responses.
"""

from __future__ import annotations

import enum
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_LOGIN_FAILURE = "Incorrect username or password"


class AuthError(Exception):
    """Base class for errors surfaced at the HTTP boundary."""

    code = "error"
    status_code = 400
    message = "Request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[List[dict]] = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Request validation failed"


class AuthenticationFailure(AuthError):
    code = "authentication_failed"
    status_code = 401
    message = GENERIC_LOGIN_FAILURE


class AuthenticationRequired(AuthError):
    code = "not_authenticated"
    status_code = 401
    message = "Not authenticated"


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    message = "Forbidden"


class TokenFailureKind(str, enum.Enum):
    MALFORMED = "malformed"
    EXPIRED = "expired"


class TokenFailure(AuthError):
    """A bearer token was offered but did not verify.

    The kind is kept for logging; the client sees one message for both kinds.
    """

    code = "invalid_token"
    status_code = 401
    message = "Invalid or expired token"

    def __init__(self, kind: TokenFailureKind):
        self.kind = kind
        super().__init__()


class UsernameTaken(AuthError):
    code = "username_taken"
    message = "Username already taken"


class EmailTaken(AuthError):
    code = "email_taken"
    message = "Email already registered"


class IdentityConflict(Exception):
    """Raised by an identity store when a unique field is already in use."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} already in use")


class StoreUnavailable(AuthError):
    code = "internal_error"
    status_code = 500
    message = "An internal error occurred"


def error_response(exc: AuthError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


def internal_error_response() -> JSONResponse:
    return error_response(StoreUnavailable())


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError):
        if isinstance(exc, StoreUnavailable):
            logger.error("Store unavailable on %s: %r", request.url.path, exc.__cause__)
        else:
            logger.info("%s on %s", exc.code, request.url.path)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        details = []
        for err in exc.errors():
            # Never echo submitted values back; they may contain a password.
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            details.append({"field": ".".join(loc), "message": err.get("msg", ""), "type": err.get("type", "")})
        logger.info("validation_error on %s: %d field(s)", request.url.path, len(details))
        return error_response(ValidationError(details=details))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return internal_error_response()
