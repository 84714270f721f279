# Overview: API error taxonomy and the uniform JSON error envelope.

from __future__ import annotations

import traceback

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import db


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}


class ValidationError(ApiError, ValueError):
    """Malformed or missing input."""
    status_code = 400
    default_message = "Invalid request"


class ConflictError(ApiError, ValueError):
    """Business rule violation: duplicate key, insufficient stock, already cancelled."""
    status_code = 400
    default_message = "Conflict"


class NotFoundError(ApiError, LookupError):
    status_code = 404
    default_message = "Not found"


class AuthError(ApiError):
    status_code = 401
    default_message = "Not authorized"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Not authorized as administrator"


class InternalError(ApiError):
    status_code = 500


def error_envelope(message: str, status_code: int, exc: BaseException | None = None, details: dict | None = None):
    """
    Build the {success, message, stack} body.

    The stack trace is only exposed outside production.
    """
    settings = current_app.extensions.get("shop_settings")
    production = bool(settings and settings.production)

    body = {
        "success": False,
        "message": message,
        "stack": None,
    }
    if exc is not None and not production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    if details:
        body["details"] = details
    return jsonify(body), status_code


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        db.session.rollback()
        if exc.status_code >= 500:
            current_app.logger.exception("Unhandled API error: %s", exc.message)
        return error_envelope(exc.message, exc.status_code, exc, exc.details)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return error_envelope(exc.description or exc.name, exc.code or 500, exc)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        current_app.logger.exception("Unexpected error")
        return error_envelope("Internal server error", 500, exc)
