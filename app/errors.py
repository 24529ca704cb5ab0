"""
Error taxonomy shared by the auth, booking and notification services.

Each error knows its HTTP status and a short machine-readable code; the
handlers registered in ``register_error_handlers`` turn them into the
``{"status": "error", "error": <code>, "message": <text>}`` body used across
the API.
"""

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException

from app.extensions import db


class ApiError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message=None, code=None, **extra):
        super().__init__(message or self.__class__.__name__)
        self.message = message or "Internal server error"
        if code:
            self.code = code
        self.extra = {k: v for k, v in extra.items() if v is not None}

    def to_dict(self):
        payload = {"status": "error", "error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(ApiError):
    status_code = 400
    code = "validation_error"

    def __init__(self, message, field=None, **extra):
        super().__init__(message, field=field, **extra)
        self.field = field


class InvalidCredentials(ApiError):
    status_code = 401
    code = "invalid_credentials"


class AuthorizationDenied(ApiError):
    status_code = 403
    code = "forbidden"


class NotFound(ApiError):
    status_code = 404
    code = "not_found"


class Conflict(ApiError):
    status_code = 409
    code = "conflict"


class UpstreamAuthFailure(ApiError):
    status_code = 502
    code = "upstream_auth_failed"

    def __init__(self, message, details=None):
        super().__init__(message, details=details)
        self.details = details


class ConfigurationError(ApiError):
    """Server misconfiguration, e.g. no token signing secret."""

    status_code = 500
    code = "configuration_error"


class UnexpectedError(ApiError):
    status_code = 500
    code = "internal_error"


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        if e.status_code >= 500:
            current_app.logger.error(f"{e.code}: {e.message}")
            db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return (
            jsonify(
                {
                    "status": "error",
                    "error": (e.name or "error").lower().replace(" ", "_"),
                    "message": e.description,
                }
            ),
            e.code,
        )

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        current_app.logger.exception(f"Unhandled error: {e}")
        # Exception text stays in the log, never in the response
        error = UnexpectedError("Internal server error")
        return jsonify(error.to_dict()), error.status_code
