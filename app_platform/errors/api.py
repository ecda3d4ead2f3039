"""Central API error codes and registration helpers."""

from __future__ import annotations

from typing import Any, Dict

from flask import jsonify
from werkzeug.exceptions import HTTPException

from domains.auth.exceptions import AuthError, RateLimitError
from logging_lib import get_logger

logger = get_logger("api.errors")


ERRORS: Dict[str, int] = {
    'MISSING_FIELDS': 400,
    'INVALID_ARGUMENT': 400,
    'VALIDATION_ERROR': 400,
    'STORAGE_VALIDATION_ERROR': 400,
    'AUTH_ERROR': 401,
    'PERMISSION_DENIED': 403,
    'NOT_FOUND': 404,
    'METHOD_NOT_ALLOWED': 405,
    'ACCOUNT_LOCKED': 423,
    'RATE_LIMITED': 429,
    'STORAGE_RATE_LIMITED': 429,
    'INTERNAL_ERROR': 500,
    'CONFIGURATION_ERROR': 500,
    'CIPHER_ERROR': 500,
    'STORAGE_ERROR': 500,
    'STORAGE_TIMEOUT': 500,
}


def make_error(message: str, code: str, **extra: Any) -> Any:
    """Make an error response."""

    status = ERRORS.get(code, 500)
    payload: Dict[str, Any] = {'error': message, 'code': code}
    payload.update(extra)
    return jsonify(payload), status


def auth_error_response(e: AuthError) -> Any:
    """Render an :class:`AuthError`; server-side failures keep their detail out of the body."""

    if e.status >= 500:
        body, status = make_error(type(e).public_message, e.code)
    else:
        body, status = make_error(e.message, e.code, **e.extra)

    if isinstance(e, RateLimitError) and e.retry_after:
        body.headers['Retry-After'] = str(int(e.retry_after))
    return body, status


def register_error_handlers(app) -> None:
    """Register error handlers."""

    @app.errorhandler(404)
    def _h_404(_e):
        """Handle 404 errors."""

        return make_error('Not found', 'NOT_FOUND')

    @app.errorhandler(405)
    def _h_405(_e):
        """Handle 405 errors."""

        return make_error('Method not allowed', 'METHOD_NOT_ALLOWED')

    @app.errorhandler(HTTPException)
    def _h_http(e: HTTPException):
        """Handle other framework HTTP errors (malformed bodies and the like)."""

        body, _ = make_error(e.description or e.name, 'INVALID_ARGUMENT' if (e.code or 500) < 500 else 'INTERNAL_ERROR')
        return body, e.code or 500

    @app.errorhandler(AuthError)
    def _h_auth(e: AuthError):
        """Handle the auth error taxonomy."""

        if e.status >= 500:
            logger.error('Request failed', code=e.code, error=str(e))
        return auth_error_response(e)

    @app.errorhandler(Exception)
    def _h_exc(e: Exception):
        """Handle all other errors."""

        logger.error('Unhandled error', error_type=type(e).__name__, error=str(e), exc_info=True)
        return make_error('Internal server error', 'INTERNAL_ERROR')
