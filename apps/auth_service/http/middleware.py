"""Session authentication gate for the auth service routes.

``require_auth`` is the only guard routes use. Checks run in a fixed order and
stop at the first failure:

1. a session token is present (``Authorization: Bearer`` first, then the
   session cookie) -> 401
2. the token names an active, unexpired session -> 401
3. the session's identity type is accepted by the route -> 403
4. MFA was verified on the session when the route requires it -> 403
5. the client address is on the identity's whitelist, if it has one -> 403

Every rejection is written to the audit trail. On success the request carries
``request.identity`` ({id, type, mfaVerified}) and ``request.auth_identity``.
"""

from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import request

from application.auth.commands import ClientInfo
from domains.auth.exceptions import AuthenticationError, AuthorizationError
from domains.auth.models import ADMIN, HOTEL, AuthenticatedIdentity, token_prefix
from logging_lib import get_logger as get_structured_logger

logger = get_structured_logger("auth.http.middleware")

BOTH = "both"
_ACCEPTED = {HOTEL: {HOTEL}, ADMIN: {ADMIN}, BOTH: {HOTEL, ADMIN}}


def parse_bearer_token(header_value: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""

    if not header_value or not isinstance(header_value, str):
        return None
    parts = header_value.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def extract_session_token() -> Optional[str]:
    token = parse_bearer_token(request.headers.get("Authorization"))
    if token:
        return token
    cookie_name = getattr(getattr(request, "auth_config", None), "session_cookie_name", "session_token")
    return request.cookies.get(cookie_name) or None


def client_info() -> ClientInfo:
    return ClientInfo(
        ip_address=request.remote_addr or "unknown",
        user_agent=request.headers.get("User-Agent") or "unknown",
    )


def _reject(exc, action: str, *, user_id=None, user_type="unknown", **details):
    client = client_info()
    audit = getattr(request, "audit_logger", None)
    if audit is not None:
        audit.log_permission_denied(
            action,
            user_id=user_id,
            user_type=user_type,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            endpoint=request.path,
            **details,
        )
    logger.warning(
        "Request rejected",
        extra={"action": action, "endpoint": request.endpoint, "user_type": user_type},
    )
    raise exc


def require_auth(user_type: str = BOTH, require_mfa: bool = False):
    """Decorator for routes that need an authenticated session."""

    if user_type not in _ACCEPTED:
        raise ValueError(f"unsupported user_type guard: {user_type!r}")
    accepted = _ACCEPTED[user_type]

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            token = extract_session_token()
            if not token:
                _reject(AuthenticationError("Authentication required"), "auth_missing_token")

            sessions = request.session_manager
            session = sessions.validate(token)
            if session is None:
                _reject(
                    AuthenticationError("Invalid or expired session"),
                    "auth_invalid_token",
                    session_token=token,
                )

            if session.user_type not in accepted:
                _reject(
                    AuthorizationError("Access denied for this account type"),
                    "auth_wrong_user_type",
                    user_id=session.user_id,
                    user_type=session.user_type,
                    required=user_type,
                )

            if require_mfa and not session.mfa_verified:
                _reject(
                    AuthorizationError("MFA verification required", requiresMfa=True),
                    "auth_mfa_required",
                    user_id=session.user_id,
                    user_type=session.user_type,
                )

            identity = request.identity_manager.get(session.user_type, session.user_id)
            if identity is None:
                _reject(
                    AuthenticationError("Invalid or expired session"),
                    "auth_identity_missing",
                    user_id=session.user_id,
                    user_type=session.user_type,
                )

            if identity.ip_whitelist and not identity.ip_allowed(request.remote_addr):
                _reject(
                    AuthorizationError("Access from this address is not allowed"),
                    "auth_ip_blocked",
                    user_id=identity.id,
                    user_type=identity.user_type,
                    ip=request.remote_addr,
                )

            auth_identity = AuthenticatedIdentity(
                id=session.user_id,
                type=session.user_type,
                mfa_verified=session.mfa_verified,
                session_token=token,
            )
            request.auth_identity = auth_identity
            request.identity = auth_identity.as_dict()
            logger.debug(
                "Request authenticated",
                extra={"endpoint": request.endpoint, "session": token_prefix(token)},
            )
            return f(*args, **kwargs)

        return decorated_function

    return decorator


__all__ = ["BOTH", "require_auth", "parse_bearer_token", "extract_session_token", "client_info"]
