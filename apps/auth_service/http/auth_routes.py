"""Authentication routes served by the auth service.

All stateful collaborators (managers, engines, limiter, audit trail) are
attached to the request by ``apps.auth_service.main`` so this module stays
side-effect free. Errors are raised as ``AuthError`` subclasses and rendered
by ``app_platform.errors.api``.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from flask import Blueprint, jsonify, make_response, request

from application.auth import commands, queries
from application.auth.services import fingerprint
from domains.auth.exceptions import ValidationError
from domains.auth.models import ADMIN, HOTEL, USER_TYPES
from logging_lib import get_logger as get_structured_logger

from apps.auth_service.http.middleware import client_info, extract_session_token, require_auth

auth_bp = Blueprint("auth_service", __name__, url_prefix="/api/auth")

logger = get_structured_logger("auth.routes")

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_GENERIC_RESET_MESSAGE = "If the account exists, instructions have been sent"


def _payload() -> Mapping[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, Mapping) else {}


def _require_str(payload: Mapping[str, Any], field: str, *, max_length: int = 1024) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip() or len(value) > max_length:
        raise ValidationError("Invalid data", field=field)
    return value


def _email(payload: Mapping[str, Any]) -> str:
    value = _require_str(payload, "email", max_length=254).strip()
    if not _EMAIL.match(value):
        raise ValidationError("Invalid email", field="email")
    return value


def _user_type(payload: Mapping[str, Any]) -> str:
    value = payload.get("userType")
    if value not in USER_TYPES:
        raise ValidationError("Invalid user type", field="userType")
    return value


def _runtime():
    return request.auth_runtime


def _set_session_cookie(response, token: str):
    cfg = request.auth_config
    response.set_cookie(
        cfg.session_cookie_name,
        token,
        max_age=cfg.session_duration,
        httponly=True,
        secure=cfg.secure_cookies,
        samesite="Strict",
    )
    return response


# --------------------- login ---------------------
def _login(user_type: str):
    payload = _payload()
    email = _email(payload)
    password = _require_str(payload, "password")

    logger.info(
        "Login attempt received",
        extra={"user_type": user_type, "email_hash": fingerprint(email), "remote_hash": fingerprint(request.remote_addr)},
    )

    rt = _runtime()
    result = commands.LoginIdentity(
        rt.credentials, rt.session_manager, rt.lockout, rt.audit_logger, rt.rate_limiter, rt.config.rate_limits.login
    ).execute(user_type, email, password, client_info())

    token = result.session.token
    if result.requires_mfa:
        body = {
            "success": True,
            "requiresMfa": True,
            "sessionToken": token,
            "message": "Enter the code from your authenticator app",
        }
    elif result.requires_mfa_setup:
        body = {
            "success": True,
            "requiresMfaSetup": True,
            "sessionToken": token,
            "message": "Two-factor authentication must be configured before continuing",
        }
    else:
        body = {"success": True, "sessionToken": token, "user": result.identity.public_view()}

    return _set_session_cookie(make_response(jsonify(body), 200), token)


@auth_bp.route("/login/hotel", methods=["POST"])
def login_hotel():
    return _login(HOTEL)


@auth_bp.route("/login/admin", methods=["POST"])
def login_admin():
    return _login(ADMIN)


@auth_bp.route("/setup-password", methods=["POST"])
def setup_password():
    payload = _payload()
    hotel_id = _require_str(payload, "hotelId", max_length=128)
    password = _require_str(payload, "password")

    rt = _runtime()
    commands.SetupPassword(rt.identity_manager, rt.audit_logger, rt.rate_limiter, rt.config.rate_limits.login).execute(
        hotel_id, password, client_info()
    )
    return jsonify({"success": True, "message": "Password configured"}), 200


# --------------------- MFA ---------------------
@auth_bp.route("/setup-mfa", methods=["POST"])
@require_auth(user_type="both")
def setup_mfa():
    rt = _runtime()
    provisioning = commands.SetupMfa(rt.identity_manager, rt.mfa_engine, rt.audit_logger).execute(
        request.auth_identity, client_info()
    )
    return jsonify({
        "success": True,
        "secret": provisioning.secret,
        "otpauthUrl": provisioning.otpauth_url,
        "qrCodeDataUrl": provisioning.qr_code_data_url,
        "message": "Scan the QR code with your authenticator app",
    }), 200


@auth_bp.route("/enable-mfa", methods=["POST"])
@require_auth(user_type="both")
def enable_mfa():
    code = _payload().get("code")
    rt = _runtime()
    identity = commands.EnableMfa(
        rt.identity_manager, rt.session_manager, rt.mfa_engine, rt.lockout, rt.audit_logger
    ).execute(request.auth_identity, code if isinstance(code, str) else "", client_info())
    return jsonify({
        "success": True,
        "message": "Two-factor authentication enabled",
        "user": identity.public_view(),
    }), 200


@auth_bp.route("/verify-mfa", methods=["POST"])
def verify_mfa():
    payload = _payload()
    token = payload.get("sessionToken") or extract_session_token()
    code = payload.get("code")
    if not isinstance(token, str) or not token:
        raise ValidationError("Invalid data", field="sessionToken")
    if not isinstance(code, str) or len(code) != 6:
        raise ValidationError("The code must be 6 digits", field="code")

    rt = _runtime()
    identity = commands.VerifyMfa(
        rt.identity_manager, rt.session_manager, rt.mfa_engine, rt.lockout, rt.audit_logger
    ).execute(token, code, client_info())
    return jsonify({"success": True, "sessionToken": token, "user": identity.public_view()}), 200


@auth_bp.route("/mfa-status", methods=["GET"])
@require_auth(user_type="both")
def mfa_status():
    return jsonify(queries.GetMfaStatus(_runtime().identity_manager).execute(request.auth_identity)), 200


@auth_bp.route("/disable-mfa", methods=["POST"])
@require_auth(user_type="both", require_mfa=True)
def disable_mfa():
    payload = _payload()
    password = _require_str(payload, "password")
    code = payload.get("code")

    rt = _runtime()
    commands.DisableMfa(rt.identity_manager, rt.mfa_engine, rt.lockout, rt.audit_logger, rt.hasher).execute(
        request.auth_identity, password, code if isinstance(code, str) else "", client_info()
    )
    return jsonify({"success": True, "message": "Two-factor authentication disabled"}), 200


@auth_bp.route("/reset-mfa", methods=["POST"])
def reset_mfa():
    payload = _payload()
    user_type = _user_type(payload)
    rt = _runtime()

    if payload.get("token"):
        token = _require_str(payload, "token", max_length=4096)
        commands.CompleteMfaReset(
            rt.identity_manager, rt.session_manager, rt.mfa_engine, rt.recovery_tokens, rt.audit_logger
        ).execute(user_type, token, client_info())
        return jsonify({"success": True, "message": "Two-factor authentication has been reset"}), 200

    email = _email(payload)
    password = _require_str(payload, "password")
    commands.RequestMfaReset(
        rt.credentials,
        rt.recovery_tokens,
        rt.outbox,
        rt.audit_logger,
        rt.rate_limiter,
        rt.config.rate_limits.email,
        base_url=rt.config.app_base_url,
    ).execute(user_type, email, password, client_info())
    return jsonify({"success": True, "message": _GENERIC_RESET_MESSAGE}), 200


# --------------------- session ---------------------
@auth_bp.route("/logout", methods=["POST"])
@require_auth(user_type="both")
def logout():
    rt = _runtime()
    commands.Logout(rt.session_manager, rt.audit_logger).execute(request.auth_identity, client_info())
    response = make_response(jsonify({"success": True, "message": "Logged out"}), 200)
    response.delete_cookie(request.auth_config.session_cookie_name)
    return response


@auth_bp.route("/me", methods=["GET"])
@require_auth(user_type="both", require_mfa=True)
def me():
    return jsonify(queries.GetCurrentIdentity(_runtime().identity_manager).execute(request.auth_identity)), 200


# --------------------- password reset ---------------------
@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = _payload()
    email = _email(payload)
    user_type = _user_type(payload)

    rt = _runtime()
    commands.ForgotPassword(
        rt.identity_manager,
        rt.recovery_tokens,
        rt.outbox,
        rt.audit_logger,
        rt.rate_limiter,
        rt.config.rate_limits.email,
        base_url=rt.config.app_base_url,
    ).execute(user_type, email, client_info())
    return jsonify({"success": True, "message": _GENERIC_RESET_MESSAGE}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    payload = _payload()
    token = _require_str(payload, "token", max_length=4096)
    password = _require_str(payload, "password")
    user_type = _user_type(payload)

    rt = _runtime()
    commands.ResetPassword(
        rt.identity_manager, rt.session_manager, rt.lockout, rt.recovery_tokens, rt.audit_logger
    ).execute(user_type, token, password, client_info())
    return jsonify({"success": True, "message": "Password updated"}), 200


__all__ = ["auth_bp"]
