"""Security operations endpoints: health, audit report, emergency lockdown."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from application.auth import commands, queries
from logging_lib import get_logger as get_structured_logger

from apps.auth_service.http.middleware import client_info, require_auth

security_bp = Blueprint("security", __name__, url_prefix="/api/security")

logger = get_structured_logger("auth.routes.security")


@security_bp.route("/health", methods=["GET"])
def security_health():
    rt = request.auth_runtime
    body = queries.SecurityHealth(rt.secure_store).execute()
    return jsonify(body), 200 if body["status"] == "healthy" else 500


@security_bp.route("/report", methods=["GET"])
@require_auth(user_type="admin", require_mfa=True)
def security_report():
    try:
        limit = max(1, min(int(request.args.get("limit", 50)), 500))
    except ValueError:
        limit = 50
    rt = request.auth_runtime
    report = queries.SecurityReport(
        rt.security_logs, rt.identities_table, rt.session_manager, clock=rt.clock
    ).execute(limit=limit)
    return jsonify(report), 200


@security_bp.route("/lockdown", methods=["POST"])
@require_auth(user_type="admin", require_mfa=True)
def emergency_lockdown():
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") if isinstance(payload, dict) else None

    rt = request.auth_runtime
    revoked = commands.EmergencyLockdown(rt.session_manager, rt.secure_store, rt.audit_logger).execute(
        request.auth_identity, reason if isinstance(reason, str) else "", client_info()
    )
    logger.critical("Emergency lockdown engaged", extra={"sessions_revoked": revoked})
    return jsonify({"success": True, "sessionsRevoked": revoked}), 200


__all__ = ["security_bp"]
