"""Tests for the best-effort security audit trail."""

from __future__ import annotations

from application.auth.services import AuditLogger, MAX_DETAILS_CHARS, fingerprint, scrub_details


class _BrokenTable:
    db_path = ":broken:"

    def append(self, entry):
        raise RuntimeError("disk full")


def test_events_are_persisted_with_scrubbed_details(audit, security_logs, clock):
    token = "a1b2c3d4" + "f" * 56

    assert audit.log_event(
        "login_success",
        user_id="h1",
        user_type="hotel",
        ip_address="203.0.113.7",
        details={"session_token": token, "password": "hunter2", "email": "Guest@Example.com"},
    )

    (entry,) = security_logs.recent(limit=1)
    assert entry.action == "login_success"
    assert entry.timestamp == clock()
    assert entry.details["session_token"] == "a1b2c3d4..."
    assert "password" not in entry.details
    assert "email" not in entry.details
    assert entry.details["email_fingerprint"] == fingerprint("guest@example.com")


def test_persistence_failure_never_raises():
    audit = AuditLogger(_BrokenTable())
    assert audit.log_event("login_success", user_id="h1", user_type="hotel") is False


def test_oversized_details_are_truncated():
    scrubbed = scrub_details({"blob": "x" * (MAX_DETAILS_CHARS * 2)})
    assert scrubbed["truncated"] is True
    assert len(scrubbed["preview"]) == MAX_DETAILS_CHARS


def test_nested_details_are_scrubbed():
    scrubbed = scrub_details({"outer": {"mfa_secret": "S", "token": "abcdefghijkl"}})
    assert scrubbed == {"outer": {"token": "abcdefgh..."}}


def test_login_failure_uses_reason_suffix(audit, security_logs):
    audit.log_login_failure("wrong_password", user_id="h1", user_type="hotel", ip_address="ip", user_agent="ua")

    assert [e.action for e in security_logs.recent()] == ["login_failed_wrong_password"]
    assert security_logs.count_since("login_failed", 0) == 1


def test_permission_denied_records_endpoint(audit, security_logs):
    audit.log_permission_denied(
        "auth_ip_blocked",
        user_id="h1",
        user_type="hotel",
        ip_address="10.0.0.9",
        user_agent="ua",
        endpoint="/api/auth/me",
        ip="10.0.0.9",
    )

    (entry,) = security_logs.recent(action="auth_ip_blocked")
    assert entry.details == {"endpoint": "/api/auth/me", "ip": "10.0.0.9"}
