"""App wiring: fatal configuration, error mapping, headers and request logging."""

from __future__ import annotations

import dataclasses

import pytest

import logging_lib
from apps.auth_service.main import create_app
from domains.auth.exceptions import ConfigurationError, StorageTimeoutError


def test_missing_encryption_keys_are_fatal(auth_config):
    with pytest.raises(ConfigurationError, match="SECRET_KEYS"):
        create_app(dataclasses.replace(auth_config, secret_keys=()))


def test_short_signing_key_is_fatal(auth_config):
    with pytest.raises(ConfigurationError, match="TOKEN_SIGNING_KEY"):
        create_app(dataclasses.replace(auth_config, token_signing_key="too-short"))


def test_invalid_encryption_key_is_fatal(auth_config):
    with pytest.raises(ConfigurationError):
        create_app(dataclasses.replace(auth_config, secret_keys=("not-a-fernet-key",)))


def test_unknown_route_is_json_404(api):
    response = api.get("/api/auth/nothing-here")

    assert response.status_code == 404
    assert response.get_json() == {"error": "Not found", "code": "NOT_FOUND"}


def test_wrong_method_is_json_405(api):
    response = api.get("/api/auth/login/hotel")

    assert response.status_code == 405
    assert response.get_json()["code"] == "METHOD_NOT_ALLOWED"


def test_missing_fields_are_400(client):
    response = client.post("/api/auth/login/hotel", data="{not json", content_type="application/json")

    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid data", "code": "VALIDATION_ERROR", "field": "email"}


def test_login_rate_limit_sets_retry_after(api):
    for index in range(5):
        assert api.login("hotel", f"nobody{index}@example.com").status_code == 401

    limited = api.login("hotel", "nobody@example.com")

    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "900"
    assert api.login("hotel", "nobody@example.com", ip="198.51.100.4").status_code == 401


def test_server_errors_hide_details(app, client):
    @app.route("/boom/storage")
    def _storage():
        raise StorageTimeoutError("select on /var/lib/itinera.sqlite3 hung")

    @app.route("/boom/bug")
    def _bug():
        raise RuntimeError("unexpected")

    storage = client.get("/boom/storage")
    bug = client.get("/boom/bug")

    assert storage.status_code == 500
    assert storage.get_json() == {"error": "Database operation timed out", "code": "STORAGE_TIMEOUT"}
    assert bug.status_code == 500
    assert bug.get_json() == {"error": "Internal server error", "code": "INTERNAL_ERROR"}


def test_security_headers(api, auth_config, fast_hasher, outbox, clock):
    response = api.get("/api/security/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Cache-Control"] == "no-store"
    assert "Strict-Transport-Security" not in response.headers

    secure_app = create_app(
        dataclasses.replace(auth_config, secure_cookies=True), hasher=fast_hasher, outbox=outbox, clock=clock
    )
    secure = secure_app.test_client().get("/api/security/health")
    assert secure.headers["Strict-Transport-Security"].startswith("max-age=")


def test_request_id_is_echoed_or_generated(api):
    echoed = api.get("/api/security/health", headers={"X-Request-Id": "req-123"})
    generated = api.get("/api/security/health")

    assert echoed.headers["X-Request-Id"] == "req-123"
    assert len(generated.headers["X-Request-Id"]) == 16


def test_requests_are_logged_without_credentials(api, hotel):
    api.login("hotel", hotel.email, "Wrong!Password1", headers={"X-Request-Id": "req-login"})
    api.get("/healthz")

    records = logging_lib.memory_records()

    http = [r for r in records if r["message"] == "http_request"]
    assert [r["route"] for r in http] == ["/api/auth/login/hotel"]
    assert http[0]["status"] == 401
    assert http[0]["rid"] == "req-login"
    dumped = repr(records)
    assert hotel.email not in dumped
    assert "Wrong!Password1" not in dumped
