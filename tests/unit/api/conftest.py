"""Fixtures serving the auth Flask app against a throwaway database."""

from __future__ import annotations

import re
from urllib.parse import unquote_plus

import pyotp
import pytest

import logging_lib
from application.auth.notifications import InMemoryOutbox
from apps.auth_service.main import create_app

STRONG_PASSWORD = "Sunrise!Harbor42"
HOTEL_EMAIL = "manager@grandhotel.example"
ADMIN_EMAIL = "ops@itinera.example"
CLIENT_IP = "203.0.113.7"

_TOKEN_IN_LINK = re.compile(r"token=([^&\s]+)")


def pytest_collection_modifyitems(config, items):  # pragma: no cover - Pytest hook
    for item in items:
        item.add_marker(pytest.mark.api)
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def outbox():
    return InMemoryOutbox()


@pytest.fixture
def app(auth_config, fast_hasher, outbox, clock):
    logging_lib.configure(logging_lib.load_settings({"LOG_SINKS": "memory", "LOG_FLUSH_MS": "10"}))
    flask_app = create_app(auth_config, hasher=fast_hasher, outbox=outbox, clock=clock)
    flask_app.config["TESTING"] = True
    yield flask_app
    logging_lib.reset_loggers()


@pytest.fixture
def runtime(app):
    return app.config["AUTH_SERVICE_RUNTIME"]


@pytest.fixture
def client(app):
    return app.test_client(use_cookies=False)


@pytest.fixture
def hotel(runtime):
    return runtime.identity_manager.register("hotel", HOTEL_EMAIL, password=STRONG_PASSWORD, name="Grand Hotel")


@pytest.fixture
def admin(runtime):
    return runtime.identity_manager.register("admin", ADMIN_EMAIL, password=STRONG_PASSWORD, name="Ops")


@pytest.fixture
def api(client):
    return ApiDriver(client)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def totp_now(secret, clock):
    return pyotp.TOTP(secret).at(int(clock()))


def token_from_email(message):
    match = _TOKEN_IN_LINK.search(message.body)
    assert match, message.body
    return unquote_plus(match.group(1))


class ApiDriver:
    """Thin helper around the test client for the common auth calls."""

    def __init__(self, client):
        self.client = client

    def post(self, path, body=None, *, token=None, ip=CLIENT_IP, headers=None):
        merged = dict(headers or {})
        if token:
            merged.update(bearer(token))
        return self.client.post(path, json=body or {}, headers=merged, environ_base={"REMOTE_ADDR": ip})

    def get(self, path, *, token=None, ip=CLIENT_IP, headers=None):
        merged = dict(headers or {})
        if token:
            merged.update(bearer(token))
        return self.client.get(path, headers=merged, environ_base={"REMOTE_ADDR": ip})

    def login(self, user_type, email, password=STRONG_PASSWORD, *, ip=CLIENT_IP, headers=None):
        return self.post(f"/api/auth/login/{user_type}", {"email": email, "password": password}, ip=ip, headers=headers)

    def enrol_mfa(self, token, clock):
        """Run setup-mfa then enable-mfa on ``token``; returns the TOTP secret."""

        setup = self.post("/api/auth/setup-mfa", token=token)
        assert setup.status_code == 200, setup.get_json()
        secret = setup.get_json()["secret"]
        enable = self.post("/api/auth/enable-mfa", {"code": totp_now(secret, clock)}, token=token)
        assert enable.status_code == 200, enable.get_json()
        return secret

    def verified_admin(self, clock):
        response = self.login("admin", ADMIN_EMAIL)
        token = response.get_json()["sessionToken"]
        self.enrol_mfa(token, clock)
        return token


@pytest.fixture
def totp(clock):
    """Current TOTP code for a base32 secret, at the test clock."""

    return lambda secret: totp_now(secret, clock)


@pytest.fixture
def email_token():
    return token_from_email


@pytest.fixture
def wrong_code(clock):
    """A well-formed code that no step in the accepted window produces."""

    def _wrong(secret):
        accepted = {pyotp.TOTP(secret).at(int(clock()) + step * 30) for step in range(-3, 4)}
        return next(code for code in ("000000", "111111", "222222", "333333") if code not in accepted)

    return _wrong
