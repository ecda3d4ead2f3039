"""Fixtures wiring the auth core against a throwaway SQLite database."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from adapters.db.sqlite.identities import IdentitiesTable
from adapters.db.sqlite.records import RecordsTable
from adapters.db.sqlite.security_logs import SecurityLogTable
from adapters.db.sqlite.sessions import SessionsTable
from app_platform.config.rate_limit import RateLimitScopes
from app_platform.rate_limit.window_limiter import RateLimiter
from app_platform.security.secret_box import SecretBox
from application.auth.commands import ClientInfo
from application.auth.lockout import LockoutPolicy
from application.auth.managers import IdentityManager, SessionManager
from application.auth.mfa import MfaEngine
from application.auth.services import AuditLogger

STRONG_PASSWORD = "Sunrise!Harbor42"


def pytest_collection_modifyitems(config, items):  # pragma: no cover - Pytest hook
    for item in items:
        item.add_marker(pytest.mark.auth)
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def identities_table(db_path):
    return IdentitiesTable(db_path)


@pytest.fixture
def sessions_table(db_path):
    return SessionsTable(db_path)


@pytest.fixture
def security_logs(db_path):
    return SecurityLogTable(db_path)


@pytest.fixture
def records_table(db_path):
    return RecordsTable(db_path)


@pytest.fixture
def secret_box(fernet_key):
    return SecretBox([fernet_key])


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def scopes():
    return RateLimitScopes()


@pytest.fixture
def audit(security_logs, clock):
    return AuditLogger(security_logs, clock=clock)


@pytest.fixture
def identity_manager(identities_table, fast_hasher):
    return IdentityManager(identities_table, fast_hasher)


@pytest.fixture
def session_manager(sessions_table, identities_table, clock):
    return SessionManager(sessions_table, identities_table, clock=clock)


@pytest.fixture
def lockout(identities_table, clock):
    return LockoutPolicy(identities_table, clock=clock)


@pytest.fixture
def mfa_engine(identities_table, secret_box, limiter, scopes, clock):
    return MfaEngine(identities_table, secret_box, limiter, scopes.mfa, clock=clock)


@pytest.fixture
def client():
    return ClientInfo(ip_address="203.0.113.7", user_agent="pytest-agent")


@pytest.fixture
def hotel(identity_manager):
    return identity_manager.register("hotel", "manager@grandhotel.example", password=STRONG_PASSWORD, name="Grand Hotel")


@pytest.fixture
def admin(identity_manager):
    return identity_manager.register("admin", "ops@itinera.example", password=STRONG_PASSWORD, name="Ops")


@pytest.fixture
def actor_factory():
    def _actor(identity_id: str, user_type: str):
        return SimpleNamespace(id=identity_id, type=user_type)

    return _actor
