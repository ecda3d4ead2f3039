"""Top-level pytest configuration for itinera-auth tests.

Shared fixtures here stay dependency-light: a controllable clock, throwaway
key material and an :class:`AuthConfig` pointed at a per-test SQLite file.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from cryptography.fernet import Fernet

from app_platform.config.auth import AuthConfig
from application.auth.passwords import PasswordHasher

SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"


@dataclass
class FakeClock:
    """Mutable wall clock; call it like ``time.time``."""

    now: float = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode("ascii")


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "itinera-test.sqlite3")


@pytest.fixture
def auth_config(db_path, fernet_key) -> AuthConfig:
    return AuthConfig(
        secret_keys=(fernet_key,),
        token_signing_key=SIGNING_KEY,
        secure_cookies=False,
        db_path=db_path,
        app_base_url="https://app.itinera.test",
        storage_timeout=5.0,
    )


@pytest.fixture(scope="session")
def fast_hasher() -> PasswordHasher:
    # Minimum bcrypt cost keeps the suite fast; production uses 12.
    return PasswordHasher(rounds=4)
