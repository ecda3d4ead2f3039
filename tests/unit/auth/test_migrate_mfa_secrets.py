"""Tests for the MFA seed encryption/rotation script."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from app_platform.security.secret_box import SecretBox

SCRIPT = Path(__file__).resolve().parents[3] / "scripts" / "migrate_mfa_secrets.py"
PLAIN_SEED = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"


@pytest.fixture(scope="module")
def migration():
    spec = importlib.util.spec_from_file_location("migrate_mfa_secrets", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def seeded(identities_table, hotel, admin, secret_box):
    hotel.mfa_secret = PLAIN_SEED
    identities_table.upsert(hotel)
    admin.mfa_secret = secret_box.encrypt(PLAIN_SEED)
    identities_table.upsert(admin)
    return hotel, admin


def test_plaintext_seeds_are_encrypted(migration, identities_table, secret_box, seeded):
    hotel, admin = seeded

    result = migration.migrate_mfa_secrets(identities_table, secret_box)

    assert (result.encrypted, result.rotated, result.unchanged) == (1, 0, 1)
    stored = identities_table.get("hotel", hotel.id).mfa_secret
    assert stored != PLAIN_SEED
    assert secret_box.decrypt(stored) == PLAIN_SEED


def test_dry_run_writes_nothing(migration, identities_table, secret_box, seeded):
    hotel, _ = seeded

    result = migration.migrate_mfa_secrets(identities_table, secret_box, dry_run=True)

    assert result.encrypted == 1
    assert identities_table.get("hotel", hotel.id).mfa_secret == PLAIN_SEED


def test_rotate_moves_ciphertext_to_new_primary_key(migration, identities_table, fernet_key, seeded):
    _, admin = seeded
    new_key = Fernet.generate_key().decode("ascii")
    rotating_box = SecretBox([new_key, fernet_key])

    result = migration.migrate_mfa_secrets(identities_table, rotating_box, rotate=True)

    assert result.rotated == 1
    stored = identities_table.get("admin", admin.id).mfa_secret
    assert SecretBox([new_key]).decrypt(stored) == PLAIN_SEED


def test_main_refuses_without_keys(migration, monkeypatch, db_path):
    monkeypatch.delenv("ITINERA_SECRET_KEYS", raising=False)

    assert migration.main(["--db", db_path]) == 2
