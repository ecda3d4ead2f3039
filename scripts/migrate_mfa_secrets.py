#!/usr/bin/env python3
"""Encrypt legacy plaintext MFA seeds and rotate existing ciphertext.

The running service never reads a plaintext seed: any stored value that does
not authenticate under the configured keys is treated as corrupt. Run this
once against a database written by an older release, and again after
prepending a new key to ``ITINERA_SECRET_KEYS`` to move every seed onto the
primary key.

    python scripts/migrate_mfa_secrets.py --db itinera.sqlite3 [--rotate] [--dry-run]
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from dataclasses import dataclass

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from adapters.db.sqlite.identities import IdentitiesTable  # noqa: E402
from app_platform.config.auth import AuthConfig  # noqa: E402
from app_platform.security.secret_box import SecretBox  # noqa: E402
from domains.auth.exceptions import ConfigurationError  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger("migrate_mfa_secrets")


@dataclass
class MigrationResult:
    encrypted: int = 0
    rotated: int = 0
    unchanged: int = 0


def migrate_mfa_secrets(
    identities: IdentitiesTable, box: SecretBox, *, rotate: bool = False, dry_run: bool = False
) -> MigrationResult:
    result = MigrationResult()

    for identity in identities.list_with_mfa_secret():
        secret = identity.mfa_secret or ""
        if box.is_ciphertext(secret):
            if not rotate:
                result.unchanged += 1
                continue
            updated = box.rotate(secret)
            result.rotated += 1
        else:
            updated = box.encrypt(secret)
            result.encrypted += 1
            logger.info("Encrypting plaintext seed for %s %s", identity.user_type, identity.id)

        if not dry_run:
            identities.upsert(dataclasses.replace(identity, mfa_secret=updated))

    return result


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Encrypt or rotate stored MFA seeds")
    parser.add_argument("--db", help="SQLite database path (defaults to ITINERA_DB_PATH)")
    parser.add_argument("--rotate", action="store_true", help="re-encrypt ciphertext under the primary key")
    parser.add_argument("--dry-run", action="store_true", help="report without writing")
    args = parser.parse_args(argv)

    try:
        config = AuthConfig.from_env()
        box = SecretBox(config.secret_keys)
    except ConfigurationError as exc:
        logger.error("Cannot migrate: %s", exc)
        return 2

    identities = IdentitiesTable(args.db or config.db_path)
    result = migrate_mfa_secrets(identities, box, rotate=args.rotate, dry_run=args.dry_run)

    print(
        f"encrypted={result.encrypted} rotated={result.rotated} unchanged={result.unchanged}"
        + (" (dry run)" if args.dry_run else "")
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
