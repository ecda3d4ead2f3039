import sqlite3
from typing import List, Optional

from domains.auth.models import Identity
from domains.auth.serializers import identity_from_dict, identity_to_dict


class IdentitiesTable:
    """Hotel managers and administrators share one table keyed by (user_type, id)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init()

    def _init(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            '''
            CREATE TABLE IF NOT EXISTS identities (
                id TEXT NOT NULL,
                user_type TEXT NOT NULL,
                email TEXT NOT NULL,
                name TEXT DEFAULT '',
                password_hash TEXT,
                mfa_secret TEXT,
                mfa_enabled INTEGER NOT NULL DEFAULT 0,
                login_attempts INTEGER NOT NULL DEFAULT 0,
                locked_until REAL,
                last_login REAL,
                ip_whitelist TEXT DEFAULT '[]',
                created_at REAL NOT NULL,
                PRIMARY KEY (user_type, id)
            )
            '''
        )
        cur.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_identities_email ON identities(user_type, email)')
        conn.commit(); conn.close()

    def get(self, user_type: str, identity_id: str) -> Optional[Identity]:
        return self._fetch_one('SELECT * FROM identities WHERE user_type = ? AND id = ?', (user_type, identity_id))

    def get_by_email(self, user_type: str, email: str) -> Optional[Identity]:
        return self._fetch_one(
            'SELECT * FROM identities WHERE user_type = ? AND email = ? COLLATE NOCASE',
            (user_type, email),
        )

    def upsert(self, identity: Identity) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        record = identity_to_dict(identity)
        cur.execute(
            '''
            INSERT OR REPLACE INTO identities
            (id, user_type, email, name, password_hash, mfa_secret, mfa_enabled, login_attempts,
             locked_until, last_login, ip_whitelist, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                record["id"],
                record["user_type"],
                record["email"],
                record["name"],
                record["password_hash"],
                record["mfa_secret"],
                record["mfa_enabled"],
                record["login_attempts"],
                record["locked_until"],
                record["last_login"],
                record["ip_whitelist"],
                record["created_at"],
            ),
        )
        conn.commit(); conn.close()

    def list_locked(self, now: float) -> List[Identity]:
        return self._fetch_all('SELECT * FROM identities WHERE locked_until IS NOT NULL AND locked_until > ?', (now,))

    def list_with_mfa_secret(self) -> List[Identity]:
        return self._fetch_all('SELECT * FROM identities WHERE mfa_secret IS NOT NULL', ())

    def count(self) -> int:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute('SELECT COUNT(*) FROM identities')
        (total,) = cur.fetchone()
        conn.close()
        return int(total)

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Identity]:
        rows = self._fetch_all(sql, params)
        return rows[0] if rows else None

    def _fetch_all(self, sql: str, params: tuple) -> List[Identity]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        desc = cur.description
        conn.close()
        cols = [d[0] for d in desc]
        return [identity_from_dict(dict(zip(cols, row))) for row in rows]
