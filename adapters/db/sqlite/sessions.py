import sqlite3
from typing import Optional

from domains.auth.models import Session
from domains.auth.serializers import session_from_dict, session_to_dict


class SessionsTable:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init()

    def _init(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            '''
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                user_type TEXT NOT NULL,
                ip_address TEXT NOT NULL,
                user_agent TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                mfa_verified INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            '''
        )
        cur.execute('CREATE INDEX IF NOT EXISTS idx_sessions_identity ON sessions(user_type, user_id, is_active)')
        conn.commit(); conn.close()

    def replace_active(self, session: Session) -> int:
        """Deactivate every active session of the owner and insert ``session``.

        Both statements run inside one IMMEDIATE transaction so no reader ever
        observes two active sessions for the same identity. Returns the number
        of sessions that were superseded.
        """

        record = session_to_dict(session)
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        try:
            cur = conn.cursor()
            cur.execute('BEGIN IMMEDIATE')
            cur.execute(
                'UPDATE sessions SET is_active = 0 WHERE user_id = ? AND user_type = ? AND is_active = 1',
                (record["user_id"], record["user_type"]),
            )
            superseded = cur.rowcount
            cur.execute(
                '''
                INSERT INTO sessions
                (token, user_id, user_type, ip_address, user_agent, created_at, expires_at, mfa_verified, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    record["token"],
                    record["user_id"],
                    record["user_type"],
                    record["ip_address"],
                    record["user_agent"],
                    record["created_at"],
                    record["expires_at"],
                    record["mfa_verified"],
                    record["is_active"],
                ),
            )
            cur.execute('COMMIT')
        except Exception:
            if conn.in_transaction:
                conn.execute('ROLLBACK')
            raise
        finally:
            conn.close()
        return max(superseded, 0)

    def get(self, token: str) -> Optional[Session]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute('SELECT * FROM sessions WHERE token = ?', (token,))
        row = cur.fetchone()
        desc = cur.description
        conn.close()
        if row is None:
            return None
        cols = [d[0] for d in desc]
        return session_from_dict(dict(zip(cols, row)))

    def set_mfa_verified(self, token: str) -> bool:
        return self._execute('UPDATE sessions SET mfa_verified = 1 WHERE token = ? AND is_active = 1', (token,)) > 0

    def deactivate(self, token: str) -> bool:
        return self._execute('UPDATE sessions SET is_active = 0 WHERE token = ? AND is_active = 1', (token,)) > 0

    def deactivate_for_identity(self, user_type: str, user_id: str) -> int:
        return self._execute(
            'UPDATE sessions SET is_active = 0 WHERE user_type = ? AND user_id = ? AND is_active = 1',
            (user_type, user_id),
        )

    def deactivate_all(self) -> int:
        return self._execute('UPDATE sessions SET is_active = 0 WHERE is_active = 1', ())

    def delete_expired(self, now: float) -> int:
        return self._execute('DELETE FROM sessions WHERE expires_at <= ? OR is_active = 0', (now,))

    def count_active(self, now: float) -> int:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute('SELECT COUNT(*) FROM sessions WHERE is_active = 1 AND expires_at > ?', (now,))
        (total,) = cur.fetchone()
        conn.close()
        return int(total)

    def _execute(self, sql: str, params: tuple) -> int:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(sql, params)
        changed = cur.rowcount
        conn.commit(); conn.close()
        return changed
