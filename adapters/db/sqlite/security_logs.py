import sqlite3
from typing import List, Optional

from domains.auth.models import SecurityLogEntry
from domains.auth.serializers import log_entry_from_dict, log_entry_to_dict


class SecurityLogTable:
    """Append-only security log. Rows are inserted and read, never updated."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init()

    def _init(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            '''
            CREATE TABLE IF NOT EXISTS security_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp REAL NOT NULL,
                user_id TEXT,
                user_type TEXT NOT NULL,
                action TEXT NOT NULL,
                ip_address TEXT,
                user_agent TEXT,
                details TEXT DEFAULT '{}'
            )
            '''
        )
        cur.execute('CREATE INDEX IF NOT EXISTS idx_security_logs_timestamp ON security_logs(timestamp)')
        cur.execute('CREATE INDEX IF NOT EXISTS idx_security_logs_action ON security_logs(action)')
        conn.commit(); conn.close()

    def append(self, entry: SecurityLogEntry) -> None:
        record = log_entry_to_dict(entry)
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            '''
            INSERT INTO security_logs (timestamp, user_id, user_type, action, ip_address, user_agent, details)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ''',
            (
                record["timestamp"],
                record["user_id"],
                record["user_type"],
                record["action"],
                record["ip_address"],
                record["user_agent"],
                record["details"],
            ),
        )
        conn.commit(); conn.close()

    def recent(self, limit: int = 50, action: Optional[str] = None) -> List[SecurityLogEntry]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        if action:
            cur.execute(
                'SELECT * FROM security_logs WHERE action = ? ORDER BY id DESC LIMIT ?',
                (action, int(limit)),
            )
        else:
            cur.execute('SELECT * FROM security_logs ORDER BY id DESC LIMIT ?', (int(limit),))
        rows = cur.fetchall()
        desc = cur.description
        conn.close()
        cols = [d[0] for d in desc]
        return [log_entry_from_dict(dict(zip(cols, row))) for row in rows]

    def count_since(self, action_prefix: str, since: float) -> int:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            'SELECT COUNT(*) FROM security_logs WHERE action LIKE ? AND timestamp >= ?',
            (f"{action_prefix}%", since),
        )
        (total,) = cur.fetchone()
        conn.close()
        return int(total)
