import json
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional


class RecordsTable:
    """JSON document store for tenant data (guest profiles, itineraries, ...).

    Documents live in named collections; filters are exact-match on top-level
    keys and are always passed as bound parameters.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init()

    def _init(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            '''
            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (collection, id)
            )
            '''
        )
        conn.commit(); conn.close()

    def select(self, collection: str, filters: Optional[Mapping[str, Any]] = None, limit: int = 100) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        sql = 'SELECT id, data FROM records WHERE collection = ?'
        params: List[Any] = [collection]
        for key, value in (filters or {}).items():
            if key == "id":
                sql += ' AND id = ?'
                params.append(str(value))
            else:
                sql += ' AND json_extract(data, ?) = ?'
                params.extend([f"$.{key}", value])
        sql += ' ORDER BY created_at LIMIT ?'
        params.append(int(limit))
        cur.execute(sql, tuple(params))
        rows = cur.fetchall()
        conn.close()
        return [self._decode(record_id, data) for record_id, data in rows]

    def insert(self, collection: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        payload = dict(data)
        record_id = str(payload.pop("id", None) or uuid.uuid4())
        now = time.time()
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            'INSERT INTO records (collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
            (collection, record_id, json.dumps(payload, default=str), now, now),
        )
        conn.commit(); conn.close()
        return self._decode(record_id, json.dumps(payload, default=str))

    def update(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute('SELECT data FROM records WHERE collection = ? AND id = ?', (collection, record_id))
        row = cur.fetchone()
        if row is None:
            conn.close()
            return None
        merged = json.loads(row[0])
        merged.update({k: v for k, v in changes.items() if k != "id"})
        encoded = json.dumps(merged, default=str)
        cur.execute(
            'UPDATE records SET data = ?, updated_at = ? WHERE collection = ? AND id = ?',
            (encoded, time.time(), collection, record_id),
        )
        conn.commit(); conn.close()
        return self._decode(record_id, encoded)

    def delete(self, collection: str, record_id: str) -> bool:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute('DELETE FROM records WHERE collection = ? AND id = ?', (collection, record_id))
        deleted = cur.rowcount
        conn.commit(); conn.close()
        return deleted > 0

    def ping(self) -> bool:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('SELECT 1').fetchone()
        finally:
            conn.close()
        return True

    @staticmethod
    def _decode(record_id: str, data: str) -> Dict[str, Any]:
        payload = json.loads(data)
        payload["id"] = record_id
        return payload
