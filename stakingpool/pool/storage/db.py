import sqlite3
import threading
from contextlib import contextmanager
from typing import Optional, Dict, List

class StorageDB:
    def __init__(self, db_path: str = ":memory:"):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.RLock()
        # Open transaction() blocks; writes inside them commit together
        self._tx_depth = 0
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for pool and account records
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            self.conn.commit()

    @contextmanager
    def transaction(self):
        """Groups the writes made inside the block into a single commit."""
        with self._lock:
            self._tx_depth += 1
            try:
                yield
            except Exception:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.commit()

    def _commit(self):
        if self._tx_depth == 0:
            self.conn.commit()

    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            self._commit()

    def delete_state(self, key: str):
        with self._lock:
            self.cursor.execute('DELETE FROM state WHERE key = ?', (key,))
            self._commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    def get_keys_by_prefix(self, prefix: str) -> List[str]:
        """Returns matching keys in ascending order."""
        with self._lock:
            self.cursor.execute('SELECT key FROM state WHERE key LIKE ? ORDER BY key', (f"{prefix}%",))
            return [row[0] for row in self.cursor.fetchall()]

    def clear_state(self):
        with self._lock:
            self.cursor.execute('DELETE FROM state')
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()
