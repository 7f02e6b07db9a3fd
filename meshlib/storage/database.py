import json
import os
import sqlite3
import sys
import time
from typing import Dict, List, Optional

from meshlib.core.errors import StorageError


def _safe_home_dir() -> str:
    home = os.path.expanduser("~")
    if home and home != "~":
        return home
    env_home = os.getenv("HOME") or os.getenv("USERPROFILE")
    if env_home:
        return env_home
    return os.getcwd()


def get_default_data_dir() -> str:
    """Resolve a writable default data directory across platforms."""
    override = os.getenv("MESHLIB_DATA_DIR")
    if override:
        return override

    home = _safe_home_dir()

    if os.name == "nt":
        base = os.getenv("APPDATA") or os.getenv("LOCALAPPDATA") or home
        return os.path.join(base, "meshlib")

    if sys.platform == "darwin":
        return os.path.join(home, "Library", "Application Support", "meshlib")

    xdg_base = os.getenv("XDG_DATA_HOME") or os.path.join(home, ".local", "share")
    return os.path.join(xdg_base, "meshlib")


def _to_json(value, context: str) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise StorageError(f"{context}: {e}") from e


def resolve_db_path(db_path: Optional[str] = None, data_dir: Optional[str] = None) -> str:
    if db_path:
        return db_path
    return os.path.join(data_dir or get_default_data_dir(), "accounts.db")


class AccountDatabase:
    """
    Durable account storage keyed by (genesis id, account address).

    Every call opens its own connection so it can run on a worker thread.
    Failures surface as StorageError.
    """

    def __init__(self, db_path=None, data_dir=None):
        self.db_path = resolve_db_path(db_path, data_dir)
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._init_database()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def _init_database(self):
        try:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS account_states (
                    genesis_id TEXT,
                    address TEXT,
                    current_state TEXT,
                    projected_state TEXT,
                    updated REAL,
                    PRIMARY KEY (genesis_id, address)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS transactions (
                    genesis_id TEXT,
                    address TEXT,
                    tx_id TEXT,
                    status TEXT,
                    layer INTEGER,
                    seq INTEGER,
                    raw_data TEXT,
                    PRIMARY KEY (genesis_id, address, tx_id)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS rewards (
                    genesis_id TEXT,
                    address TEXT,
                    layer INTEGER,
                    coinbase TEXT,
                    amount INTEGER,
                    layer_reward INTEGER,
                    PRIMARY KEY (genesis_id, address, layer, coinbase)
                )
            ''')

            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Init database error: {e}") from e

    def save_state(self, genesis_id: str, address: str, current: Dict, projected: Dict) -> None:
        current_raw = _to_json(current, "Save state error")
        projected_raw = _to_json(projected, "Save state error")
        try:
            conn = self._connect()
            conn.execute('''
                INSERT OR REPLACE INTO account_states
                (genesis_id, address, current_state, projected_state, updated)
                VALUES (?, ?, ?, ?, ?)
            ''', (genesis_id, address, current_raw, projected_raw, time.time()))
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Save state error: {e}") from e

    def load_state(self, genesis_id: str, address: str) -> Optional[Dict]:
        try:
            conn = self._connect()
            row = conn.execute(
                'SELECT current_state, projected_state FROM account_states WHERE genesis_id = ? AND address = ?',
                (genesis_id, address),
            ).fetchone()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Load state error: {e}") from e

        if not row:
            return None
        return {
            "current": json.loads(row[0]) if row[0] else {},
            "projected": json.loads(row[1]) if row[1] else {},
        }

    def save_transaction(self, genesis_id: str, address: str, tx: Dict) -> None:
        raw = _to_json(tx, "Save transaction error")
        try:
            conn = self._connect()
            # Keep the first-seen position so reads stay in insertion order
            conn.execute('''
                INSERT INTO transactions (genesis_id, address, tx_id, status, layer, seq, raw_data)
                VALUES (?, ?, ?, ?, ?,
                        (SELECT COALESCE(MAX(seq), 0) + 1 FROM transactions
                         WHERE genesis_id = ? AND address = ?), ?)
                ON CONFLICT (genesis_id, address, tx_id) DO UPDATE SET
                    status = excluded.status,
                    layer = excluded.layer,
                    raw_data = excluded.raw_data
            ''', (
                genesis_id,
                address,
                tx.get("id", ""),
                tx.get("status"),
                tx.get("layer"),
                genesis_id,
                address,
                raw,
            ))
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Save transaction error: {e}") from e

    def load_transactions(self, genesis_id: str, address: str) -> List[Dict]:
        try:
            conn = self._connect()
            rows = conn.execute('''
                SELECT raw_data FROM transactions
                WHERE genesis_id = ? AND address = ?
                ORDER BY seq ASC
            ''', (genesis_id, address)).fetchall()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Load transactions error: {e}") from e

        transactions = []
        for row in rows:
            try:
                transactions.append(json.loads(row[0]))
            except (TypeError, ValueError):
                continue
        return transactions

    def save_reward(self, genesis_id: str, address: str, reward: Dict) -> None:
        try:
            conn = self._connect()
            conn.execute('''
                INSERT OR IGNORE INTO rewards
                (genesis_id, address, layer, coinbase, amount, layer_reward)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (
                genesis_id,
                address,
                reward["layer"],
                reward["coinbase"],
                reward["amount"],
                reward["layer_reward"],
            ))
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Save reward error: {e}") from e

    def load_rewards(self, genesis_id: str, address: str) -> List[Dict]:
        try:
            conn = self._connect()
            rows = conn.execute('''
                SELECT layer, amount, layer_reward, coinbase FROM rewards
                WHERE genesis_id = ? AND address = ?
                ORDER BY rowid ASC
            ''', (genesis_id, address)).fetchall()
            conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Load rewards error: {e}") from e

        return [
            {"layer": row[0], "amount": row[1], "layer_reward": row[2], "coinbase": row[3]}
            for row in rows
        ]
