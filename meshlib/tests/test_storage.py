import os

import pytest

from meshlib.core.errors import StorageError
from meshlib.storage.database import AccountDatabase, get_default_data_dir, resolve_db_path


class TestStorage:
    def test_data_dir_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("MESHLIB_DATA_DIR", temp_dir)
        assert get_default_data_dir() == temp_dir
        assert resolve_db_path() == os.path.join(temp_dir, "accounts.db")
        assert resolve_db_path("/tmp/x.db") == "/tmp/x.db"

    def test_account_database_operations(self, temp_dir):
        """Test account database operations"""
        database = AccountDatabase(data_dir=temp_dir)

        database.save_state("g", "sm1a", {"counter": 1, "balance": 10}, {"counter": 2, "balance": 5})
        assert database.load_state("g", "sm1a") == {
            "current": {"counter": 1, "balance": 10},
            "projected": {"counter": 2, "balance": 5},
        }
        assert database.load_state("g", "sm1b") is None

        database.save_transaction("g", "sm1a", {"id": "aa", "status": "pending", "layer": 1})
        database.save_transaction("g", "sm1a", {"id": "bb", "status": "pending"})
        database.save_transaction("g", "sm1a", {"id": "aa", "status": "processed", "layer": 2})
        assert database.load_transactions("g", "sm1a") == [
            {"id": "aa", "status": "processed", "layer": 2},
            {"id": "bb", "status": "pending"},
        ]

        reward = {"layer": 4, "amount": 10, "layer_reward": 9, "coinbase": "sm1a"}
        database.save_reward("g", "sm1a", reward)
        database.save_reward("g", "sm1a", reward)
        assert database.load_rewards("g", "sm1a") == [reward]

    def test_unwritable_path_raises_storage_error(self, temp_dir):
        blocker = os.path.join(temp_dir, "file")
        with open(blocker, "w") as fh:
            fh.write("x")
        with pytest.raises((StorageError, OSError)):
            AccountDatabase(db_path=os.path.join(blocker, "accounts.db"))

    def test_unserializable_record_raises_storage_error(self, temp_dir):
        database = AccountDatabase(data_dir=temp_dir)

        with pytest.raises(StorageError):
            database.save_transaction("g", "sm1a", {"id": "aa", "payload": {"blob": b"\x00"}})
        with pytest.raises(StorageError):
            database.save_state("g", "sm1a", {"counter": 1, "balance": b"\x01"}, {})
        assert database.load_transactions("g", "sm1a") == []
        assert database.load_state("g", "sm1a") is None
