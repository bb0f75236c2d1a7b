"""
Test suite for storage backends
"""

import os
import threading
import pytest

from savings_ledger.storage import InMemoryStorage, PostgreSQLStorage, SQLiteStorage, create_storage


SKIP_POSTGRESQL = os.getenv("SKIP_POSTGRESQL_TESTS", "true").lower() == "true"


class StorageContract:
    """Behaviour every backend must share"""

    def make_storage(self):
        raise NotImplementedError

    def setup_method(self):
        self.storage = self.make_storage()

    def teardown_method(self):
        self.storage.close()

    def test_save_and_load(self):
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})

        assert self.storage.load("accounts", "a1") == {"id": "a1", "balance": "10.00"}
        assert self.storage.load("accounts", "missing") is None
        assert self.storage.exists("accounts", "a1")
        assert not self.storage.exists("accounts", "missing")

    def test_save_replaces_record(self):
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "25.00"})

        assert self.storage.load("accounts", "a1")["balance"] == "25.00"
        assert self.storage.count("accounts") == 1

    def test_loaded_records_are_copies(self):
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})
        record = self.storage.load("accounts", "a1")
        record["balance"] = "999.00"

        assert self.storage.load("accounts", "a1")["balance"] == "10.00"

    def test_find_and_load_all(self):
        self.storage.save("transactions", "t1", {"id": "t1", "account_id": "a1", "kind": "DEPOSIT"})
        self.storage.save("transactions", "t2", {"id": "t2", "account_id": "a1", "kind": "WITHDRAWAL"})
        self.storage.save("transactions", "t3", {"id": "t3", "account_id": "a2", "kind": "DEPOSIT"})

        assert len(self.storage.load_all("transactions")) == 3
        found = self.storage.find("transactions", {"account_id": "a1", "kind": "DEPOSIT"})
        assert [r["id"] for r in found] == ["t1"]
        assert self.storage.find("transactions", {"account_id": "nobody"}) == []

    def test_clear_table(self):
        self.storage.save("accounts", "a1", {"id": "a1"})
        self.storage.clear_table("accounts")
        assert self.storage.count("accounts") == 0

    def test_atomic_commits(self):
        with self.storage.atomic():
            self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})
            self.storage.save("transactions", "t1", {"id": "t1"})

        assert self.storage.exists("accounts", "a1")
        assert self.storage.exists("transactions", "t1")

    def test_atomic_rolls_back_every_write(self):
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("accounts", "a1", {"id": "a1", "balance": "50.00"})
                self.storage.save("transactions", "t1", {"id": "t1"})
                raise RuntimeError("disk full")

        assert self.storage.load("accounts", "a1")["balance"] == "10.00"
        assert not self.storage.exists("transactions", "t1")

    def test_atomic_rolls_back_on_base_exception(self):
        with pytest.raises(KeyboardInterrupt):
            with self.storage.atomic():
                self.storage.save("accounts", "a1", {"id": "a1"})
                raise KeyboardInterrupt()

        assert not self.storage.exists("accounts", "a1")

    def test_load_for_update_reads_record(self):
        self.storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})
        with self.storage.atomic():
            assert self.storage.load_for_update("accounts", "a1")["balance"] == "10.00"
            assert self.storage.load_for_update("accounts", "missing") is None

    def test_table_first_touched_in_rolled_back_unit_stays_usable(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                assert self.storage.find("fresh", {"request_id": "r1"}) == []
                raise RuntimeError("abort")

        with self.storage.atomic():
            self.storage.save("fresh", "y", {"id": "y"})
        assert self.storage.count("fresh") == 1


class TestInMemoryStorage(StorageContract):

    def make_storage(self):
        return InMemoryStorage()

    def test_rollback_restores_cleared_table(self):
        self.storage.save("accounts", "a1", {"id": "a1"})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.clear_table("accounts")
                raise RuntimeError("abort")

        assert self.storage.exists("accounts", "a1")


class TestSQLiteStorage(StorageContract):

    def make_storage(self):
        return SQLiteStorage(":memory:")


class TestSQLiteFileStorage:

    def test_records_survive_reopen(self, tmp_path):
        db_path = tmp_path / "ledger.db"

        storage = SQLiteStorage(db_path)
        storage.save("accounts", "a1", {"id": "a1", "balance": "10.00"})
        storage.close()

        reopened = SQLiteStorage(db_path)
        try:
            assert reopened.load("accounts", "a1") == {"id": "a1", "balance": "10.00"}
        finally:
            reopened.close()


class RecordingConnection:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


class TestPostgreSQLRollback:
    """Rollback bookkeeping that needs no server"""

    def test_rollback_forgets_tables_created_in_the_unit(self):
        storage = PostgreSQLStorage.__new__(PostgreSQLStorage)
        storage._lock = threading.RLock()
        storage._connection = RecordingConnection()
        storage._in_transaction = True
        storage._tables = {"accounts", "transactions"}

        storage.rollback()

        assert storage._connection.rollbacks == 1
        assert storage._tables == set()
        assert storage._in_transaction is False


class TestCreateStorage:

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self, tmp_path):
        storage = create_storage(f"sqlite:///{tmp_path / 'savings.db'}")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path.endswith("savings.db")
        storage.close()

    def test_unknown_url_rejected(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("mysql://localhost/savings")


@pytest.mark.skipif(SKIP_POSTGRESQL, reason="PostgreSQL tests disabled (set SKIP_POSTGRESQL_TESTS=false)")
class TestPostgreSQLStorage(StorageContract):

    def make_storage(self):
        storage = PostgreSQLStorage(os.getenv("SAVINGS_TEST_POSTGRES_URL", "postgresql://localhost/savings_test"))
        for table in ("accounts", "transactions"):
            storage.clear_table(table)
        cursor = storage._connection.cursor()
        cursor.execute("DROP TABLE IF EXISTS fresh")
        cursor.close()
        storage._connection.commit()
        return storage
