"""
Tests for storage backends and transaction support
"""

import pytest
import threading
from pathlib import Path

from transfer_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, DuplicateKeyError, StorageError
)


class Abort(BaseException):
    """Non-Exception escape used to check rollback on interrupts"""


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestStorageBasics:
    """Test basic CRUD operations"""

    def test_insert_assigns_increasing_ids(self, storage):
        """Test ids are assigned by the store"""
        first = storage.insert("items", {"name": "a"})
        second = storage.insert("items", {"name": "b"})
        assert first == 1
        assert second == 2
        assert storage.load("items", first) == {"id": 1, "name": "a"}

    def test_save_updates_existing_row(self, storage):
        """Test full-row upsert"""
        record_id = storage.insert("items", {"name": "a", "amount": "1.00"})
        storage.save("items", record_id, {"id": record_id, "name": "a", "amount": "2.00"})
        assert storage.load("items", record_id)["amount"] == "2.00"
        assert storage.count("items") == 1

    def test_load_missing_returns_none(self, storage):
        assert storage.load("items", 99) is None

    def test_find_filters_and_orders_by_id(self, storage):
        """Test find matches every filter and returns rows in id order"""
        storage.insert("items", {"owner": 1, "kind": "x", "note": None})
        storage.insert("items", {"owner": 2, "kind": "x", "note": None})
        storage.insert("items", {"owner": 1, "kind": "y", "note": "n"})
        storage.insert("items", {"owner": 1, "kind": "x", "note": None})

        rows = storage.find("items", {"owner": 1, "kind": "x"})
        assert [r["id"] for r in rows] == [1, 4]

        assert [r["id"] for r in storage.find("items", {"note": None})] == [1, 2, 4]
        assert len(storage.load_all("items")) == 4

    def test_clear_table(self, storage):
        storage.insert("items", {"name": "a"})
        storage.clear_table("items")
        assert storage.count("items") == 0

    def test_unique_key_enforced(self, storage):
        """Test declared unique keys reject duplicates on insert and save"""
        storage.ensure_unique("accounts", "account_number")
        first = storage.insert("accounts", {"account_number": "A"})
        second = storage.insert("accounts", {"account_number": "B"})

        with pytest.raises(DuplicateKeyError) as exc_info:
            storage.insert("accounts", {"account_number": "A"})
        assert exc_info.value.field == "account_number"

        with pytest.raises(DuplicateKeyError):
            storage.save("accounts", second, {"account_number": "A"})

        # Saving a row with its own key is fine
        storage.save("accounts", first, {"account_number": "A", "balance": "1.00"})
        assert storage.count("accounts") == 2


class TestAtomicUnits:
    """Test commit and rollback semantics"""

    def test_commit_on_success(self, storage):
        with storage.atomic():
            storage.insert("items", {"name": "a"})
            storage.insert("items", {"name": "b"})
        assert storage.count("items") == 2

    def test_rollback_on_exception(self, storage):
        """Test nothing written in a failed unit survives"""
        storage.ensure_table("items")
        existing = storage.insert("items", {"name": "keep", "value": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.insert("items", {"name": "new"})
                storage.save("items", existing, {"name": "keep", "value": 2})
                raise RuntimeError("boom")

        assert storage.count("items") == 1
        assert storage.load("items", existing)["value"] == 1

    def test_rollback_on_base_exception(self, storage):
        """Test interrupts also roll the unit back"""
        storage.ensure_table("items")
        with pytest.raises(Abort):
            with storage.atomic():
                storage.insert("items", {"name": "new"})
                raise Abort()
        assert storage.count("items") == 0
        assert not storage.in_transaction

    def test_nested_units_join_outer(self, storage):
        """Test an inner unit is undone when the outer one fails"""
        storage.ensure_table("items")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.insert("items", {"name": "inner"})
                assert storage.in_transaction
                raise RuntimeError("outer failure")
        assert storage.count("items") == 0

    def test_run_in_transaction_returns_result(self, storage):
        result = storage.run_in_transaction(lambda: storage.insert("items", {"name": "a"}))
        assert result == 1

    def test_run_in_transaction_rolls_back(self, storage):
        storage.ensure_table("items")

        def work():
            storage.insert("items", {"name": "a"})
            raise ValueError("nope")

        with pytest.raises(ValueError):
            storage.run_in_transaction(work)
        assert storage.count("items") == 0

    def test_units_are_serialized_across_threads(self, storage):
        """Test concurrent read-modify-write units never lose an update"""
        counter_id = storage.insert("counters", {"value": 0})

        def increment():
            for _ in range(25):
                with storage.atomic():
                    row = storage.load("counters", counter_id)
                    row["value"] += 1
                    storage.save("counters", counter_id, row)

        threads = [threading.Thread(target=increment) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert storage.load("counters", counter_id)["value"] == 100


class TestSQLiteStorage:
    """SQLite specific behavior"""

    def test_data_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "nested" / "bank.db"
        storage = SQLiteStorage(db_path)
        storage.insert("items", {"name": "a"})
        storage.close()

        reopened = SQLiteStorage(db_path)
        assert reopened.load("items", 1) == {"id": 1, "name": "a"}
        reopened.close()

    def test_table_created_inside_rolled_back_unit_is_recreated(self):
        """Test a rolled back CREATE TABLE does not leave a stale cache"""
        storage = SQLiteStorage(":memory:")
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.insert("late", {"name": "a"})
                raise RuntimeError("boom")
        assert storage.count("late") == 0
        storage.close()

    def test_invalid_identifier_rejected(self):
        storage = SQLiteStorage(":memory:")
        with pytest.raises(StorageError):
            storage.insert("items; DROP TABLE x", {"name": "a"})
        storage.close()

    def test_backends_share_interface(self):
        assert issubclass(SQLiteStorage, StorageInterface)
        assert issubclass(InMemoryStorage, StorageInterface)
