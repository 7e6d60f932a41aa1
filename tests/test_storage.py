"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import threading
import time
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from dataclasses import dataclass

from banking_demo.storage import (
    DuplicateKeyError, InMemoryStorage, SQLiteStorage, StorageRecord,
    create_storage, format_timestamp
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Run every test against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestBasicOperations:
    """Test CRUD operations shared by all backends"""

    def test_save_and_load(self, storage):
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data
        assert storage.load("test_table", "missing") is None

    def test_save_replaces(self, storage):
        storage.save("test_table", "record_1", {"name": "first"})
        storage.save("test_table", "record_1", {"name": "second"})
        assert storage.load("test_table", "record_1") == {"name": "second"}
        assert storage.count("test_table") == 1

    def test_exists_count_delete(self, storage):
        storage.save("test_table", "record_1", test_data)
        storage.save("test_table", "record_2", {"id": "record_2"})

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")
        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    def test_loaded_record_is_a_copy(self, storage):
        storage.save("test_table", "record_1", {"items": [1, 2]})
        loaded = storage.load("test_table", "record_1")
        loaded["items"].append(3)
        assert storage.load("test_table", "record_1") == {"items": [1, 2]}

    def test_rejects_unsafe_table_names(self):
        sqlite = SQLiteStorage(":memory:")
        with pytest.raises(ValueError):
            sqlite.load("users; DROP TABLE users", "x")
        sqlite.close()


class TestInsert:
    """Test insert with primary and unique keys"""

    def test_duplicate_id(self, storage):
        storage.insert("accounts", "a1", {"account_number": "1"})
        with pytest.raises(DuplicateKeyError) as exc_info:
            storage.insert("accounts", "a1", {"account_number": "2"})
        assert exc_info.value.field == "id"

    def test_duplicate_unique_field(self, storage):
        storage.insert("accounts", "a1", {"account_number": "1234567890"},
                       unique_fields=("account_number",))
        with pytest.raises(DuplicateKeyError) as exc_info:
            storage.insert("accounts", "a2", {"account_number": "1234567890"},
                           unique_fields=("account_number",))
        assert exc_info.value.field == "account_number"
        assert exc_info.value.table == "accounts"
        assert storage.count("accounts") == 1

    def test_distinct_unique_values_accepted(self, storage):
        for i in range(3):
            storage.insert("accounts", f"a{i}", {"account_number": str(i)},
                           unique_fields=("account_number",))
        assert storage.count("accounts") == 3


class TestFind:
    """Test filtering, ordering and limits"""

    def test_filters_match_every_field(self, storage):
        storage.save("accounts", "a1", {"user_id": "u1", "account_type": "checking"})
        storage.save("accounts", "a2", {"user_id": "u1", "account_type": "savings"})
        storage.save("accounts", "a3", {"user_id": "u2", "account_type": "checking"})

        assert len(storage.find("accounts", {"user_id": "u1"})) == 2
        results = storage.find("accounts", {"user_id": "u1", "account_type": "savings"})
        assert [r["account_type"] for r in results] == ["savings"]
        assert storage.find("accounts", {"user_id": "u3"}) == []

    def test_boolean_filter(self, storage):
        storage.save("flags", "f1", {"enabled": True})
        storage.save("flags", "f2", {"enabled": False})
        results = storage.find("flags", {"enabled": True})
        assert len(results) == 1
        assert results[0]["enabled"] is True

    def test_order_descending_and_limit(self, storage):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(5):
            storage.insert("transactions", f"t{i}", {
                "account_id": "a1",
                "seq": i,
                "created_at": format_timestamp(base + timedelta(seconds=i)),
            })

        newest_first = storage.find("transactions", {"account_id": "a1"},
                                    order_by="created_at", descending=True)
        assert [r["seq"] for r in newest_first] == [4, 3, 2, 1, 0]

        oldest_first = storage.find("transactions", {"account_id": "a1"}, order_by="created_at")
        assert [r["seq"] for r in oldest_first] == [0, 1, 2, 3, 4]

        top_two = storage.find("transactions", {"account_id": "a1"},
                               order_by="created_at", descending=True, limit=2)
        assert [r["seq"] for r in top_two] == [4, 3]

    def test_ties_break_by_insertion_order(self, storage):
        stamp = format_timestamp(datetime(2026, 1, 1, tzinfo=timezone.utc))
        for i in range(4):
            storage.insert("transactions", f"t{i}", {"seq": i, "created_at": stamp})

        newest_first = storage.find("transactions", {}, order_by="created_at", descending=True)
        assert [r["seq"] for r in newest_first] == [3, 2, 1, 0]

        oldest_first = storage.find("transactions", {}, order_by="created_at")
        assert [r["seq"] for r in oldest_first] == [0, 1, 2, 3]

    def test_find_one(self, storage):
        stamp = format_timestamp(datetime(2026, 1, 1, tzinfo=timezone.utc))
        storage.insert("transactions", "t1", {"seq": 1, "created_at": stamp})
        storage.insert("transactions", "t2", {"seq": 2, "created_at": stamp})

        latest = storage.find_one("transactions", {}, order_by="created_at", descending=True)
        assert latest["seq"] == 2
        assert storage.find_one("transactions", {"seq": 99}) is None


class TestConditionalUpdate:
    """Test compare-and-set updates"""

    def test_update_when_expected_matches(self, storage):
        storage.save("accounts", "a1", {"balance": "0.00", "status": "active"})
        assert storage.update_if("accounts", "a1", {"balance": "0.00"}, {"balance": "10.50"})

        record = storage.load("accounts", "a1")
        assert record["balance"] == "10.50"
        assert record["status"] == "active"

    def test_no_update_when_stale(self, storage):
        storage.save("accounts", "a1", {"balance": "5.00"})
        assert not storage.update_if("accounts", "a1", {"balance": "0.00"}, {"balance": "10.50"})
        assert storage.load("accounts", "a1")["balance"] == "5.00"

    def test_missing_record(self, storage):
        assert not storage.update_if("accounts", "nope", {"balance": "0.00"}, {"balance": "1.00"})

    def test_string_values_stay_strings(self, storage):
        storage.save("accounts", "a1", {"balance": "0.00"})
        storage.update_if("accounts", "a1", {"balance": "0.00"}, {"balance": "100.00"})
        assert storage.load("accounts", "a1")["balance"] == "100.00"


class TestDeleteWhere:
    """Test bulk deletion by filter"""

    def test_removes_only_matching(self, storage):
        storage.save("sessions", "s1", {"user_id": "u1"})
        storage.save("sessions", "s2", {"user_id": "u1"})
        storage.save("sessions", "s3", {"user_id": "u2"})

        assert storage.delete_where("sessions", {"user_id": "u1"}) == 2
        assert storage.count("sessions") == 1
        assert storage.exists("sessions", "s3")

    def test_nothing_to_remove(self, storage):
        assert storage.delete_where("sessions", {"user_id": "u1"}) == 0


class TestTransactions:
    """Test atomic() behaviour"""

    def test_atomic_commits(self, storage):
        with storage.atomic():
            storage.save("test_table", "record_1", test_data)
        assert storage.exists("test_table", "record_1")

    def test_sqlite_atomic_rolls_back(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            storage.save("test_table", "keep", {"name": "kept"})

            with pytest.raises(RuntimeError):
                with storage.atomic():
                    storage.save("test_table", "record_1", test_data)
                    raise RuntimeError("abort")

            assert not storage.exists("test_table", "record_1")
            assert storage.exists("test_table", "keep")
            storage.close()

    def test_sqlite_rollback_keeps_other_threads_writes(self):
        storage = SQLiteStorage(":memory:")
        storage.save("accounts", "a1", {"balance": "0.00"})
        storage.save("sessions", "keep", {"user_id": "u0"})

        inside_block = threading.Event()
        writer_started = threading.Event()
        results = []

        def session_block():
            with pytest.raises(RuntimeError):
                with storage.atomic():
                    storage.delete_where("sessions", {"user_id": "u0"})
                    inside_block.set()
                    writer_started.wait(timeout=5)
                    time.sleep(0.1)
                    raise RuntimeError("abort")

        def balance_writer():
            inside_block.wait(timeout=5)
            writer_started.set()
            results.append(storage.update_if("accounts", "a1", {"balance": "0.00"}, {"balance": "25.00"}))

        threads = [threading.Thread(target=session_block), threading.Thread(target=balance_writer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == [True]
        assert storage.load("accounts", "a1")["balance"] == "25.00"
        assert storage.exists("sessions", "keep")
        storage.close()

    def test_sqlite_persists_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "test.db"
            storage = SQLiteStorage(db_path)
            storage.save("test_table", "record_1", test_data)
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("test_table", "record_1") == test_data
            reopened.close()


class Color(Enum):
    RED = "red"


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    color: Color


class TestStorageRecord:
    """Test record serialization"""

    def test_to_dict_converts_values(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        record = SampleRecord(id="r1", created_at=now, updated_at=now,
                              amount=Decimal("10.50"), color=Color.RED)
        data = record.to_dict()
        assert data["amount"] == "10.50"
        assert data["color"] == "red"
        assert data["created_at"] == "2026-01-01T12:00:00.000000+00:00"

    def test_timestamps_sort_as_strings(self):
        earlier = datetime(2026, 1, 1, 12, 0, 0, 999999, tzinfo=timezone.utc)
        later = datetime(2026, 1, 1, 12, 0, 1, tzinfo=timezone.utc)
        assert format_timestamp(earlier) < format_timestamp(later)


class TestCreateStorage:
    """Test backend selection from a URL"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self):
        storage = create_storage("sqlite:///:memory:")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/bank")
