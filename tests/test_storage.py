"""
Tests for storage backends, units of work and compare-and-set
"""

import pytest
import tempfile
import os
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum

from savings_group.errors import DependencyFailure
from savings_group.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage
)


class Colour(Enum):
    RED = "red"
    BLUE = "blue"


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    colour: Colour = Colour.RED
    due: datetime = None

    _enum_fields = {'colour': Colour}
    _decimal_fields = ('amount',)
    _datetime_fields = ('due',)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Both backends, SQLite on a temporary file"""
    if request.param == "memory":
        backend = InMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as tmp:
            backend = SQLiteStorage(os.path.join(tmp, "test.db"))
            yield backend
            backend.close()


class TestBasicOperations:
    """CRUD behaviour shared by both backends"""

    def test_save_and_load(self, storage):
        storage.save("loans", "L1", {"id": "L1", "status": "pending", "amount": "100.50"})

        assert storage.load("loans", "L1") == {"id": "L1", "status": "pending", "amount": "100.50"}
        assert storage.load("loans", "missing") is None
        assert storage.exists("loans", "L1")
        assert not storage.exists("loans", "missing")

    def test_upsert_keeps_insertion_order(self, storage):
        storage.save("loans", "L1", {"id": "L1", "n": 1})
        storage.save("loans", "L2", {"id": "L2", "n": 2})
        storage.save("loans", "L1", {"id": "L1", "n": 3})

        assert [r["id"] for r in storage.load_all("loans")] == ["L1", "L2"]
        assert storage.load("loans", "L1")["n"] == 3
        assert storage.count("loans") == 2

    def test_find(self, storage):
        storage.save("loans", "L1", {"id": "L1", "member_id": "M1", "status": "pending"})
        storage.save("loans", "L2", {"id": "L2", "member_id": "M1", "status": "approved"})
        storage.save("loans", "L3", {"id": "L3", "member_id": "M2", "status": "pending"})

        found = storage.find("loans", {"member_id": "M1", "status": "pending"})
        assert [r["id"] for r in found] == ["L1"]

    def test_clear_table(self, storage):
        storage.save("loans", "L1", {"id": "L1"})
        storage.clear_table("loans")
        assert storage.count("loans") == 0

    def test_loaded_records_are_copies(self, storage):
        storage.save("loans", "L1", {"id": "L1", "tags": ["a"]})
        loaded = storage.load("loans", "L1")
        loaded["tags"].append("b")

        assert storage.load("loans", "L1")["tags"] == ["a"]


class TestAtomic:
    """Units of work commit or roll back together"""

    def test_commit(self, storage):
        with storage.atomic():
            storage.save("loans", "L1", {"id": "L1"})
            storage.save("members", "M1", {"id": "M1"})

        assert storage.exists("loans", "L1")
        assert storage.exists("members", "M1")

    def test_rollback_discards_all_writes(self, storage):
        storage.save("members", "M1", {"id": "M1", "balance": "100.00"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("members", "M1", {"id": "M1", "balance": "900.00"})
                storage.save("loans", "L1", {"id": "L1"})
                raise RuntimeError("boom")

        assert storage.load("members", "M1")["balance"] == "100.00"
        assert not storage.exists("loans", "L1")

    def test_nested_rollback_discards_outer_writes(self, storage):
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "L1", {"id": "L1"})
                with storage.atomic():
                    storage.save("loans", "L2", {"id": "L2"})
                    raise RuntimeError("boom")

        assert storage.count("loans") == 0

    def test_nested_commit(self, storage):
        with storage.atomic():
            storage.save("loans", "L1", {"id": "L1"})
            with storage.atomic():
                storage.save("loans", "L2", {"id": "L2"})

        assert storage.count("loans") == 2


class TestCompareAndSet:
    """Guarded writes"""

    def test_writes_when_field_matches(self, storage):
        storage.save("loans", "L1", {"id": "L1", "status": "pending"})

        assert storage.compare_and_set("loans", "L1", "status", "pending", {"id": "L1", "status": "approved"})
        assert storage.load("loans", "L1")["status"] == "approved"

    def test_refuses_when_field_changed(self, storage):
        storage.save("loans", "L1", {"id": "L1", "status": "approved"})

        assert not storage.compare_and_set("loans", "L1", "status", "pending", {"id": "L1", "status": "rejected"})
        assert storage.load("loans", "L1")["status"] == "approved"

    def test_accepts_any_of_several_values(self, storage):
        storage.save("loans", "L1", {"id": "L1", "status": "pending_guarantors"})

        assert storage.compare_and_set(
            "loans", "L1", "status", ["pending_guarantors", "pending"], {"id": "L1", "status": "cancelled"}
        )

    def test_missing_record(self, storage):
        assert not storage.compare_and_set("loans", "nope", "status", "pending", {"id": "nope"})
        assert not storage.exists("loans", "nope")


class TestStorageRecord:
    """Typed record conversion"""

    def test_round_trip(self):
        now = datetime.now(timezone.utc)
        record = SampleRecord(
            id="R1", created_at=now, updated_at=now,
            amount=Decimal('12.34'), colour=Colour.BLUE, due=now
        )

        data = record.to_dict()
        assert data["amount"] == "12.34"
        assert data["colour"] == "blue"

        restored = SampleRecord.from_dict(data)
        assert restored == record

    def test_unknown_keys_ignored(self):
        now = datetime.now(timezone.utc).isoformat()
        restored = SampleRecord.from_dict({
            "id": "R1", "created_at": now, "updated_at": now,
            "amount": "1.00", "legacy_field": "x"
        })
        assert restored.amount == Decimal('1.00')


class TestSQLiteSpecifics:
    """Behaviour only the SQLite backend has"""

    def test_persists_across_connections(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "persist.db")
            first = SQLiteStorage(path)
            first.save("loans", "L1", {"id": "L1", "status": "pending"})
            first.close()

            second = SQLiteStorage(path)
            assert second.load("loans", "L1") == {"id": "L1", "status": "pending"}
            second.close()

    def test_unit_of_work_locks_out_other_connections(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "shared.db")
            first = SQLiteStorage(path, timeout=0.1)
            second = SQLiteStorage(path, timeout=0.1)
            first.save("loans", "L1", {"id": "L1", "status": "approved"})

            with first.atomic():
                assert first.compare_and_set("loans", "L1", "status", "approved",
                                             {"id": "L1", "status": "disbursed"})
                with pytest.raises(DependencyFailure):
                    with second.atomic():
                        second.save("loans", "L1", {"id": "L1", "status": "approved"})

            assert not second.compare_and_set("loans", "L1", "status", "approved",
                                              {"id": "L1", "status": "disbursed"})
            assert second.load("loans", "L1")["status"] == "disbursed"
            first.close()
            second.close()

    def test_backend_errors_become_dependency_failures(self):
        storage = SQLiteStorage()
        with pytest.raises(DependencyFailure):
            storage.save("bad table", "x", {"id": "x"})
        storage.close()

    def test_create_storage(self):
        assert isinstance(create_storage(False), InMemoryStorage)
        backend = create_storage(True, ":memory:")
        assert isinstance(backend, SQLiteStorage)
        backend.close()
