"""
Tests for RecordStore class.
"""
import threading
import time

import pytest

from clinicsync.server.record_store import RecordKey, RecordStore


class TestRecordKey:

    @pytest.mark.unit
    def test_str_matches_store_key_format(self):
        assert str(RecordKey("clinic-1", "owner", "o1")) == "owner:clinic-1:o1"

    @pytest.mark.unit
    def test_keys_are_hashable_values(self):
        assert RecordKey("c", "owner", "1") == RecordKey("c", "owner", "1")
        assert len({RecordKey("c", "owner", "1"), RecordKey("c", "owner", "1")}) == 1


class TestRecordStoreReadWrite:
    """Test cases for get/put."""

    @pytest.mark.unit
    def test_missing_record(self, record_store):
        assert record_store.get(RecordKey("c", "owner", "nope")) is None

    @pytest.mark.unit
    def test_put_then_get(self, record_store):
        key = RecordKey("c", "owner", "o1")
        record_store.put(key, {"id": "o1", "fullName": "Jane", "updatedAt": 100.0})

        assert record_store.get(key) == {"id": "o1", "fullName": "Jane", "updatedAt": 100.0}

    @pytest.mark.unit
    def test_get_returns_a_copy(self, record_store):
        key = RecordKey("c", "owner", "o1")
        record_store.put(key, {"id": "o1", "tags": ["a"]})

        fetched = record_store.get(key)
        fetched["tags"].append("b")

        assert record_store.get(key) == {"id": "o1", "tags": ["a"]}

    @pytest.mark.unit
    def test_put_replaces_body(self, record_store):
        key = RecordKey("c", "owner", "o1")
        record_store.put(key, {"id": "o1", "fullName": "Jane", "phone": "1"})
        record_store.put(key, {"id": "o1", "fullName": "Janet"})

        assert record_store.get(key) == {"id": "o1", "fullName": "Janet"}
        assert record_store.count() == 1

    @pytest.mark.unit
    def test_tenants_and_types_are_separate(self, record_store):
        record_store.put(RecordKey("c1", "owner", "x"), {"v": 1})
        record_store.put(RecordKey("c2", "owner", "x"), {"v": 2})
        record_store.put(RecordKey("c1", "animal", "x"), {"v": 3})

        assert record_store.get(RecordKey("c1", "owner", "x")) == {"v": 1}
        assert record_store.get(RecordKey("c2", "owner", "x")) == {"v": 2}
        assert record_store.get(RecordKey("c1", "animal", "x")) == {"v": 3}
        assert record_store.count() == 3
        assert record_store.count("c1") == 2

    @pytest.mark.unit
    def test_list_records_in_creation_order(self, record_store):
        for entity_id in ("b", "a", "c"):
            record_store.put(RecordKey("c1", "owner", entity_id), {"id": entity_id})
        record_store.put(RecordKey("c1", "owner", "b"), {"id": "b", "phone": "1"})
        record_store.put(RecordKey("c2", "owner", "z"), {"id": "z"})

        records = record_store.list_records("c1", "owner")

        assert [r["id"] for r in records] == ["b", "a", "c"]
        assert records[0]["phone"] == "1"


class TestRecordStoreAliases:
    """Test cases for local id aliases."""

    @pytest.mark.unit
    def test_alias_bound_with_record(self, record_store):
        key = RecordKey("c1", "owner", "o1")
        record_store.put(key, {"id": "o1"}, alias="offline-abc")

        assert record_store.resolve_alias("c1", "offline-abc") == "o1"
        assert record_store.resolve_alias("c2", "offline-abc") is None
        assert record_store.resolve_alias("c1", "offline-other") is None


class TestRecordStoreLocking:
    """Per-key locking."""

    @pytest.mark.unit
    def test_same_key_is_serialized(self, record_store):
        key = RecordKey("c1", "owner", "o1")
        order = []

        def worker(name):
            with record_store.locked(key):
                order.append(f"{name}-in")
                time.sleep(0.05)
                order.append(f"{name}-out")

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert order[0].endswith("-in") and order[1].endswith("-out")
        assert order[0][0] == order[1][0]

    @pytest.mark.unit
    def test_different_keys_do_not_block(self, record_store):
        other_done = threading.Event()

        def other():
            with record_store.locked(RecordKey("c1", "owner", "o2")):
                other_done.set()

        with record_store.locked(RecordKey("c1", "owner", "o1")):
            thread = threading.Thread(target=other)
            thread.start()
            assert other_done.wait(timeout=2)
        thread.join()

    @pytest.mark.unit
    def test_locks_are_released_after_use(self, record_store):
        for i in range(50):
            with record_store.locked(RecordKey("c1", "owner", f"o{i}")):
                assert record_store.active_locks == 1

        assert record_store.active_locks == 0

    @pytest.mark.unit
    def test_lock_kept_while_a_waiter_remains(self, record_store):
        key = RecordKey("c1", "owner", "o1")
        waiter_inside = threading.Event()

        def waiter():
            with record_store.locked(key):
                waiter_inside.set()

        with record_store.locked(key):
            thread = threading.Thread(target=waiter)
            thread.start()
            time.sleep(0.05)
            assert not waiter_inside.is_set()
            assert record_store.active_locks == 1
        thread.join(timeout=2)

        assert waiter_inside.is_set()
        assert record_store.active_locks == 0

    @pytest.mark.unit
    def test_lock_released_when_body_raises(self, record_store):
        with pytest.raises(RuntimeError):
            with record_store.locked(("c1", "offline-1")):
                raise RuntimeError("boom")

        assert record_store.active_locks == 0


class TestRecordStoreFile:

    @pytest.mark.integration
    def test_records_survive_reopen(self, temp_db_path):
        store = RecordStore(temp_db_path)
        store.put(RecordKey("c1", "owner", "o1"), {"id": "o1", "updatedAt": 1.0}, alias="L1")
        store.close()

        reopened = RecordStore(temp_db_path)
        assert reopened.get(RecordKey("c1", "owner", "o1")) == {"id": "o1", "updatedAt": 1.0}
        assert reopened.resolve_alias("c1", "L1") == "o1"
        reopened.close()
