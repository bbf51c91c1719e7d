"""
Tests for the drone roster store.

Validates:
1. Legacy roster shapes (object keyed by id, array with slot field) migrate once
2. Upsert merges in place or takes the first free position
3. Delete leaves a hole; reorder swaps positions
4. Every snapshot has six slots with unique drone ids, also under concurrent writers

Run with: pytest tests/test_profile_store.py -v
"""
import json
import os
import threading

import pytest

from groundstation.errors import CapacityExceededError, InputInvalidError, NotFoundError
from groundstation.services.profile_store import SLOT_COUNT, ProfileStore, normalize_document


@pytest.fixture
def roster_path(tmp_path):
    directory = tmp_path / "roster"
    directory.mkdir()
    return directory / "drone-profiles.json"


@pytest.fixture
def store(roster_path):
    return ProfileStore(str(roster_path))


def _write(path, doc):
    path.write_text(json.dumps(doc))


def _read(path):
    return json.loads(path.read_text())


def _assert_roster_invariants(roster):
    assert len(roster) == SLOT_COUNT
    ids = [p["droneId"] for p in roster if p]
    assert len(ids) == len(set(ids))


def _full_roster(store):
    for drone_id in ("10", "11", "42", "13", "14", "15"):
        store.upsert(drone_id, {"name": f"Drone {drone_id}"})


# ============================================
# Loading and migration
# ============================================

class TestLoad:

    def test_missing_file_is_empty_roster(self, store):
        assert store.snapshot() == [None] * SLOT_COUNT

    def test_corrupt_file_is_empty_roster(self, store, roster_path):
        roster_path.write_text("{not json")
        assert store.snapshot() == [None] * SLOT_COUNT

    def test_v1_object_sorted_by_numeric_id(self, store, roster_path):
        _write(roster_path, {"drones": {
            "12": {"droneId": "12", "name": "B", "slot": 4},
            "3": {"droneId": "3", "name": "A"},
            "100": {"droneId": "100", "name": "C"},
        }})

        roster = store.snapshot()

        assert [p["droneId"] if p else None for p in roster] == ["3", "12", "100", None, None, None]
        assert "slot" not in roster[1]

    def test_v2_slot_field_places_by_slot(self, store, roster_path):
        _write(roster_path, {"drones": [
            {"droneId": "7", "slot": 3},
            {"droneId": "8", "slot": 1},
        ]})

        roster = store.snapshot()

        assert roster[0]["droneId"] == "8"
        assert roster[2]["droneId"] == "7"
        assert roster[1] is None
        assert all("slot" not in p for p in roster if p)

    def test_migration_is_written_once(self, store, roster_path):
        _write(roster_path, {"drones": {"5": {"droneId": "5"}}})

        store.snapshot()
        migrated = _read(roster_path)
        assert isinstance(migrated["drones"], list)
        assert len(migrated["drones"]) == SLOT_COUNT

        # Second load is a fixed point
        doc, was_migrated = normalize_document(migrated)
        assert was_migrated is False
        assert doc == migrated["drones"]
        mtime = os.stat(roster_path).st_mtime_ns
        store.snapshot()
        assert os.stat(roster_path).st_mtime_ns == mtime

    def test_duplicate_ids_keep_first_and_rewrite(self, store, roster_path):
        _write(roster_path, {"drones": [{"droneId": "7", "slot": 1, "name": "first"}, {"droneId": "7", "slot": 4}]})

        roster = store.snapshot()

        assert [p["droneId"] if p else None for p in roster] == ["7", None, None, None, None, None]
        assert roster[0]["name"] == "first"
        assert [p["droneId"] for p in _read(roster_path)["drones"] if p] == ["7"]

    def test_duplicate_ids_in_current_format(self):
        roster, migrated = normalize_document({"drones": [{"droneId": "3"}, None, {"droneId": "3"}]})
        assert migrated is True
        assert roster[0]["droneId"] == "3"
        assert roster[2] is None

    def test_short_array_padded_long_array_trimmed(self):
        roster, migrated = normalize_document({"drones": [{"droneId": "1"}]})
        assert len(roster) == SLOT_COUNT and not migrated

        roster, _ = normalize_document({"drones": [{"droneId": str(i)} for i in range(9)]})
        assert len(roster) == SLOT_COUNT
        assert roster[-1]["droneId"] == "5"


# ============================================
# Upsert / delete
# ============================================

class TestMutations:

    def test_insert_takes_first_free_slot(self, store):
        index, profile = store.upsert("12", {"name": "Rover"})
        assert index == 0
        assert profile["droneId"] == "12"
        assert isinstance(profile["updatedAt"], int)

    def test_merge_keeps_position_and_fields(self, store):
        store.upsert("1", {"name": "One"})
        store.upsert("2", {"name": "Two", "color": "#f00"})

        index, profile = store.upsert("2", {"name": "Deux"})

        assert index == 1
        assert profile["name"] == "Deux"
        assert profile["color"] == "#f00"

    def test_internal_fields_not_persisted(self, store, roster_path):
        store.upsert("1", {"name": "One", "_index": 4, "slot": 2})
        saved = _read(roster_path)["drones"][0]
        assert "_index" not in saved and "slot" not in saved

    def test_full_roster_rejects_new_drone(self, store):
        _full_roster(store)

        with pytest.raises(CapacityExceededError) as exc:
            store.upsert("99", {"name": "X"})

        assert exc.value.extra["code"] == "no-free-slot"
        assert exc.value.status_code == 400

    def test_full_roster_still_updates_existing(self, store):
        _full_roster(store)
        index, profile = store.upsert("42", {"name": "Renamed"})
        assert index == 2 and profile["name"] == "Renamed"

    def test_delete_leaves_hole(self, store):
        _full_roster(store)

        assert store.delete("42") == 2

        roster = store.snapshot()
        assert roster[2] is None
        assert roster[3]["droneId"] == "13"
        _assert_roster_invariants(roster)

    def test_new_profile_fills_hole(self, store):
        _full_roster(store)
        store.delete("42")
        index, _ = store.upsert("99", {"name": "X"})
        assert index == 2

    def test_delete_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.delete("nope")

    def test_blank_id_rejected(self, store):
        with pytest.raises(InputInvalidError):
            store.upsert("  ", {})

    def test_no_temp_files_left_behind(self, store, roster_path):
        store.upsert("1", {})
        store.upsert("2", {})
        assert [p.name for p in roster_path.parent.iterdir()] == [roster_path.name]

    def test_written_document_is_deterministic(self, store, roster_path):
        store.upsert("1", {"zeta": 1, "alpha": 2})
        text = roster_path.read_text()
        assert text.index('"alpha"') < text.index('"zeta"')


# ============================================
# Reorder
# ============================================

class TestReorder:

    def test_swap_occupied(self, store):
        store.upsert("1", {})
        store.upsert("2", {})
        assert store.reorder(1, 2) is True
        roster = store.snapshot()
        assert roster[0]["droneId"] == "2" and roster[1]["droneId"] == "1"

    def test_move_into_empty(self, store):
        store.upsert("1", {})
        store.reorder(1, 6)
        roster = store.snapshot()
        assert roster[0] is None and roster[5]["droneId"] == "1"

    def test_equal_slots_noop(self, store):
        store.upsert("1", {})
        assert store.reorder(1, 1) is False

    def test_empty_source_rejected(self, store):
        with pytest.raises(InputInvalidError, match="No drone at position 4"):
            store.reorder(4, 1)

    @pytest.mark.parametrize("source,target", [(0, 1), (1, 7), (-1, 2)])
    def test_out_of_range(self, store, source, target):
        with pytest.raises(InputInvalidError, match="Must be between 1 and 6"):
            store.reorder(source, target)

    def test_invariants_after_many_operations(self, store):
        _full_roster(store)
        store.reorder(1, 6)
        store.delete("13")
        store.upsert("77", {})
        store.reorder(4, 2)
        _assert_roster_invariants(store.snapshot())

    def test_concurrent_upserts_lose_nothing(self, store):
        ids = [str(i) for i in range(20, 20 + SLOT_COUNT)]
        barrier = threading.Barrier(len(ids) * 2)

        def worker(drone_id):
            barrier.wait()
            store.upsert(drone_id, {"name": f"Drone {drone_id}"})

        threads = [threading.Thread(target=worker, args=(drone_id,)) for drone_id in ids * 2]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        roster = store.snapshot()
        _assert_roster_invariants(roster)
        assert sorted(p["droneId"] for p in roster) == sorted(ids)
