"""
Drone roster persistence.

There is exactly one roster file. Its document is ``{"drones": [slot0..slot5]}``
where each slot is a profile object or null, and array index = display
position - 1. Positions are part of a profile's identity: deleting a drone
leaves a hole, it never compacts the array.

Two legacy shapes are migrated on load and written back once:
    v1: ``{"drones": {"<droneId>": {...}, ...}}``   (object keyed by id)
    v2: ``{"drones": [{"slot": 3, ...}, ...]}``    (array with embedded slot)
"""
import json
import os
import tempfile
import threading
import time
from functools import lru_cache
from typing import Any, Optional

import structlog

from groundstation.config import get_settings
from groundstation.errors import CapacityExceededError, FilesystemError, InputInvalidError, NotFoundError

logger = structlog.get_logger("profile_store")

SLOT_COUNT = 6

Profile = dict[str, Any]
Roster = list[Optional[Profile]]


def empty_roster() -> Roster:
    return [None] * SLOT_COUNT


def _numeric_id(profile: Profile) -> int:
    try:
        return int(profile.get("droneId"))
    except (TypeError, ValueError):
        return 0


def _drop_duplicates(roster: Roster) -> bool:
    """Clear every slot whose droneId already appeared earlier. Returns True if any did."""
    seen = set()
    dropped = False
    for i, profile in enumerate(roster):
        if profile is None:
            continue
        drone_id = str(profile.get("droneId"))
        if drone_id in seen:
            logger.warning("Dropping duplicate drone profile", drone_id=drone_id, slot=i + 1)
            roster[i] = None
            dropped = True
        else:
            seen.add(drone_id)
    return dropped


def normalize_document(doc: Any) -> tuple[Roster, bool]:
    """
    Turn any known persisted shape into the in-memory roster.

    Returns (roster, migrated). ``migrated`` is True when the persisted
    shape was a legacy one, or held the same droneId twice, and the file
    should be rewritten.
    """
    roster, migrated = _normalize_shape(doc)
    if _drop_duplicates(roster):
        migrated = True
    return roster, migrated


def _normalize_shape(doc: Any) -> tuple[Roster, bool]:
    drones = doc.get("drones") if isinstance(doc, dict) else None

    # v1: object keyed by droneId, ordered by numeric id
    if isinstance(drones, dict):
        profiles = [p for p in drones.values() if isinstance(p, dict)]
        profiles.sort(key=_numeric_id)
        roster = empty_roster()
        for i, profile in enumerate(profiles[:SLOT_COUNT]):
            profile = dict(profile)
            profile.pop("slot", None)
            roster[i] = profile
        return roster, True

    if not isinstance(drones, list):
        return empty_roster(), False

    # v2: array elements carry their own slot number
    if any(isinstance(d, dict) and "slot" in d for d in drones):
        roster = empty_roster()
        for drone in drones:
            if not isinstance(drone, dict):
                continue
            try:
                slot = int(drone.get("slot"))
            except (TypeError, ValueError):
                continue
            if 1 <= slot <= SLOT_COUNT:
                profile = dict(drone)
                profile.pop("slot")
                roster[slot - 1] = profile
        return roster, True

    roster = [d if isinstance(d, dict) else None for d in drones[:SLOT_COUNT]]
    roster.extend([None] * (SLOT_COUNT - len(roster)))
    return roster, False


class ProfileStore:
    """
    Sole writer of the roster file.

    All read-modify-write operations run under one lock and re-read the
    file inside it, so concurrent requests see either the pre- or the
    post-write roster. Callers always receive copies.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()

    # ============ File I/O ============

    def _read(self) -> Roster:
        if not os.path.exists(self.path):
            return empty_roster()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load drone profiles", path=self.path, error=str(e))
            return empty_roster()

        roster, migrated = normalize_document(doc)
        if migrated:
            logger.info("Migrating drone profiles to index-based format", path=self.path)
            try:
                self._write(roster)
            except FilesystemError as e:
                logger.error("Failed to save migrated profiles", error=e.message)
        return roster

    def _write(self, roster: Roster) -> None:
        """Whole-file replacement: write a temp file in the same directory, then rename."""
        if len(roster) != SLOT_COUNT:
            raise ValueError(f"roster must have {SLOT_COUNT} slots, got {len(roster)}")
        directory = os.path.dirname(os.path.abspath(self.path))
        content = json.dumps({"drones": roster}, indent=2, sort_keys=True) + "\n"
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".drone-profiles.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logger.error("Failed to save drone profiles", path=self.path, error=str(e))
            raise FilesystemError(f"Failed to save profiles: {e}")
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    # ============ Reads ============

    def snapshot(self) -> Roster:
        """Copy of the six slots."""
        with self._lock:
            return [dict(p) if p else None for p in self._read()]

    def get(self, drone_id: str) -> Optional[tuple[int, Profile]]:
        """(index, profile) for a drone, or None."""
        for index, profile in enumerate(self.snapshot()):
            if profile and str(profile.get("droneId")) == str(drone_id):
                return index, profile
        return None

    def drone_ids(self) -> list[str]:
        return [str(p["droneId"]) for p in self.snapshot() if p and "droneId" in p]

    def as_object(self) -> dict[str, Profile]:
        """Profiles keyed by droneId, each annotated with its ``_index``."""
        result = {}
        for index, profile in enumerate(self.snapshot()):
            if profile:
                result[str(profile.get("droneId"))] = {**profile, "_index": index}
        return result

    # ============ Mutations ============

    def upsert(self, drone_id: str, patch: Profile) -> tuple[int, Profile]:
        """
        Merge ``patch`` into the drone's profile, or insert it in the first
        empty slot. Returns (index, saved profile).
        """
        drone_id = str(drone_id).strip()
        if not drone_id:
            raise InputInvalidError("Invalid drone ID")

        with self._lock:
            roster = self._read()
            index = _find(roster, drone_id)

            updated = dict(roster[index]) if index is not None else {}
            updated.update(patch)
            updated["droneId"] = drone_id
            updated["updatedAt"] = int(time.time() * 1000)
            updated.pop("slot", None)
            updated.pop("_index", None)

            if index is None:
                index = next((i for i, p in enumerate(roster) if p is None), None)
                if index is None:
                    raise CapacityExceededError(
                        f"No available slots (max {SLOT_COUNT} drones)",
                        extra={"code": "no-free-slot"},
                    )

            roster[index] = updated
            self._write(roster)

        logger.info("Profile saved", drone_id=drone_id, index=index, position=index + 1)
        return index, dict(updated)

    def delete(self, drone_id: str) -> int:
        """Empty the drone's slot without compacting. Returns the freed index."""
        with self._lock:
            roster = self._read()
            index = _find(roster, str(drone_id))
            if index is None:
                raise NotFoundError("Profile not found")
            roster[index] = None
            self._write(roster)

        logger.info("Profile deleted", drone_id=drone_id, index=index)
        return index

    def reorder(self, source_slot: int, target_slot: int) -> bool:
        """
        Swap two 1-indexed slots (moving into an empty slot is a swap with None).
        Returns False when the slots are equal and nothing changed.
        """
        for slot in (source_slot, target_slot):
            if isinstance(slot, bool) or not isinstance(slot, int) or not 1 <= slot <= SLOT_COUNT:
                raise InputInvalidError(f"Invalid slot numbers. Must be between 1 and {SLOT_COUNT}.")
        if source_slot == target_slot:
            return False

        with self._lock:
            roster = self._read()
            src, dst = source_slot - 1, target_slot - 1
            if roster[src] is None:
                raise InputInvalidError(f"No drone at position {source_slot}")
            roster[src], roster[dst] = roster[dst], roster[src]
            self._write(roster)

        logger.info("Swapped positions", source_slot=source_slot, target_slot=target_slot)
        return True


def _find(roster: Roster, drone_id: str) -> Optional[int]:
    for i, profile in enumerate(roster):
        if profile and str(profile.get("droneId")) == drone_id:
            return i
    return None


@lru_cache()
def get_profile_store() -> ProfileStore:
    return ProfileStore(get_settings().profiles_path)
