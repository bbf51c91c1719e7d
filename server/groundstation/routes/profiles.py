"""
Roster API routes.

Handlers are plain ``def`` so the file I/O runs in the threadpool.
"""
from fastapi import APIRouter, Depends

from groundstation.errors import NotFoundError
from groundstation.schemas import ProfilePatch, ReorderRequest
from groundstation.services.auth import require_operator
from groundstation.services.profile_store import ProfileStore, get_profile_store

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("")
def list_profiles(store: ProfileStore = Depends(get_profile_store)):
    roster = store.snapshot()
    profiles = {
        str(p.get("droneId")): {**p, "_index": i}
        for i, p in enumerate(roster) if p
    }
    return {"success": True, "profiles": profiles, "profilesArray": roster}


# Registered before /{drone_id} so "reorder" is not taken as an id
@router.post("/reorder", dependencies=[Depends(require_operator)])
def reorder_profiles(request: ReorderRequest, store: ProfileStore = Depends(get_profile_store)):
    if not store.reorder(request.source_slot, request.target_slot):
        return {"success": True, "message": "No change needed"}
    return {
        "success": True,
        "message": f"Swapped positions {request.source_slot} and {request.target_slot}",
        "profilesArray": store.snapshot(),
    }


@router.get("/{drone_id}")
def get_profile(drone_id: str, store: ProfileStore = Depends(get_profile_store)):
    found = store.get(drone_id)
    if found is None:
        raise NotFoundError("Profile not found")
    index, profile = found
    return {"success": True, "profile": {**profile, "_index": index}}


@router.post("/{drone_id}", dependencies=[Depends(require_operator)])
def save_profile(drone_id: str, patch: ProfilePatch, store: ProfileStore = Depends(get_profile_store)):
    """Create or merge-update a profile; new profiles take the first free position."""
    index, profile = store.upsert(drone_id, patch.to_patch())
    return {"success": True, "profile": {**profile, "_index": index}}


@router.delete("/{drone_id}", dependencies=[Depends(require_operator)])
def delete_profile(drone_id: str, store: ProfileStore = Depends(get_profile_store)):
    index = store.delete(drone_id)
    return {"success": True, "message": f"Profile {drone_id} deleted", "position": index + 1}
