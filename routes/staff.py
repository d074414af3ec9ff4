from fastapi import APIRouter, Depends, HTTPException

from models import ShiftRequestInput, SubstituteRequestInput, SubstituteRequestPatch, UserPatch
from store import ShiftStore
from stores import get_store
from utils import check_month_key

router = APIRouter(tags=["staff"])

# ----------------------------
# Users
# ----------------------------

@router.get("/api/users")
def list_users(active: bool = False, store: ShiftStore = Depends(get_store)):
    users = store.get_active_users() if active else store.get_users()
    return {"ok": True, "items": [u.to_json_dict() for u in users]}


@router.get("/api/users/{user_id}")
def get_user(user_id: str, store: ShiftStore = Depends(get_store)):
    user = store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="user not found")
    return {"ok": True, "item": user.to_json_dict()}


@router.put("/api/users/{user_id}")
def upsert_user(user_id: str, body: UserPatch, store: ShiftStore = Depends(get_store)):
    user = store.save_user(user_id, body)
    return {"ok": True, "item": user.to_json_dict()}


@router.delete("/api/users/{user_id}")
def deactivate_user(user_id: str, store: ShiftStore = Depends(get_store)):
    """Soft delete: the record stays, flagged inactive."""
    if not store.deactivate_user(user_id):
        raise HTTPException(status_code=404, detail="user not found")
    return {"ok": True, "user_id": user_id, "is_active": False}


@router.get("/api/users/{user_id}/shifts")
def list_user_shifts(user_id: str, start: str, end: str, store: ShiftStore = Depends(get_store)):
    items = store.find_shifts_by_user(user_id, start, end)
    return {"ok": True, "items": [s.to_json_dict() for s in items]}


# ----------------------------
# Monthly shift requests
# ----------------------------

@router.get("/api/shift-requests/{month}")
def list_shift_requests(month: str, store: ShiftStore = Depends(get_store)):
    check_month_key(month)
    requests = store.get_shift_requests(month)
    return {"ok": True, "month": month, "items": {uid: r.to_json_dict() for uid, r in requests.items()}}


@router.put("/api/shift-requests/{month}/{user_id}")
def submit_shift_request(month: str, user_id: str, body: ShiftRequestInput, store: ShiftStore = Depends(get_store)):
    request = store.save_shift_request(month, user_id, body)
    return {"ok": True, "item": request.to_json_dict()}


# ----------------------------
# Substitute requests
# ----------------------------

@router.post("/api/substitutes")
def create_substitute_request(body: SubstituteRequestInput, store: ShiftStore = Depends(get_store)):
    request = store.save_substitute_request(body)
    return {"ok": True, "item": request.to_json_dict()}


@router.patch("/api/substitutes/{request_id}")
def respond_substitute_request(request_id: str, body: SubstituteRequestPatch, store: ShiftStore = Depends(get_store)):
    request = store.update_substitute_request(request_id, body)
    if request is None:
        raise HTTPException(status_code=404, detail="substitute request not found")
    return {"ok": True, "item": request.to_json_dict()}
