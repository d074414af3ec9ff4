from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from store import ShiftStore
from stores import get_store

router = APIRouter(tags=["admin"])


@router.get("/api/health")
def health():
    return {"ok": True}


@router.get("/api/statistics")
def statistics(store: ShiftStore = Depends(get_store)):
    return {"ok": True, "item": store.get_statistics().to_json_dict()}


@router.get("/api/settings")
def get_settings(store: ShiftStore = Depends(get_store)):
    return {"ok": True, "item": store.get_settings().to_json_dict()}


@router.get("/api/settings/{key}")
def get_setting(key: str, store: ShiftStore = Depends(get_store)):
    if not store.has_setting(key):
        raise HTTPException(status_code=404, detail="setting not found")
    return {"ok": True, "key": key, "value": store.get_setting(key)}


@router.put("/api/settings/{key}")
def set_setting(key: str, value: Any = Body(..., embed=True), store: ShiftStore = Depends(get_store)):
    """Body: {"value": ...}. Validated against the settings schema."""
    store.set_setting(key, value)
    return {"ok": True, "key": key, "value": store.get_setting(key)}
