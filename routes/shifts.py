from typing import Callable, List

import structlog
from fastapi import APIRouter, Depends, HTTPException

from errors import StoreError
from models import ShiftInput, ShiftPatch
from store import ShiftStore
from stores import get_store
from utils import check_date_key, check_month_key

logger = structlog.get_logger("routes.shifts")

router = APIRouter(tags=["shifts"])


def _slice(name: str, date: str, fetch: Callable[[], List]) -> List:
    """One part of the day view; a failure empties that part only."""
    try:
        return fetch()
    except StoreError:
        logger.warning("day_view_slice_failed", slice=name, date=date, exc_info=True)
        return []


@router.get("/api/shifts/{date}")
def get_day_view(date: str, store: ShiftStore = Depends(get_store)):
    """Everything the calendar page shows for one day."""
    check_date_key(date)
    # A store that cannot load at all is a 503, not five empty slices.
    store.ensure_fresh()

    shifts = _slice("shifts", date, lambda: store.get_shifts(date))
    notices = _slice("notices", date, store.get_active_notices)
    messages = _slice("messages", date, lambda: store.get_daily_messages(date))
    positions = _slice("positions", date, store.get_positions)
    users = _slice("users", date, store.get_users)

    try:
        enriched = store.enrich_shifts(shifts)
    except StoreError:
        logger.warning("day_view_enrich_failed", date=date, exc_info=True)
        enriched = shifts

    logger.info(
        "day_view",
        date=date,
        shifts=len(shifts),
        notices=len(notices),
        messages=len(messages),
        positions=len(positions),
        users=len(users),
    )
    return {
        "ok": True,
        "date": date,
        "shifts": [s.to_json_dict() for s in enriched],
        "notices": [n.to_json_dict() for n in notices],
        "messages": [m.to_json_dict() for m in messages],
        "positions": [p.to_json_dict() for p in positions],
        "users": [u.to_json_dict() for u in users],
    }


@router.get("/api/shifts")
def list_monthly_shifts(month: str, store: ShiftStore = Depends(get_store)):
    check_month_key(month)
    items = store.get_monthly_shifts(month)
    return {"ok": True, "month": month, "items": [s.to_json_dict() for s in items]}


@router.post("/api/shifts/{date}")
def create_shift(date: str, body: ShiftInput, store: ShiftStore = Depends(get_store)):
    shift = store.save_shift(date, body)
    logger.info("shift_created", date=date, shift_id=shift.id, user_id=shift.user_id)
    return {"ok": True, "item": shift.to_json_dict()}


@router.patch("/api/shifts/{date}/{shift_id}")
def update_shift(date: str, shift_id: str, body: ShiftPatch, store: ShiftStore = Depends(get_store)):
    shift = store.update_shift(date, shift_id, body)
    if shift is None:
        raise HTTPException(status_code=404, detail="shift not found")
    return {"ok": True, "item": shift.to_json_dict()}


@router.delete("/api/shifts/{date}/{shift_id}")
def delete_shift(date: str, shift_id: str, store: ShiftStore = Depends(get_store)):
    if not store.delete_shift(date, shift_id):
        raise HTTPException(status_code=404, detail="shift not found")
    return {"ok": True, "deleted": shift_id}


@router.get("/api/positions")
def list_positions(store: ShiftStore = Depends(get_store)):
    return {"ok": True, "items": [p.to_json_dict() for p in store.get_positions()]}


@router.get("/api/positions/{position_id}")
def get_position(position_id: str, store: ShiftStore = Depends(get_store)):
    position = store.get_position_by_id(position_id)
    if position is None:
        raise HTTPException(status_code=404, detail="position not found")
    return {"ok": True, "item": position.to_json_dict()}
