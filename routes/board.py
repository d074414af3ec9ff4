from fastapi import APIRouter, Depends

from models import DailyMessageInput, NoticeInput
from store import ShiftStore
from stores import get_store

router = APIRouter(tags=["board"])


@router.get("/api/notices")
def list_active_notices(store: ShiftStore = Depends(get_store)):
    return {"ok": True, "items": [n.to_json_dict() for n in store.get_active_notices()]}


@router.post("/api/notices")
def create_notice(body: NoticeInput, store: ShiftStore = Depends(get_store)):
    notice = store.save_notice(body)
    return {"ok": True, "item": notice.to_json_dict()}


@router.get("/api/messages/{date}")
def list_daily_messages(date: str, include_private: bool = False, store: ShiftStore = Depends(get_store)):
    messages = store.get_daily_messages(date)
    if not include_private:
        messages = [m for m in messages if not m.is_private]
    return {"ok": True, "date": date, "items": [m.to_json_dict() for m in messages]}


@router.post("/api/messages/{date}")
def post_daily_message(date: str, body: DailyMessageInput, store: ShiftStore = Depends(get_store)):
    message = store.save_daily_message(date, body)
    return {"ok": True, "item": message.to_json_dict()}
