"""Seeded initial data and load-time repair of the raw dataset document.

Repair works on the decoded JSON (camelCase keys) before it is validated into
``models.Dataset``. It only fills gaps: present values are never replaced, and
running it a second time changes nothing.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List

SCHEMA_VERSION = "1.0.0"

SEED_POSITIONS: List[Dict[str, Any]] = [
    {"id": "pos_01", "name": "洗い場", "emoji": "🧽", "sortOrder": 1},
    {"id": "pos_02", "name": "1レーン", "emoji": "🍽️", "sortOrder": 2},
    {"id": "pos_03", "name": "2レーン", "emoji": "🍖", "sortOrder": 3},
    {"id": "pos_04", "name": "ホール", "emoji": "🏃‍♀️", "sortOrder": 4},
]

DEFAULT_SETTINGS: Dict[str, Any] = {
    "storeName": "○○○店",
    "businessHours": "09:00-22:00",
    "adminLineUserId": "",
    "shiftDeadlineDay": 25,
    "autoBreakEnabled": True,
    "breakRules": {"6hours": 45, "8hours": 60},
    "timezone": "Asia/Tokyo",
}

TOP_LEVEL_KEYS = (
    "users",
    "positions",
    "shifts",
    "shiftRequests",
    "sharedNotices",
    "dailyMessages",
    "substituteRequests",
    "settings",
    "metadata",
)


def fresh_metadata(now_iso: str) -> Dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "createdAt": now_iso,
        "lastUpdatedAt": now_iso,
        "totalUsers": 0,
        "totalShifts": 0,
    }


def default_for_key(key: str, now_iso: str) -> Any:
    if key == "positions":
        return copy.deepcopy(SEED_POSITIONS)
    if key == "settings":
        return copy.deepcopy(DEFAULT_SETTINGS)
    if key == "metadata":
        return fresh_metadata(now_iso)
    if key in ("sharedNotices", "substituteRequests"):
        return []
    return {}


def initial_document(now_iso: str) -> Dict[str, Any]:
    """The dataset written on first run: seeded positions, empty collections."""
    return {key: default_for_key(key, now_iso) for key in TOP_LEVEL_KEYS}


def repair_document(doc: Dict[str, Any], now_iso: str) -> List[str]:
    """Fill structural gaps in ``doc`` in place; return what was repaired."""
    repairs: List[str] = []

    for key in TOP_LEVEL_KEYS:
        if key not in doc:
            doc[key] = default_for_key(key, now_iso)
            repairs.append(f"missing:{key}")

    metadata = doc.get("metadata")
    if isinstance(metadata, dict):
        for field, value in fresh_metadata(now_iso).items():
            if field not in metadata:
                metadata[field] = value
                repairs.append(f"metadata:{field}")

    users = doc.get("users")
    if isinstance(users, dict):
        for user_id, user in users.items():
            if not isinstance(user, dict):
                continue
            if not user.get("lineUserId"):
                user["lineUserId"] = user_id
                repairs.append(f"user:{user_id}:lineUserId")
            if not user.get("joinedAt"):
                user["joinedAt"] = now_iso
                repairs.append(f"user:{user_id}:joinedAt")

    # Requests written by older clients carry neither their month nor their user.
    requests_by_month = doc.get("shiftRequests")
    if isinstance(requests_by_month, dict):
        for month, requests in requests_by_month.items():
            if not isinstance(requests, dict):
                continue
            for user_id, request in requests.items():
                if not isinstance(request, dict):
                    continue
                if not request.get("month"):
                    request["month"] = month
                    repairs.append(f"shiftRequest:{month}:{user_id}:month")
                if not request.get("userId"):
                    request["userId"] = user_id
                    repairs.append(f"shiftRequest:{month}:{user_id}:userId")
                if not request.get("submittedAt"):
                    request["submittedAt"] = now_iso
                    repairs.append(f"shiftRequest:{month}:{user_id}:submittedAt")

    return repairs
