import base64
import datetime as dt
import hashlib
import hmac
import json
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app  # noqa: E402
from config import AppConfig  # noqa: E402
from line_api import LineMessenger  # noqa: E402
from policies import forward_only  # noqa: E402
from store import ShiftStore  # noqa: E402

SECRET = "test-channel-secret"
NOON_TOKYO = dt.datetime(2025, 4, 10, 3, 0, tzinfo=dt.timezone.utc)


def make_client(tmp_path: Path, **store_kwargs) -> TestClient:
    config = AppConfig(data_root=tmp_path, line_channel_secret=SECRET)
    store = ShiftStore.from_config(config, clock=lambda: NOON_TOKYO, **store_kwargs)
    return TestClient(create_app(config, store=store, messenger=LineMessenger(SECRET)))


def sign(body: str) -> str:
    digest = hmac.new(SECRET.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


@pytest.fixture
def client(tmp_path):
    return make_client(tmp_path)


def test_health(client):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_day_view_returns_enriched_board(client):
    client.put("/api/users/U1", json={"displayName": "太郎"})
    created = client.post(
        "/api/shifts/2025-04-10",
        json={"userId": "U1", "positionId": "pos_04", "startTime": "09:00", "endTime": "17:00"},
    )
    assert created.status_code == 200
    client.post("/api/notices", json={"title": "冷蔵庫点検", "startDate": "2025-04-01", "category": "equipment"})
    client.post("/api/messages/2025-04-10", json={"userName": "太郎", "message": "よろしく"})

    resp = client.get("/api/shifts/2025-04-10")

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["ok"] is True
    assert payload["date"] == "2025-04-10"
    shift = payload["shifts"][0]
    assert shift["user"]["displayName"] == "太郎"
    assert shift["position"]["name"] == "ホール"
    assert shift["createdAt"] == "2025-04-10T03:00:00.000Z"
    assert [n["title"] for n in payload["notices"]] == ["冷蔵庫点検"]
    assert [m["message"] for m in payload["messages"]] == ["よろしく"]
    assert len(payload["positions"]) == 4
    assert [u["lineUserId"] for u in payload["users"]] == ["U1"]


def test_invalid_date_is_a_bad_request(client):
    resp = client.get("/api/shifts/2025-13-45")

    assert resp.status_code == 400
    assert resp.json()["ok"] is False


def test_unreadable_store_is_service_unavailable(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "database.json").write_text("{broken", encoding="utf-8")
    client = make_client(tmp_path)

    for path in ("/api/users", "/api/shifts/2025-04-10", "/api/statistics"):
        resp = client.get(path)
        assert resp.status_code == 503
        assert resp.json() == {"ok": False, "error": "service unavailable"}


def test_shift_update_and_delete(client):
    shift_id = client.post(
        "/api/shifts/2025-04-10",
        json={"userId": "U1", "positionId": "pos_01", "startTime": "09:00", "endTime": "13:00"},
    ).json()["item"]["id"]

    patched = client.patch(f"/api/shifts/2025-04-10/{shift_id}", json={"endTime": "14:00"})
    assert patched.status_code == 200
    assert patched.json()["item"]["endTime"] == "14:00"

    assert client.delete(f"/api/shifts/2025-04-10/{shift_id}").json() == {"ok": True, "deleted": shift_id}
    assert client.delete(f"/api/shifts/2025-04-10/{shift_id}").status_code == 404
    assert client.patch(f"/api/shifts/2025-04-10/{shift_id}", json={"notes": "x"}).status_code == 404


def test_backwards_transition_is_a_conflict(tmp_path):
    client = make_client(tmp_path, status_policy=forward_only)
    shift_id = client.post(
        "/api/shifts/2025-04-10",
        json={"userId": "U1", "positionId": "pos_01", "startTime": "09:00", "endTime": "13:00", "status": "locked"},
    ).json()["item"]["id"]

    resp = client.patch(f"/api/shifts/2025-04-10/{shift_id}", json={"status": "draft"})

    assert resp.status_code == 409


def test_monthly_listing(client):
    for day in ("2025-04-01", "2025-04-20", "2025-05-01"):
        client.post(f"/api/shifts/{day}", json={"userId": "U1", "positionId": "pos_01", "startTime": "09:00", "endTime": "13:00"})

    resp = client.get("/api/shifts", params={"month": "2025-04"})

    assert resp.status_code == 200
    assert len(resp.json()["items"]) == 2


def test_user_lifecycle(client):
    assert client.get("/api/users/U1").status_code == 404
    client.put("/api/users/U1", json={"displayName": "太郎"})
    client.put("/api/users/U2", json={"displayName": "花子"})

    resp = client.delete("/api/users/U2")
    assert resp.json() == {"ok": True, "user_id": "U2", "is_active": False}

    active = client.get("/api/users", params={"active": "true"}).json()["items"]
    assert [u["lineUserId"] for u in active] == ["U1"]
    assert len(client.get("/api/users").json()["items"]) == 2
    assert client.delete("/api/users/nobody").status_code == 404


def test_user_shift_range(client):
    for day in ("2025-04-09", "2025-04-10", "2025-04-12"):
        client.post(f"/api/shifts/{day}", json={"userId": "U1", "positionId": "pos_01", "startTime": "09:00", "endTime": "13:00"})

    resp = client.get("/api/users/U1/shifts", params={"start": "2025-04-10", "end": "2025-04-12"})

    assert len(resp.json()["items"]) == 2


def test_shift_requests_and_substitutes(client):
    put = client.put("/api/shift-requests/2025-05/U1", json={"requestText": "平日希望", "parsedData": {"weekdays": {"available": True}}})
    assert put.status_code == 200
    listing = client.get("/api/shift-requests/2025-05").json()["items"]
    assert listing["U1"]["requestText"] == "平日希望"
    assert listing["U1"]["status"] == "submitted"

    sub = client.post("/api/substitutes", json={"requesterId": "U1", "targetDate": "2025-04-12", "reason": "通院"}).json()["item"]
    assert sub["status"] == "pending"
    answered = client.patch(f"/api/substitutes/{sub['id']}", json={"status": "accepted", "substituteId": "U2"})
    assert answered.json()["item"]["status"] == "accepted"
    assert client.patch("/api/substitutes/missing", json={"status": "rejected"}).status_code == 404


def test_private_messages_are_hidden_by_default(client):
    client.post("/api/messages/2025-04-10", json={"userName": "太郎", "message": "public"})
    client.post("/api/messages/2025-04-10", json={"userName": "店長", "message": "secret", "isPrivate": True})

    visible = client.get("/api/messages/2025-04-10").json()["items"]
    everything = client.get("/api/messages/2025-04-10", params={"include_private": "true"}).json()["items"]

    assert [m["message"] for m in visible] == ["public"]
    assert len(everything) == 2


def test_settings_endpoints(client):
    assert client.get("/api/settings").json()["item"]["storeName"] == "○○○店"

    resp = client.put("/api/settings/storeName", json={"value": "渋谷店"})
    assert resp.json() == {"ok": True, "key": "storeName", "value": "渋谷店"}
    assert client.get("/api/settings/storeName").json()["value"] == "渋谷店"

    assert client.put("/api/settings/noSuchKey", json={"value": 1}).status_code == 404
    assert client.get("/api/settings/noSuchKey").status_code == 404
    invalid = client.put("/api/settings/shiftDeadlineDay", json={"value": 40})
    assert invalid.status_code == 422
    assert invalid.json()["ok"] is False


def test_statistics(client):
    client.put("/api/users/U1", json={"displayName": "太郎"})
    client.post("/api/shifts/2025-04-10", json={"userId": "U1", "positionId": "pos_01", "startTime": "09:00", "endTime": "13:00"})

    item = client.get("/api/statistics").json()["item"]

    assert item["totalUsers"] == 1
    assert item["todayShifts"] == 1
    assert item["activeNotices"] == 0
    assert item["lastUpdated"] == "2025-04-10T03:00:00.000Z"


def test_positions(client):
    items = client.get("/api/positions").json()["items"]
    assert [p["id"] for p in items] == ["pos_01", "pos_02", "pos_03", "pos_04"]
    assert client.get("/api/positions/pos_03").json()["item"]["emoji"] == "🍖"
    assert client.get("/api/positions/pos_99").status_code == 404


# ----------------------------
# LINE webhook
# ----------------------------

def test_webhook_rejects_bad_signature(client):
    body = json.dumps({"events": []})

    assert client.post("/webhook", content=body).status_code == 401
    resp = client.post("/webhook", content=body, headers={"X-Line-Signature": "bogus"})
    assert resp.status_code == 401


def test_webhook_processes_signed_events(client):
    body = json.dumps(
        {
            "destination": "Ubot",
            "events": [
                {"type": "follow", "replyToken": "rt", "source": {"type": "user", "userId": "U7"}},
                {
                    "type": "message",
                    "replyToken": "rt2",
                    "source": {"type": "group", "groupId": "G1", "userId": "U8"},
                    "message": {"type": "text", "id": "1", "text": "おはようございます"},
                },
            ],
        },
        ensure_ascii=False,
    )

    resp = client.post("/webhook", content=body.encode("utf-8"), headers={"X-Line-Signature": sign(body)})

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert client.get("/api/users/U7").json()["item"]["displayName"] == "LINE User"
    messages = client.get("/api/messages/2025-04-10").json()["items"]
    assert [m["message"] for m in messages] == ["おはようございます"]


def test_webhook_rejects_malformed_payload(client):
    body = "[]"

    resp = client.post("/webhook", content=body, headers={"X-Line-Signature": sign(body)})

    assert resp.status_code == 400


def test_user_shift_range_at_the_end_of_the_calendar(client):
    resp = client.get("/api/users/U1/shifts", params={"start": "9999-12-31", "end": "9999-12-31"})

    assert resp.status_code == 200
    assert resp.json()["items"] == []
    assert client.get("/api/users/U1/shifts", params={"start": "soon", "end": "later"}).status_code == 400


def test_known_setting_without_a_value_is_not_missing(client):
    resp = client.get("/api/settings/specialEvents")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "key": "specialEvents", "value": None}
    assert client.get("/api/settings/dynamic_holidays").status_code == 200
    assert client.get("/api/settings/noSuchKey").status_code == 404
