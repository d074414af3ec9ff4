"""
Shift bot for the LINE group
----------------------------
Turns LINE webhook events into store calls and canned replies.

- Text that does not mention the bot is kept as a ``line_import`` daily
  message for today's board.
- Text that mentions the bot (@シフトボット, @シフト, @shift, @bot) registers
  the sender on first contact, refreshes ``lastSeenAt`` and is answered by
  keyword intent: today's / tomorrow's shift, next month's shift request,
  PDF links, help.
- ``memberJoined`` / ``follow`` register (or re-activate) users;
  ``memberLeft`` / ``unfollow`` deactivate them.
"""
from __future__ import annotations

import datetime as dt
import re
from typing import Callable, List, Optional

import structlog
from pydantic import Field

from errors import StoreError
from models import CamelModel, DayAvailability, ParsedShiftData, TimeRange, User
from utils import iso_timestamp, local_today, next_month_key, utc_now

logger = structlog.get_logger("bot")

BOT_MENTIONS = ("@シフトボット", "@シフト", "@shift", "@bot")
TIME_RANGE_RE = re.compile(r"(\d{1,2})時.*?(\d{1,2})時")

WELCOME_TEXT = (
    "👋 ようこそ！\n\n"
    "シフト管理ボットです。\n"
    "@シフトボット を付けて話しかけてください。\n\n"
    "💡 まずはこちらをお試しください：\n"
    "@シフトボット 使い方教えて"
)

FALLBACK_TEXT = (
    "申し訳ございません。うまく理解できませんでした。\n\n"
    "💡 こんな感じで話しかけてください：\n"
    "・明日のシフト教えて\n"
    "・来月希望です\n"
    "・使い方教えて"
)

HELP_TEXT = (
    "📚 使い方ガイド\n\n"
    "💬 基本的な使い方\n"
    "@シフトボット を付けて話しかけてください。\n\n"
    "🔍 シフト確認\n"
    "・@シフトボット 今日のシフト\n"
    "・@シフトボット 明日のシフト教えて\n\n"
    "📝 シフト希望提出\n"
    "・@シフトボット 来月希望です。平日9時から17時\n"
    "・@シフトボット 来月希望です。土日休み\n\n"
    "📄 PDF保存\n"
    "・@シフトボット シフト表のPDF欲しい"
)

ADMIN_HELP_TEXT = (
    "\n\n👑 管理者機能\n"
    "・@シフトボット 来月の仮シフト見せて\n"
    "・@シフトボット 人手不足の詳細教えて\n"
    "・@シフトボット 来月のシフト確定して"
)


# ----------------------------
# Webhook payload
# ----------------------------

class EventSource(CamelModel):
    type: str = "user"
    user_id: Optional[str] = None
    group_id: Optional[str] = None


class EventMessage(CamelModel):
    type: str
    text: Optional[str] = None


class Member(CamelModel):
    type: str = "user"
    user_id: Optional[str] = None


class Members(CamelModel):
    members: List[Member] = Field(default_factory=list)


class LineEvent(CamelModel):
    type: str
    reply_token: Optional[str] = None
    source: EventSource = Field(default_factory=EventSource)
    message: Optional[EventMessage] = None
    joined: Optional[Members] = None
    left: Optional[Members] = None


class WebhookBody(CamelModel):
    destination: Optional[str] = None
    events: List[LineEvent] = Field(default_factory=list)


# ----------------------------
# Text helpers
# ----------------------------

def has_mention(text: str) -> bool:
    return any(m in text for m in BOT_MENTIONS)


def strip_mentions(text: str) -> str:
    for mention in BOT_MENTIONS:
        text = text.replace(mention, "")
    return text.strip()


def detect_intent(text: str) -> str:
    """One of: today_shift | tomorrow_shift | shift_request | pdf | help | unknown."""
    if "明日" in text and "シフト" in text:
        return "tomorrow_shift"
    if "今日" in text and "シフト" in text:
        return "today_shift"
    if "来月" in text and "希望" in text:
        return "shift_request"
    if "pdf" in text.lower():
        return "pdf"
    if "使い方" in text or "ヘルプ" in text:
        return "help"
    return "unknown"


def parse_shift_request(text: str) -> ParsedShiftData:
    """Weekday/weekend availability and an 'N時…M時' range, when mentioned."""
    parsed = ParsedShiftData()
    if "平日" in text:
        parsed.weekdays = DayAvailability(available=True)
    if "土日" in text:
        parsed.weekends = DayAvailability(available=not ("休み" in text or "NG" in text))
    match = TIME_RANGE_RE.search(text)
    if match:
        parsed.time_range = TimeRange(
            start=f"{int(match.group(1)):02d}:00",
            end=f"{int(match.group(2)):02d}:00",
        )
    return parsed


# ----------------------------
# Bot
# ----------------------------

class ShiftBot:
    def __init__(self, store, messenger, public_base_url: str, clock: Optional[Callable[[], dt.datetime]] = None):
        self.store = store
        self.messenger = messenger
        self.public_base_url = public_base_url.rstrip("/")
        self._clock = clock or getattr(store, "clock", utc_now)

    def _today(self) -> dt.date:
        tz_name = self.store.get_setting("timezone") or "Asia/Tokyo"
        return local_today(self._clock(), tz_name)

    def handle_event(self, event: LineEvent) -> None:
        logger.info("line_event", type=event.type, user_id=event.source.user_id)
        if event.type == "message":
            if event.message is not None and event.message.type == "text":
                self._on_text(event)
        elif event.type == "memberJoined":
            for member in (event.joined.members if event.joined else []):
                if member.type == "user" and member.user_id:
                    self.register_user(member.user_id)
        elif event.type == "memberLeft":
            for member in (event.left.members if event.left else []):
                if member.type == "user" and member.user_id:
                    self.store.deactivate_user(member.user_id)
        elif event.type == "follow":
            if event.source.user_id:
                self.register_user(event.source.user_id)
        elif event.type == "unfollow":
            if event.source.user_id:
                self.store.deactivate_user(event.source.user_id)
        else:
            logger.info("line_event_ignored", type=event.type)

    def _on_text(self, event: LineEvent) -> None:
        text = event.message.text or ""
        user_id = event.source.user_id
        if not has_mention(text):
            self._record_chat(user_id, text)
            return
        if not user_id:
            return

        if self.store.get_user(user_id) is None:
            self.register_user(user_id)
        user = self.store.save_user(user_id, {"last_seen_at": iso_timestamp(self._clock())})

        reply = self.respond(strip_mentions(text), user)
        if event.reply_token:
            self.messenger.reply(event.reply_token, reply)

    def _record_chat(self, user_id: Optional[str], text: str) -> None:
        # best effort
        try:
            user = self.store.get_user(user_id) if user_id else None
            self.store.save_daily_message(
                self._today().isoformat(),
                {
                    "user_name": user.display_name if user else "Unknown User",
                    "message": text,
                    "message_type": "line_import",
                    "is_private": False,
                    "user_id": user_id,
                },
            )
        except StoreError:
            logger.warning("daily_message_capture_failed", user_id=user_id, exc_info=True)

    def register_user(self, user_id: str) -> User:
        """Create the user on first contact; re-activate a returning one."""
        existing = self.store.get_user(user_id)
        if existing is not None:
            if not existing.is_active:
                logger.info("user_reactivated", user_id=user_id)
                return self.store.save_user(user_id, {"is_active": True, "left_at": None})
            return existing

        display_name = self.messenger.get_display_name(user_id) or "LINE User"
        user = self.store.save_user(user_id, {"display_name": display_name, "role": "staff", "is_active": True})
        self.messenger.push(user_id, WELCOME_TEXT)
        return user

    def respond(self, text: str, user: User) -> str:
        intent = detect_intent(text)
        logger.info("bot_intent", intent=intent, user_id=user.line_user_id)
        today = self._today()
        if intent == "tomorrow_shift":
            return self._day_reply(user, today + dt.timedelta(days=1), "明日", "💪 お疲れさまです！明日もよろしくお願いします。")
        if intent == "today_shift":
            return self._day_reply(user, today, "今日", "💪 今日もお疲れさまです！")
        if intent == "shift_request":
            return self._submit_request(text, user, next_month_key(today))
        if intent == "pdf":
            return self._pdf_links(today)
        if intent == "help":
            return HELP_TEXT + (ADMIN_HELP_TEXT if user.role == "admin" else "")
        return FALLBACK_TEXT

    def _day_reply(self, user: User, day: dt.date, label: str, closing: str) -> str:
        key = day.isoformat()
        mine = [s for s in self.store.get_shifts(key) if s.user_id == user.line_user_id]
        if not mine:
            return f"📅 {label}（{key}）\n\nお疲れさまです！\n{label}はお休みです 😊"

        lines = [f"📅 {label}（{key}）のシフト", ""]
        for shift in self.store.enrich_shifts(mine):
            position = shift.position
            lines.append(f"{position.emoji if position else '📍'} {position.name if position else 'Unknown'}")
            lines.append(f"⏰ {shift.start_time} - {shift.end_time}")
            if shift.break_minutes > 0:
                lines.append(f"☕ 休憩: {shift.break_minutes}分")
            lines.append("")
        lines.append(closing)
        return "\n".join(lines)

    def _submit_request(self, text: str, user: User, month: str) -> str:
        self.store.save_shift_request(
            month,
            user.line_user_id,
            {"request_text": text, "parsed_data": parse_shift_request(text)},
        )
        return (
            "✅ シフト希望を受け付けました！\n\n"
            f"📅 対象月: {month}\n"
            f"📝 内容: {text}\n\n"
            "🔄 仮シフトに反映します。\n"
            "責任者による確定をお待ちください。"
        )

    def _pdf_links(self, today: dt.date) -> str:
        key = today.isoformat()
        base = self.public_base_url
        return (
            "📄 シフト表ダウンロード\n\n"
            f"📱 ブラウザで確認\n{base}/{key}\n\n"
            f"📄 PDFファイル\n{base}/api/pdf/{key}\n\n"
            f"🖼️ 画像ファイル（スマホ保存用）\n{base}/api/image/{key}"
        )
