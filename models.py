# /models.py
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ----------------------------
# Base models
# ----------------------------

class CamelModel(BaseModel):
    # On disk and on the wire keys are camelCase; in Python they are snake_case.
    # Unknown keys survive a load/save cycle.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class InputModel(CamelModel):
    # Caller-supplied payloads: unknown keys (including server-owned ids) are dropped.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


Role = Literal["admin", "staff"]
ShiftStatus = Literal["draft", "preview", "confirmed", "locked"]
NoticeCategory = Literal["equipment", "staff", "operation", "other"]
NoticePriority = Literal["low", "medium", "high", "urgent"]
MessageType = Literal["chat", "line_import", "admin_memo", "system"]
SubstituteStatus = Literal["pending", "accepted", "rejected", "cancelled"]
RequestStatus = Literal["submitted", "processed"]

HHMM = r"^\d{1,2}:\d{2}$"


# ----------------------------
# Users & positions
# ----------------------------

class UserPreferences(CamelModel):
    notifications: bool = True
    timezone: str = "Asia/Tokyo"


class User(CamelModel):
    line_user_id: str
    display_name: str = ""
    real_name: Optional[str] = None
    role: Role = "staff"
    is_active: bool = True
    joined_at: str
    last_seen_at: Optional[str] = None
    left_at: Optional[str] = None
    preferences: Optional[UserPreferences] = None


class UserPatch(InputModel):
    display_name: Optional[str] = None
    real_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    joined_at: Optional[str] = None
    last_seen_at: Optional[str] = None
    left_at: Optional[str] = None
    preferences: Optional[UserPreferences] = None


class Position(CamelModel):
    id: str
    name: str
    emoji: str = ""
    sort_order: int = 0
    required_staff: Optional[Dict[str, int]] = None  # hour -> required headcount


# ----------------------------
# Shifts
# ----------------------------

class ShiftInput(InputModel):
    user_id: str
    position_id: str
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)  # exclusive
    break_minutes: int = Field(default=0, ge=0)
    status: ShiftStatus = "draft"
    created_by: Optional[str] = None
    notes: Optional[str] = None


class Shift(CamelModel):
    id: str
    user_id: str
    position_id: str
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)
    break_minutes: int = Field(default=0, ge=0)
    status: ShiftStatus = "draft"
    created_at: str
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None


class ShiftPatch(InputModel):
    user_id: Optional[str] = None
    position_id: Optional[str] = None
    start_time: Optional[str] = Field(default=None, pattern=HHMM)
    end_time: Optional[str] = Field(default=None, pattern=HHMM)
    break_minutes: Optional[int] = Field(default=None, ge=0)
    status: Optional[ShiftStatus] = None
    notes: Optional[str] = None


class EnrichedShift(Shift):
    # Display join only; never persisted.
    user: Optional[User] = None
    position: Optional[Position] = None


# ----------------------------
# Shift requests (monthly preferences)
# ----------------------------

class DayAvailability(CamelModel):
    available: bool
    preferred_start: Optional[str] = None
    preferred_end: Optional[str] = None


class TimeRange(CamelModel):
    start: str
    end: str


class ParsedShiftData(CamelModel):
    """Best-effort structure extracted from a free-text request."""
    weekdays: Optional[DayAvailability] = None
    weekends: Optional[DayAvailability] = None
    time_range: Optional[TimeRange] = None
    specific_days: List[str] = Field(default_factory=list)
    unavailable_dates: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class ShiftRequestInput(InputModel):
    request_text: str = ""
    parsed_data: ParsedShiftData = Field(default_factory=ParsedShiftData)
    notes: Optional[str] = None


class ShiftRequest(CamelModel):
    month: str
    user_id: str
    request_text: str = ""
    parsed_data: ParsedShiftData = Field(default_factory=ParsedShiftData)
    submitted_at: str
    status: RequestStatus = "submitted"
    notes: Optional[str] = None


# ----------------------------
# Notices & daily messages
# ----------------------------

class NoticeInput(InputModel):
    title: str
    content: str = ""
    category: NoticeCategory = "other"
    priority: NoticePriority = "medium"
    start_date: str
    end_date: Optional[str] = None
    created_by: str = ""


class Notice(CamelModel):
    id: str
    title: str
    content: str = ""
    category: NoticeCategory = "other"
    priority: NoticePriority = "medium"
    start_date: str
    end_date: Optional[str] = None
    is_active: bool = True
    created_by: str = ""
    created_at: str
    updated_at: Optional[str] = None

    def is_visible_on(self, day: str) -> bool:
        """Active flag set and ``day`` inside [start_date, end_date or open]."""
        if not self.is_active or self.start_date > day:
            return False
        return not self.end_date or self.end_date >= day


class DailyMessageInput(InputModel):
    user_name: str
    message: str
    message_type: MessageType = "chat"
    is_private: bool = False
    user_id: Optional[str] = None


class DailyMessage(CamelModel):
    id: str
    user_name: str
    message: str
    message_type: MessageType = "chat"
    is_private: bool = False
    created_at: str
    user_id: Optional[str] = None


# ----------------------------
# Substitute requests
# ----------------------------

class SubstituteRequestInput(InputModel):
    shift_id: Optional[str] = None
    requester_id: str = ""
    substitute_id: Optional[str] = None
    target_date: str = ""
    reason: str = ""
    notes: Optional[str] = None


class SubstituteRequest(CamelModel):
    id: str
    shift_id: Optional[str] = None
    requester_id: str = ""
    substitute_id: Optional[str] = None
    target_date: str = ""
    reason: str = ""
    status: SubstituteStatus = "pending"
    requested_at: str
    responded_at: Optional[str] = None
    notes: Optional[str] = None


class SubstituteRequestPatch(InputModel):
    substitute_id: Optional[str] = None
    status: Optional[SubstituteStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


# ----------------------------
# Settings & metadata
# ----------------------------

class SpecialEvent(CamelModel):
    id: str
    name: str
    start_date: str
    end_date: str
    additional_staff: Dict[str, int] = Field(default_factory=dict)  # position id -> extra headcount
    description: Optional[str] = None
    is_active: bool = True
    created_at: str = ""


class SystemSettings(CamelModel):
    store_name: str = "○○○店"
    business_hours: str = "09:00-22:00"
    admin_line_user_id: str = ""
    shift_deadline_day: int = Field(default=25, ge=1, le=31)
    auto_break_enabled: bool = True
    break_rules: Dict[str, int] = Field(default_factory=lambda: {"6hours": 45, "8hours": 60})
    timezone: str = "Asia/Tokyo"
    special_events: Optional[List[SpecialEvent]] = None
    dynamic_holidays: Optional[Dict[str, Dict[str, Any]]] = None


class DatasetMetadata(CamelModel):
    version: str = "1.0.0"
    created_at: str = ""
    last_updated_at: str = ""
    total_users: int = 0
    total_shifts: int = 0
    last_backup_at: Optional[str] = None


class Dataset(CamelModel):
    users: Dict[str, User] = Field(default_factory=dict)
    positions: List[Position] = Field(default_factory=list)
    shifts: Dict[str, List[Shift]] = Field(default_factory=dict)
    shift_requests: Dict[str, Dict[str, ShiftRequest]] = Field(default_factory=dict)
    shared_notices: List[Notice] = Field(default_factory=list)
    daily_messages: Dict[str, List[DailyMessage]] = Field(default_factory=dict)
    substitute_requests: List[SubstituteRequest] = Field(default_factory=list)
    settings: SystemSettings = Field(default_factory=SystemSettings)
    metadata: DatasetMetadata = Field(default_factory=DatasetMetadata)


class StoreStatistics(CamelModel):
    total_users: int
    today_shifts: int
    active_notices: int
    last_updated: str
