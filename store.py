"""JSON-file backed store for the shift board.

The whole dataset lives in one JSON document. ``ShiftStore`` keeps a single
in-memory snapshot of it and mirrors every mutation back to disk:

- ``ensure_fresh()`` reloads the document when nothing is loaded yet or the
  file's mtime is newer than the last load/save. A missing file is seeded and
  written; an unreadable one raises ``StorageUnavailable``.
- ``save()`` stamps the metadata, writes a timestamped backup (best effort,
  with retention pruning), then replaces the real file through a temp file and
  a rename so readers never see a partial document.
- Accessors always refresh first, mutate under the store lock, save before
  returning, and hand out deep copies.

One store per process. The lock is in-process only: two processes writing the
same file are last-writer-wins on the whole document.
"""
from __future__ import annotations

import copy
import datetime as dt
import json
import threading
import time
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from backups import prune_backups, write_backup
from errors import SaveFailed, StorageUnavailable, StoreError, UnknownSettingKey
from integrity import SCHEMA_VERSION, initial_document, repair_document
from models import (
    DailyMessage,
    DailyMessageInput,
    Dataset,
    EnrichedShift,
    Notice,
    NoticeInput,
    Position,
    Shift,
    ShiftInput,
    ShiftPatch,
    ShiftRequest,
    ShiftRequestInput,
    StoreStatistics,
    SubstituteRequest,
    SubstituteRequestInput,
    SubstituteRequestPatch,
    SystemSettings,
    User,
    UserPatch,
)
from policies import StatusPolicy
from utils import (
    DateLike,
    check_date_key,
    check_month_key,
    generate_id,
    iso_timestamp,
    iter_days,
    local_today,
    utc_now,
)

logger = structlog.get_logger("store")

M = TypeVar("M", bound=BaseModel)
Payload = Union[BaseModel, Mapping[str, Any], None]

DEFAULT_RETENTION_DAYS = 30


def _coerce(model_cls: Type[M], data: Payload) -> M:
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    return model_cls.model_validate(dict(data or {}))


def _patch(model_cls: Type[BaseModel], changes: Payload) -> Dict[str, Any]:
    """Only the keys the caller actually set, by field name."""
    return _coerce(model_cls, changes).model_dump(exclude_unset=True)


def _merge(model_cls: Type[M], current: BaseModel, patch: Dict[str, Any], **stamps: Any) -> M:
    merged = current.model_dump()
    merged.update(patch)
    merged.update(stamps)
    return model_cls.model_validate(merged)


def _setting_field(key: str) -> Optional[str]:
    for name in SystemSettings.model_fields:
        if key in (name, to_camel(name)):
            return name
    return None


class ShiftStore:
    def __init__(
        self,
        data_path: Union[str, Path],
        backup_dir: Union[str, Path, None] = None,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Optional[Callable[[], dt.datetime]] = None,
        status_policy: Optional[StatusPolicy] = None,
    ):
        self.data_path = Path(data_path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.data_path.parent / "backups"
        self.retention_days = retention_days
        self.clock = clock or utc_now
        self._status_policy = status_policy
        self._lock = threading.RLock()
        self._data: Optional[Dataset] = None
        # mtime (ns) of the file at the last load, or wall time of the last save
        self._loaded_at_ns: Optional[int] = None

    @classmethod
    def from_config(cls, config, **kwargs) -> "ShiftStore":
        return cls(
            config.data_path,
            config.backup_path,
            retention_days=config.backup_retention_days,
            **kwargs,
        )

    # ----------------------------
    # Load / freshness
    # ----------------------------

    def ensure_fresh(self) -> None:
        """Make the snapshot reflect the file as of the start of this call.

        Concurrent callers serialize on the store lock; whoever waited
        re-checks the mtime once it gets the lock instead of reloading blindly.
        """
        with self._lock:
            try:
                mtime_ns = self.data_path.stat().st_mtime_ns
            except FileNotFoundError:
                self._initialize()
                return
            except OSError as exc:
                logger.error("store_stat_failed", path=str(self.data_path), error=str(exc))
                raise StorageUnavailable(f"cannot access {self.data_path}") from exc

            if self._data is not None and self._loaded_at_ns is not None and mtime_ns <= self._loaded_at_ns:
                return

            self._data = self._load_document()
            self._loaded_at_ns = mtime_ns

    def _initialize(self) -> None:
        if self._data is None:
            logger.info("store_initialized", path=str(self.data_path))
            self._data = Dataset.model_validate(initial_document(self._now_iso()))
        else:
            logger.warning("store_file_missing_rewriting_snapshot", path=str(self.data_path))
        self.save()

    def _read_file(self) -> str:
        return self.data_path.read_text(encoding="utf-8")

    def _load_document(self) -> Dataset:
        try:
            raw = self._read_file()
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("store_read_failed", path=str(self.data_path), error=str(exc))
            raise StorageUnavailable(f"cannot read {self.data_path}") from exc

        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("store_corrupt", path=str(self.data_path), error=str(exc))
            raise StorageUnavailable(f"{self.data_path} is not valid JSON") from exc
        if not isinstance(doc, dict):
            logger.error("store_corrupt", path=str(self.data_path), error="top-level value is not an object")
            raise StorageUnavailable(f"{self.data_path} does not hold a dataset object")

        repairs = repair_document(doc, self._now_iso())
        if repairs:
            logger.info("integrity_repaired", repairs=repairs)

        try:
            data = Dataset.model_validate(doc)
        except ValidationError as exc:
            logger.error("store_schema_invalid", path=str(self.data_path), errors=exc.error_count())
            raise StorageUnavailable(f"{self.data_path} does not match the dataset schema") from exc

        logger.info("store_loaded", path=str(self.data_path), users=len(data.users), shift_days=len(data.shifts))
        return data

    # ----------------------------
    # Save / backup
    # ----------------------------

    def save(self) -> None:
        """Backup, then atomically replace the data file with the snapshot."""
        with self._lock:
            if self._data is None:
                raise StoreError("nothing loaded; refusing to save")

            now = self.clock()
            stamp = iso_timestamp(now)
            meta = self._data.metadata
            meta.last_updated_at = stamp
            meta.version = SCHEMA_VERSION

            previous_backup_at = meta.last_backup_at
            meta.last_backup_at = stamp
            payload = self._serialize()
            if not self._create_backup(payload, now):
                meta.last_backup_at = previous_backup_at
                payload = self._serialize()

            mtime_ns = self._write_atomic(payload)
            self._loaded_at_ns = max(time.time_ns(), mtime_ns)
            logger.info("store_saved", path=str(self.data_path), updated_at=stamp)

    def _serialize(self) -> str:
        return json.dumps(self._data.to_json_dict(), ensure_ascii=False, indent=2)

    def _create_backup(self, payload: str, now: dt.datetime) -> bool:
        try:
            path = write_backup(self.backup_dir, payload, now)
        except OSError as exc:
            logger.warning("backup_failed", backup_dir=str(self.backup_dir), error=str(exc))
            return False
        logger.debug("backup_written", file=path.name)

        try:
            prune_backups(self.backup_dir, self.retention_days, now)
        except OSError as exc:
            logger.warning("backup_retention_failed", backup_dir=str(self.backup_dir), error=str(exc))
        return True

    def _write_atomic(self, payload: str) -> int:
        tmp = self.data_path.with_name(self.data_path.name + ".tmp")
        try:
            self.data_path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(self.data_path)
            return self.data_path.stat().st_mtime_ns
        except OSError as exc:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            # in-memory state no longer matches disk; reload on next access
            self._loaded_at_ns = None
            logger.error("store_save_failed", path=str(self.data_path), error=str(exc))
            raise SaveFailed(f"failed to write {self.data_path}") from exc

    # ----------------------------
    # Helpers
    # ----------------------------

    @contextmanager
    def _fresh(self) -> Iterator[Dataset]:
        with self._lock:
            self.ensure_fresh()
            yield self._data

    def _now_iso(self) -> str:
        return iso_timestamp(self.clock())

    def _today(self) -> str:
        tz_name = self._data.settings.timezone if self._data else "UTC"
        return local_today(self.clock(), tz_name).isoformat()

    def _check_status(self, previous: Optional[str], new: str) -> None:
        if self._status_policy is not None:
            self._status_policy(previous, new)

    def get_dataset(self) -> Dataset:
        """Deep copy of the whole snapshot."""
        with self._fresh() as data:
            return data.model_copy(deep=True)

    # ----------------------------
    # Users
    # ----------------------------

    def get_user(self, line_user_id: str) -> Optional[User]:
        with self._fresh() as data:
            user = data.users.get(line_user_id)
            return user.model_copy(deep=True) if user else None

    def save_user(self, line_user_id: str, changes: Payload = None) -> User:
        """Upsert: changes overlay the stored record, which overlays defaults."""
        patch = _patch(UserPatch, changes)
        with self._fresh() as data:
            now = self._now_iso()
            existing = data.users.get(line_user_id)
            merged: Dict[str, Any] = {
                "line_user_id": line_user_id,
                "display_name": "",
                "role": "staff",
                "is_active": True,
                "joined_at": now,
                "last_seen_at": now,
            }
            if existing is not None:
                merged.update(existing.model_dump(exclude_none=True))
            merged.update(patch)
            user = User.model_validate(merged)

            data.users[line_user_id] = user
            if existing is None:
                data.metadata.total_users += 1
                logger.info("user_created", user_id=line_user_id)
            self.save()
            return user.model_copy(deep=True)

    def get_users(self) -> List[User]:
        with self._fresh() as data:
            return [u.model_copy(deep=True) for u in data.users.values()]

    def get_active_users(self) -> List[User]:
        with self._fresh() as data:
            return [u.model_copy(deep=True) for u in data.users.values() if u.is_active]

    def deactivate_user(self, line_user_id: str) -> bool:
        """Soft delete. Returns False when the user is unknown."""
        with self._fresh() as data:
            user = data.users.get(line_user_id)
            if user is None:
                return False
            user.is_active = False
            user.left_at = self._now_iso()
            self.save()
            logger.info("user_deactivated", user_id=line_user_id)
            return True

    # ----------------------------
    # Shifts
    # ----------------------------

    def get_shifts(self, date: str) -> List[Shift]:
        with self._fresh() as data:
            return [s.model_copy(deep=True) for s in data.shifts.get(date, [])]

    def get_monthly_shifts(self, month: str) -> List[Shift]:
        with self._fresh() as data:
            return [
                s.model_copy(deep=True)
                for date, shifts in data.shifts.items()
                if date.startswith(month)
                for s in shifts
            ]

    def save_shift(self, date: str, shift_data: Payload) -> Shift:
        check_date_key(date)
        shift_in = _coerce(ShiftInput, shift_data)
        with self._fresh() as data:
            self._check_status(None, shift_in.status)
            shift = Shift(
                id=generate_id("shift"),
                created_at=self._now_iso(),
                **shift_in.model_dump(exclude_none=True),
            )
            data.shifts.setdefault(date, []).append(shift)
            data.metadata.total_shifts += 1
            self.save()
            return shift.model_copy(deep=True)

    def update_shift(self, date: str, shift_id: str, changes: Payload) -> Optional[Shift]:
        """Merge ``changes`` into the shift; None when no such shift on ``date``."""
        patch = _patch(ShiftPatch, changes)
        with self._fresh() as data:
            shifts = data.shifts.get(date, [])
            for i, current in enumerate(shifts):
                if current.id != shift_id:
                    continue
                new_status = patch.get("status")
                if new_status is not None and new_status != current.status:
                    self._check_status(current.status, new_status)
                updated = _merge(Shift, current, patch, updated_at=self._now_iso())
                shifts[i] = updated
                self.save()
                return updated.model_copy(deep=True)
            return None

    def delete_shift(self, date: str, shift_id: str) -> bool:
        with self._fresh() as data:
            shifts = data.shifts.get(date)
            if not shifts:
                return False
            remaining = [s for s in shifts if s.id != shift_id]
            if len(remaining) == len(shifts):
                return False
            data.shifts[date] = remaining
            data.metadata.total_shifts = max(0, data.metadata.total_shifts - 1)
            self.save()
            return True

    def find_shifts_by_user(self, line_user_id: str, start: DateLike, end: DateLike) -> List[Shift]:
        """Shifts of one user on every calendar day from ``start`` to ``end`` inclusive."""
        with self._fresh() as data:
            found: List[Shift] = []
            for day in iter_days(start, end):
                for shift in data.shifts.get(day.isoformat(), []):
                    if shift.user_id == line_user_id:
                        found.append(shift.model_copy(deep=True))
            return found

    # ----------------------------
    # Notices
    # ----------------------------

    def get_active_notices(self) -> List[Notice]:
        with self._fresh() as data:
            today = self._today()
            return [n.model_copy(deep=True) for n in data.shared_notices if n.is_visible_on(today)]

    def save_notice(self, notice_data: Payload) -> Notice:
        notice_in = _coerce(NoticeInput, notice_data)
        check_date_key(notice_in.start_date)
        if notice_in.end_date:
            check_date_key(notice_in.end_date)
        with self._fresh() as data:
            notice = Notice(
                id=generate_id("notice"),
                is_active=True,
                created_at=self._now_iso(),
                **notice_in.model_dump(exclude_none=True),
            )
            data.shared_notices.append(notice)
            self.save()
            return notice.model_copy(deep=True)

    # ----------------------------
    # Shift requests
    # ----------------------------

    def save_shift_request(self, month: str, line_user_id: str, request_data: Payload) -> ShiftRequest:
        """Replace the user's request for ``month`` wholesale."""
        check_month_key(month)
        request_in = _coerce(ShiftRequestInput, request_data)
        with self._fresh() as data:
            request = ShiftRequest(
                month=month,
                user_id=line_user_id,
                submitted_at=self._now_iso(),
                status="submitted",
                **request_in.model_dump(exclude_none=True),
            )
            data.shift_requests.setdefault(month, {})[line_user_id] = request
            self.save()
            return request.model_copy(deep=True)

    def get_shift_requests(self, month: str) -> Dict[str, ShiftRequest]:
        with self._fresh() as data:
            return {uid: r.model_copy(deep=True) for uid, r in data.shift_requests.get(month, {}).items()}

    # ----------------------------
    # Daily messages
    # ----------------------------

    def save_daily_message(self, date: str, message_data: Payload) -> DailyMessage:
        check_date_key(date)
        message_in = _coerce(DailyMessageInput, message_data)
        with self._fresh() as data:
            message = DailyMessage(
                id=generate_id("msg"),
                created_at=self._now_iso(),
                **message_in.model_dump(exclude_none=True),
            )
            data.daily_messages.setdefault(date, []).append(message)
            self.save()
            return message.model_copy(deep=True)

    def get_daily_messages(self, date: str) -> List[DailyMessage]:
        with self._fresh() as data:
            return [m.model_copy(deep=True) for m in data.daily_messages.get(date, [])]

    # ----------------------------
    # Substitute requests
    # ----------------------------

    def save_substitute_request(self, request_data: Payload) -> SubstituteRequest:
        request_in = _coerce(SubstituteRequestInput, request_data)
        with self._fresh() as data:
            request = SubstituteRequest(
                id=generate_id("sub"),
                status="pending",
                requested_at=self._now_iso(),
                **request_in.model_dump(exclude_none=True),
            )
            data.substitute_requests.append(request)
            self.save()
            return request.model_copy(deep=True)

    def update_substitute_request(self, request_id: str, changes: Payload) -> Optional[SubstituteRequest]:
        patch = _patch(SubstituteRequestPatch, changes)
        with self._fresh() as data:
            for i, current in enumerate(data.substitute_requests):
                if current.id != request_id:
                    continue
                updated = _merge(SubstituteRequest, current, patch, responded_at=self._now_iso())
                data.substitute_requests[i] = updated
                self.save()
                return updated.model_copy(deep=True)
            return None

    # ----------------------------
    # Settings
    # ----------------------------

    def get_setting(self, key: str) -> Any:
        """Value of one setting (camelCase or snake_case key); None if unknown."""
        name = _setting_field(key)
        with self._fresh() as data:
            if name is not None:
                return copy.deepcopy(getattr(data.settings, name))
            return copy.deepcopy((data.settings.model_extra or {}).get(key))

    def has_setting(self, key: str) -> bool:
        """True for every schema key, set or not, and for extra keys kept from the file."""
        if _setting_field(key) is not None:
            return True
        with self._fresh() as data:
            return key in (data.settings.model_extra or {})

    def set_setting(self, key: str, value: Any) -> None:
        name = _setting_field(key)
        if name is None:
            raise UnknownSettingKey(key)
        with self._fresh() as data:
            merged = data.settings.model_dump()
            merged[name] = value
            data.settings = SystemSettings.model_validate(merged)
            self.save()
            logger.info("setting_updated", key=name)

    def get_settings(self) -> SystemSettings:
        with self._fresh() as data:
            return data.settings.model_copy(deep=True)

    # ----------------------------
    # Positions
    # ----------------------------

    def get_positions(self) -> List[Position]:
        with self._fresh() as data:
            return [p.model_copy(deep=True) for p in sorted(data.positions, key=lambda p: p.sort_order)]

    def get_position_by_id(self, position_id: str) -> Optional[Position]:
        return next((p for p in self.get_positions() if p.id == position_id), None)

    # ----------------------------
    # Derived views
    # ----------------------------

    def enrich_shifts(self, shifts: Iterable[Shift]) -> List[EnrichedShift]:
        """Attach the active user and the position of each shift; missing refs stay None."""
        with self._fresh() as data:
            users = {u.line_user_id: u for u in data.users.values() if u.is_active}
            positions = {p.id: p for p in data.positions}
            enriched: List[EnrichedShift] = []
            for shift in shifts:
                user = users.get(shift.user_id)
                position = positions.get(shift.position_id)
                enriched.append(
                    EnrichedShift.model_validate(
                        {
                            **shift.model_dump(),
                            "user": user.model_copy(deep=True) if user else None,
                            "position": position.model_copy(deep=True) if position else None,
                        }
                    )
                )
            return enriched

    def get_statistics(self) -> StoreStatistics:
        """Counts derived from the snapshot, not from the stored counters."""
        with self._fresh() as data:
            today = self._today()
            return StoreStatistics(
                total_users=sum(1 for u in data.users.values() if u.is_active),
                today_shifts=len(data.shifts.get(today, [])),
                active_notices=sum(1 for n in data.shared_notices if n.is_visible_on(today)),
                last_updated=data.metadata.last_updated_at,
            )
