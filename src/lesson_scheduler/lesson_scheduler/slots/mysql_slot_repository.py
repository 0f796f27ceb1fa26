from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, Iterator, Optional, Sequence

from ..common.datetime_utils import format_date, now_local
from ..core.constants import DEFAULT_LOCK_TIMEOUT_SECONDS
from ..core.enums import AbsenceStatus, AdditionalRequestStatus, SlotStatus, SlotType
from ..database.connection import DatabaseConnection
from ..database.mysql_base import advisory_lock, db_cursor, fetchall, fetchone, normalize_mysql_time
from .model import (
    AbsenceRequest,
    AbsenceSummary,
    AdditionalLessonRequest,
    AdditionalRequestSummary,
    DeleteOutcome,
    LessonSlot,
    LessonSlotDetails,
    NewLessonSlot,
)
from .repository import SlotStore

_SLOT_COLUMNS = """
    s.id, s.student_id, s.teacher_id, s.slot_type, s.slot_date, s.start_time, s.end_time,
    s.meeting_link, s.status, s.original_slot_id, s.notes, s.created_at, s.updated_at
"""

_MUTABLE_COLUMNS = {
    "teacher_id": "teacher_id",
    "slot_type": "slot_type",
    "slot_date": "slot_date",
    "start_time": "start_time",
    "end_time": "end_time",
    "meeting_link": "meeting_link",
    "notes": "notes",
}


def _slot_from_row(r: Dict[str, Any]) -> LessonSlot:
    return LessonSlot(
        slot_id=str(r["id"]),
        student_id=str(r["student_id"]),
        teacher_id=r.get("teacher_id"),
        slot_type=SlotType(r["slot_type"]),
        slot_date=r["slot_date"],
        start_time=normalize_mysql_time(r["start_time"]),
        end_time=normalize_mysql_time(r["end_time"]),
        status=SlotStatus(r["status"]),
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        meeting_link=r.get("meeting_link"),
        original_slot_id=r.get("original_slot_id"),
        notes=r.get("notes"),
    )


def _additional_from_row(r: Dict[str, Any]) -> AdditionalLessonRequest:
    return AdditionalLessonRequest(
        request_id=str(r["id"]),
        student_id=str(r["student_id"]),
        requested_date=r["requested_date"],
        requested_start_time=normalize_mysql_time(r["requested_start_time"]),
        requested_end_time=normalize_mysql_time(r["requested_end_time"]),
        request_timestamp=r["request_timestamp"],
        status=AdditionalRequestStatus(r["status"]),
        teacher_id=r.get("teacher_id"),
        notes=r.get("notes"),
        admin_notes=r.get("admin_notes"),
        created_lesson_slot_id=r.get("created_lesson_slot_id"),
    )


class MySQLSlotRepository(SlotStore):
    def __init__(self, conn_factory: DatabaseConnection, *, lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self._conn_factory = conn_factory
        self._lock_timeout_seconds = int(lock_timeout_seconds)

    # -------- helpers (run on an open cursor) --------
    @staticmethod
    def _select_slot(cur, slot_id: str, *, for_update: bool = False) -> Optional[LessonSlot]:
        cur.execute(
            f"SELECT {_SLOT_COLUMNS} FROM lesson_slots s WHERE s.id=%s" + (" FOR UPDATE" if for_update else ""),
            (slot_id,),
        )
        r = fetchone(cur)
        return _slot_from_row(r) if r else None

    @staticmethod
    def _insert_slot(cur, new_slot: NewLessonSlot) -> str:
        slot_id = str(uuid.uuid4())
        now = now_local()
        cur.execute(
            """
            INSERT INTO lesson_slots(
                id, student_id, teacher_id, slot_type, slot_date, start_time, end_time,
                meeting_link, status, original_slot_id, notes, created_at, updated_at
            )
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
            """,
            (
                slot_id,
                new_slot.student_id,
                new_slot.teacher_id,
                new_slot.slot_type.value,
                new_slot.slot_date,
                new_slot.start_time,
                new_slot.end_time,
                new_slot.meeting_link,
                new_slot.status.value,
                new_slot.original_slot_id,
                new_slot.notes,
                now,
                now,
            ),
        )
        return slot_id

    @staticmethod
    def _cas_status(cur, slot_id: str, status: SlotStatus, expected: Iterable[SlotStatus]) -> bool:
        expected_values = [s.value for s in expected]
        placeholders = ",".join(["%s"] * len(expected_values))
        cur.execute(
            f"""
            UPDATE lesson_slots
            SET status=%s, updated_at=%s
            WHERE id=%s AND status IN ({placeholders})
            """,
            tuple([status.value, now_local(), slot_id] + expected_values),
        )
        return cur.rowcount > 0

    # -------- slots --------
    def get_slot(self, *, slot_id: str) -> Optional[LessonSlot]:
        with db_cursor(self._conn_factory) as (_, cur):
            return self._select_slot(cur, slot_id)

    def insert_slot(self, *, new_slot: NewLessonSlot) -> LessonSlot:
        with db_cursor(self._conn_factory) as (_, cur):
            slot_id = self._insert_slot(cur, new_slot)
            return self._select_slot(cur, slot_id)

    def update_slot(self, *, slot_id: str, fields: Dict[str, Any]) -> Optional[LessonSlot]:
        sets: list[str] = []
        params: list[object] = []
        for key, value in fields.items():
            column = _MUTABLE_COLUMNS[key]
            sets.append(f"{column}=%s")
            params.append(value.value if isinstance(value, SlotType) else value)
        sets.append("updated_at=%s")
        params.append(now_local())

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"UPDATE lesson_slots SET {', '.join(sets)} WHERE id=%s",
                tuple(params + [slot_id]),
            )
            return self._select_slot(cur, slot_id)

    def set_status(
        self,
        *,
        slot_id: str,
        status: SlotStatus,
        expected: Iterable[SlotStatus],
    ) -> Optional[LessonSlot]:
        with db_cursor(self._conn_factory) as (_, cur):
            if not self._cas_status(cur, slot_id, status, expected):
                return None
            return self._select_slot(cur, slot_id)

    def list_active_for_teacher(self, *, teacher_id: str, slot_date: date) -> Sequence[LessonSlot]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_SLOT_COLUMNS}
                FROM lesson_slots s
                WHERE s.teacher_id=%s AND s.slot_date=%s AND s.status=%s
                ORDER BY s.start_time ASC
                """,
                (teacher_id, slot_date, SlotStatus.AS_SCHEDULED.value),
            )
            return [_slot_from_row(r) for r in fetchall(cur)]

    def list_for_student_range(
        self,
        *,
        student_id: str,
        start_date: date,
        end_date: date,
    ) -> Sequence[LessonSlotDetails]:
        # First absence / additional request per slot, same as the calendar view shows.
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT
                    {_SLOT_COLUMNS},
                    st.full_name AS student_name,
                    t.full_name AS teacher_name,
                    (SELECT ar.id FROM absence_requests ar
                     WHERE ar.lesson_slot_id = s.id
                     ORDER BY ar.request_timestamp ASC LIMIT 1) AS absence_id
                FROM lesson_slots s
                JOIN students st ON st.id = s.student_id
                LEFT JOIN teachers t ON t.id = s.teacher_id
                WHERE s.student_id=%s AND s.slot_date BETWEEN %s AND %s
                ORDER BY s.slot_date ASC, s.start_time ASC
                """,
                (student_id, start_date, end_date),
            )
            rows = fetchall(cur)
            if not rows:
                return []

            slot_ids = [str(r["id"]) for r in rows]
            placeholders = ",".join(["%s"] * len(slot_ids))

            absences: dict[str, AbsenceSummary] = {}
            absence_ids = [r["absence_id"] for r in rows if r.get("absence_id")]
            if absence_ids:
                cur.execute(
                    f"""
                    SELECT id, lesson_slot_id, status, reason
                    FROM absence_requests
                    WHERE id IN ({",".join(["%s"] * len(absence_ids))})
                    """,
                    tuple(absence_ids),
                )
                for a in fetchall(cur):
                    absences[str(a["lesson_slot_id"])] = AbsenceSummary(
                        request_id=str(a["id"]),
                        status=AbsenceStatus(a["status"]),
                        reason=a["reason"],
                    )

            additionals: dict[str, AdditionalRequestSummary] = {}
            cur.execute(
                f"""
                SELECT id, created_lesson_slot_id, status
                FROM additional_lesson_requests
                WHERE created_lesson_slot_id IN ({placeholders})
                ORDER BY request_timestamp ASC
                """,
                tuple(slot_ids),
            )
            for a in fetchall(cur):
                additionals.setdefault(
                    str(a["created_lesson_slot_id"]),
                    AdditionalRequestSummary(request_id=str(a["id"]), status=AdditionalRequestStatus(a["status"])),
                )

            out: list[LessonSlotDetails] = []
            for r in rows:
                slot = _slot_from_row(r)
                out.append(
                    LessonSlotDetails(
                        slot=slot,
                        student_name=r.get("student_name") or "Unknown",
                        teacher_name=r.get("teacher_name"),
                        absence_request=absences.get(slot.slot_id),
                        additional_request=additionals.get(slot.slot_id),
                    )
                )
            return out

    def get_additional_request(self, *, request_id: str) -> Optional[AdditionalLessonRequest]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT id, student_id, requested_date, requested_start_time, requested_end_time,
                       teacher_id, notes, request_timestamp, status, admin_notes, created_lesson_slot_id
                FROM additional_lesson_requests
                WHERE id=%s
                """,
                (request_id,),
            )
            r = fetchone(cur)
            return _additional_from_row(r) if r else None

    # -------- units of work --------
    def mark_absent(self, *, slot_id: str, reason: str) -> Optional[AbsenceRequest]:
        with db_cursor(self._conn_factory) as (conn, cur):
            slot = self._select_slot(cur, slot_id, for_update=True)
            if slot is None or not self._cas_status(cur, slot_id, SlotStatus.ABSENT, [SlotStatus.AS_SCHEDULED]):
                conn.rollback()
                return None

            request_id = str(uuid.uuid4())
            requested_at = now_local()
            cur.execute(
                """
                INSERT INTO absence_requests(id, lesson_slot_id, student_id, reason, request_timestamp, status)
                VALUES(%s,%s,%s,%s,%s,%s)
                """,
                (request_id, slot_id, slot.student_id, reason, requested_at, AbsenceStatus.UNRESCHEDULED.value),
            )
            return AbsenceRequest(
                request_id=request_id,
                lesson_slot_id=slot_id,
                student_id=slot.student_id,
                reason=reason,
                request_timestamp=requested_at,
                status=AbsenceStatus.UNRESCHEDULED,
            )

    def reschedule(
        self,
        *,
        original_slot_id: str,
        expected: Iterable[SlotStatus],
        makeup: NewLessonSlot,
        absence_admin_notes: str,
    ) -> Optional[LessonSlot]:
        with db_cursor(self._conn_factory) as (conn, cur):
            if not self._cas_status(cur, original_slot_id, SlotStatus.RESCHEDULED_SOURCE, list(expected)):
                conn.rollback()
                return None

            makeup_id = self._insert_slot(cur, makeup)

            cur.execute(
                """
                UPDATE absence_requests
                SET status=%s, admin_notes=%s
                WHERE lesson_slot_id=%s
                """,
                (AbsenceStatus.RESCHEDULED.value, absence_admin_notes, original_slot_id),
            )
            return self._select_slot(cur, makeup_id)

    def delete_slot_cascade(self, *, slot_id: str) -> Optional[DeleteOutcome]:
        with db_cursor(self._conn_factory) as (conn, cur):
            slot = self._select_slot(cur, slot_id, for_update=True)
            if slot is None:
                conn.rollback()
                return None

            cur.execute("SELECT id FROM absence_requests WHERE lesson_slot_id=%s", (slot_id,))
            absence_ids = tuple(str(r["id"]) for r in fetchall(cur))
            cur.execute("DELETE FROM absence_requests WHERE lesson_slot_id=%s", (slot_id,))

            cur.execute("SELECT id FROM additional_lesson_requests WHERE created_lesson_slot_id=%s", (slot_id,))
            additional_ids = tuple(str(r["id"]) for r in fetchall(cur))
            cur.execute("DELETE FROM additional_lesson_requests WHERE created_lesson_slot_id=%s", (slot_id,))

            cur.execute("SELECT id FROM lesson_slots WHERE original_slot_id=%s", (slot_id,))
            makeup_ids = tuple(str(r["id"]) for r in fetchall(cur))
            if makeup_ids:
                cur.execute(
                    "UPDATE lesson_slots SET original_slot_id=NULL, updated_at=%s WHERE original_slot_id=%s",
                    (now_local(), slot_id),
                )

            cur.execute("DELETE FROM lesson_slots WHERE id=%s", (slot_id,))
            return DeleteOutcome(
                slot_id=slot_id,
                absence_request_ids=absence_ids,
                additional_request_ids=additional_ids,
                unlinked_makeup_ids=makeup_ids,
            )

    def approve_additional_request(
        self,
        *,
        request_id: str,
        new_slot: NewLessonSlot,
        admin_notes: str,
    ) -> Optional[LessonSlot]:
        with db_cursor(self._conn_factory) as (conn, cur):
            cur.execute(
                "SELECT status FROM additional_lesson_requests WHERE id=%s FOR UPDATE",
                (request_id,),
            )
            r = fetchone(cur)
            if not r or r["status"] != AdditionalRequestStatus.PENDING.value:
                conn.rollback()
                return None

            slot_id = self._insert_slot(cur, new_slot)
            cur.execute(
                """
                UPDATE additional_lesson_requests
                SET status=%s, admin_notes=%s, created_lesson_slot_id=%s
                WHERE id=%s AND status=%s
                """,
                (
                    AdditionalRequestStatus.APPROVED.value,
                    admin_notes,
                    slot_id,
                    request_id,
                    AdditionalRequestStatus.PENDING.value,
                ),
            )
            return self._select_slot(cur, slot_id)

    # -------- concurrency --------
    @contextmanager
    def teacher_day_lock(self, *, teacher_id: str, slot_date: date) -> Iterator[None]:
        # MySQL caps lock names at 64 characters: "tdl:" + 36-char UUID + ":" + date fits.
        name = f"tdl:{teacher_id}:{format_date(slot_date)}"
        with advisory_lock(self._conn_factory, name[:64], timeout_seconds=self._lock_timeout_seconds):
            yield
