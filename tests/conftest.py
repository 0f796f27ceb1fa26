from __future__ import annotations

import itertools
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Optional

import pytest

from src.lesson_scheduler.lesson_scheduler.core.enums import (
    AbsenceStatus,
    AdditionalRequestStatus,
    SlotStatus,
)
from src.lesson_scheduler.lesson_scheduler.core.exceptions import PersistenceError
from src.lesson_scheduler.lesson_scheduler.notifications.channel import ChangeChannel
from src.lesson_scheduler.lesson_scheduler.slots.conflicts import ConflictChecker
from src.lesson_scheduler.lesson_scheduler.slots.model import (
    AbsenceRequest,
    AbsenceSummary,
    AdditionalLessonRequest,
    AdditionalRequestSummary,
    DeleteOutcome,
    LessonSlot,
    LessonSlotDetails,
    NewLessonSlot,
)
from src.lesson_scheduler.lesson_scheduler.slots.queries import ScheduleQueryService
from src.lesson_scheduler.lesson_scheduler.slots.service import SlotLifecycleManager


class InMemorySlotStore:
    """SlotStore backed by dicts.

    Units of work snapshot the tables and restore them on any exception, so
    ``fail_on`` can inject a failure at a named step and prove nothing leaked.
    """

    def __init__(self):
        self.slots: dict[str, LessonSlot] = {}
        self.absences: dict[str, AbsenceRequest] = {}
        self.additionals: dict[str, AdditionalLessonRequest] = {}
        self.students: dict[str, str] = {}
        self.teachers: dict[str, str] = {}
        self.fail_on: set[str] = set()
        self.read_failures = 0
        self.lock_calls: list[tuple[str, date]] = []
        self._lock = threading.RLock()
        self._day_locks: dict[tuple[str, date], threading.Lock] = {}
        self._ticks = itertools.count()

    # -------- helpers --------
    def _now(self) -> datetime:
        return datetime(2024, 6, 1, 9, 0, 0) + timedelta(seconds=next(self._ticks))

    def _step(self, name: str) -> None:
        if name in self.fail_on:
            raise PersistenceError(f"injected failure at {name}")

    @contextmanager
    def _transaction(self):
        with self._lock:
            snapshot = (dict(self.slots), dict(self.absences), dict(self.additionals))
            try:
                yield
            except Exception:
                self.slots, self.absences, self.additionals = snapshot
                raise

    def _insert(self, new_slot: NewLessonSlot) -> LessonSlot:
        now = self._now()
        slot = LessonSlot(
            slot_id=str(uuid.uuid4()),
            student_id=new_slot.student_id,
            teacher_id=new_slot.teacher_id,
            slot_type=new_slot.slot_type,
            slot_date=new_slot.slot_date,
            start_time=new_slot.start_time,
            end_time=new_slot.end_time,
            status=new_slot.status,
            created_at=now,
            updated_at=now,
            meeting_link=new_slot.meeting_link,
            original_slot_id=new_slot.original_slot_id,
            notes=new_slot.notes,
        )
        self.slots[slot.slot_id] = slot
        return slot

    def add_additional_request(
        self,
        *,
        student_id: str,
        requested_date: date,
        start: time,
        end: time,
        teacher_id: Optional[str] = None,
        notes: Optional[str] = None,
        status: AdditionalRequestStatus = AdditionalRequestStatus.PENDING,
        created_lesson_slot_id: Optional[str] = None,
    ) -> AdditionalLessonRequest:
        req = AdditionalLessonRequest(
            request_id=str(uuid.uuid4()),
            student_id=student_id,
            requested_date=requested_date,
            requested_start_time=start,
            requested_end_time=end,
            request_timestamp=self._now(),
            status=status,
            teacher_id=teacher_id,
            notes=notes,
            created_lesson_slot_id=created_lesson_slot_id,
        )
        self.additionals[req.request_id] = req
        return req

    # -------- slots --------
    def get_slot(self, *, slot_id):
        return self.slots.get(slot_id)

    def insert_slot(self, *, new_slot):
        with self._transaction():
            self._step("insert_slot")
            return self._insert(new_slot)

    def update_slot(self, *, slot_id, fields):
        with self._transaction():
            current = self.slots.get(slot_id)
            if current is None:
                return None
            self._step("update_slot")
            updated = replace(current, updated_at=self._now(), **fields)
            self.slots[slot_id] = updated
            return updated

    def set_status(self, *, slot_id, status, expected):
        with self._transaction():
            current = self.slots.get(slot_id)
            if current is None or current.status not in set(expected):
                return None
            updated = replace(current, status=status, updated_at=self._now())
            self.slots[slot_id] = updated
            return updated

    def list_active_for_teacher(self, *, teacher_id, slot_date):
        rows = [
            s
            for s in self.slots.values()
            if s.teacher_id == teacher_id and s.slot_date == slot_date and s.status == SlotStatus.AS_SCHEDULED
        ]
        return sorted(rows, key=lambda s: s.start_time)

    def list_for_student_range(self, *, student_id, start_date, end_date):
        if self.read_failures > 0:
            self.read_failures -= 1
            raise PersistenceError("transient read failure")

        out = []
        for s in self.slots.values():
            if s.student_id != student_id or not (start_date <= s.slot_date <= end_date):
                continue
            absence = self._first_absence(s.slot_id)
            additional = self._additionals_for(s.slot_id)
            out.append(
                LessonSlotDetails(
                    slot=s,
                    student_name=self.students.get(s.student_id, "Unknown"),
                    teacher_name=self.teachers.get(s.teacher_id) if s.teacher_id else None,
                    absence_request=(
                        AbsenceSummary(request_id=absence.request_id, status=absence.status, reason=absence.reason)
                        if absence
                        else None
                    ),
                    additional_request=(
                        AdditionalRequestSummary(request_id=additional[0].request_id, status=additional[0].status)
                        if additional
                        else None
                    ),
                )
            )
        # Deliberately unordered: the query service owns the ordering.
        return list(reversed(out))

    # -------- requests --------
    def _first_absence(self, slot_id):
        rows = sorted(
            (a for a in self.absences.values() if a.lesson_slot_id == slot_id),
            key=lambda a: a.request_timestamp,
        )
        return rows[0] if rows else None

    def _additionals_for(self, slot_id):
        return [a for a in self.additionals.values() if a.created_lesson_slot_id == slot_id]

    def get_additional_request(self, *, request_id):
        return self.additionals.get(request_id)

    # -------- units of work --------
    def mark_absent(self, *, slot_id, reason):
        with self._transaction():
            current = self.slots.get(slot_id)
            if current is None or current.status != SlotStatus.AS_SCHEDULED:
                return None
            self.slots[slot_id] = replace(current, status=SlotStatus.ABSENT, updated_at=self._now())
            self._step("insert_absence")
            absence = AbsenceRequest(
                request_id=str(uuid.uuid4()),
                lesson_slot_id=slot_id,
                student_id=current.student_id,
                reason=reason,
                request_timestamp=self._now(),
                status=AbsenceStatus.UNRESCHEDULED,
            )
            self.absences[absence.request_id] = absence
            return absence

    def reschedule(self, *, original_slot_id, expected, makeup, absence_admin_notes):
        with self._transaction():
            current = self.slots.get(original_slot_id)
            if current is None or current.status not in set(expected):
                return None
            self.slots[original_slot_id] = replace(
                current, status=SlotStatus.RESCHEDULED_SOURCE, updated_at=self._now()
            )
            self._step("insert_makeup")
            created = self._insert(makeup)
            self._step("settle_absence")
            for request_id, a in list(self.absences.items()):
                if a.lesson_slot_id == original_slot_id:
                    self.absences[request_id] = replace(
                        a, status=AbsenceStatus.RESCHEDULED, admin_notes=absence_admin_notes
                    )
            return created

    def delete_slot_cascade(self, *, slot_id):
        with self._transaction():
            slot = self.slots.get(slot_id)
            if slot is None:
                return None

            absence_ids = tuple(k for k, a in self.absences.items() if a.lesson_slot_id == slot_id)
            for k in absence_ids:
                del self.absences[k]
            additional_ids = tuple(k for k, a in self.additionals.items() if a.created_lesson_slot_id == slot_id)
            for k in additional_ids:
                del self.additionals[k]
            self._step("delete_dependents")

            makeup_ids = tuple(k for k, s in self.slots.items() if s.original_slot_id == slot_id)
            for k in makeup_ids:
                self.slots[k] = replace(self.slots[k], original_slot_id=None, updated_at=self._now())

            self._step("delete_slot")
            del self.slots[slot_id]
            return DeleteOutcome(
                slot_id=slot_id,
                absence_request_ids=absence_ids,
                additional_request_ids=additional_ids,
                unlinked_makeup_ids=makeup_ids,
            )

    def approve_additional_request(self, *, request_id, new_slot, admin_notes):
        with self._transaction():
            req = self.additionals.get(request_id)
            if req is None or req.status != AdditionalRequestStatus.PENDING:
                return None
            created = self._insert(new_slot)
            self._step("approve_request")
            self.additionals[request_id] = replace(
                req,
                status=AdditionalRequestStatus.APPROVED,
                admin_notes=admin_notes,
                created_lesson_slot_id=created.slot_id,
            )
            return created

    # -------- concurrency --------
    @contextmanager
    def teacher_day_lock(self, *, teacher_id, slot_date):
        with self._lock:
            day_lock = self._day_locks.setdefault((teacher_id, slot_date), threading.Lock())
            self.lock_calls.append((teacher_id, slot_date))
        with day_lock:
            yield


class RecordingSubscriber:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def tables(self):
        return {e.table for e in self.events}


@pytest.fixture
def store() -> InMemorySlotStore:
    s = InMemorySlotStore()
    s.students.update({"S1": "Aoi Tanaka", "S2": "Minh Nguyen"})
    s.teachers.update({"Tr1": "Haruka Sato", "Tr2": "Linh Tran"})
    return s


@pytest.fixture
def channel() -> ChangeChannel:
    return ChangeChannel()


@pytest.fixture
def checker(store) -> ConflictChecker:
    return ConflictChecker(store)


@pytest.fixture
def manager(store, checker, channel) -> SlotLifecycleManager:
    return SlotLifecycleManager(store, checker, channel)


@pytest.fixture
def queries(store, channel) -> ScheduleQueryService:
    return ScheduleQueryService(store, channel, read_attempts=3)


@pytest.fixture
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
def make_slot(manager):
    def _make(
        *,
        student_id="S1",
        teacher_id="Tr1",
        slot_type="REGULAR",
        slot_date="2024-06-03",
        start="16:00",
        end="17:00",
        **kwargs,
    ) -> LessonSlot:
        return manager.create(
            student_id=student_id,
            teacher_id=teacher_id,
            slot_type=slot_type,
            slot_date=slot_date,
            start_time=start,
            end_time=end,
            **kwargs,
        )

    return _make
