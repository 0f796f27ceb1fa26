from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, time
from typing import Any, Iterator, Optional, Union

from ..common.datetime_utils import format_date, format_hhmm, parse_hhmm, parse_iso_date
from ..common.validators import optional_text, require_meeting_link, require_non_empty, require_time_order
from ..core.constants import (
    DEFAULT_APPROVAL_NOTE,
    TABLE_ABSENCE_REQUESTS,
    TABLE_ADDITIONAL_REQUESTS,
    TABLE_LESSON_SLOTS,
)
from ..core.enums import AdditionalRequestStatus, ChangeKind, SlotStatus, SlotType
from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..notifications.channel import ChangeChannel, ChangeEvent
from .conflicts import ConflictChecker
from .model import AbsenceRequest, DeleteOutcome, LessonSlot, NewLessonSlot
from .repository import SlotStore
from .transitions import ALLOWED_SOURCES, require_transition

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = frozenset(
    {"teacher_id", "slot_type", "slot_date", "start_time", "end_time", "meeting_link", "notes"}
)

DateLike = Union[str, date]
TimeLike = Union[str, time]


def _coerce_slot_type(value: Union[str, SlotType]) -> SlotType:
    if isinstance(value, SlotType):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Slot type must be a string, got {type(value).__name__}")
    try:
        return SlotType(value.strip().upper())
    except ValueError:
        allowed = ", ".join(t.value for t in SlotType)
        raise ValidationError(f"Unknown slot type {value!r} (expected one of {allowed})")


class SlotLifecycleManager:
    """Write side of the schedule: owns every slot status transition.

    Conflict checking is opt-in per call (``enforce_no_conflict``). When enabled the
    check and the write run under a per-teacher-per-date advisory lock so two callers
    cannot both pass the check and then double-book.
    """

    def __init__(self, slots: SlotStore, conflicts: ConflictChecker, channel: ChangeChannel):
        self._slots = slots
        self._conflicts = conflicts
        self._channel = channel

    # -------- helpers --------
    def _require_slot(self, slot_id: str) -> LessonSlot:
        slot_id = require_non_empty(slot_id, "Slot id")
        slot = self._slots.get_slot(slot_id=slot_id)
        if slot is None:
            raise NotFoundError(f"Lesson slot {slot_id} not found")
        return slot

    def _publish(self, table: str, kind: ChangeKind, row_id: Optional[str] = None) -> None:
        self._channel.publish(ChangeEvent(table=table, kind=kind, row_id=row_id))

    @contextmanager
    def _booking_guard(
        self,
        *,
        enforce: bool,
        teacher_id: Optional[str],
        slot_date: date,
        start_time: time,
        end_time: time,
        exclude_slot_id: Optional[str] = None,
    ) -> Iterator[None]:
        if not enforce or not teacher_id:
            yield
            return

        with self._slots.teacher_day_lock(teacher_id=teacher_id, slot_date=slot_date):
            self._conflicts.ensure_no_conflict(
                teacher_id=teacher_id,
                slot_date=slot_date,
                start_time=start_time,
                end_time=end_time,
                exclude_slot_id=exclude_slot_id,
            )
            yield

    def _raise_lost_race(self, operation: str, slot_id: str) -> None:
        # The compare-and-set in the store failed: someone changed the slot in between.
        current = self._require_slot(slot_id)
        require_transition(operation, current.status)
        raise InvalidStateError(f"Slot {slot_id} changed concurrently, please retry")

    # -------- operations --------
    def create(
        self,
        *,
        student_id: str,
        slot_type: Union[str, SlotType],
        slot_date: DateLike,
        start_time: TimeLike,
        end_time: TimeLike,
        teacher_id: Optional[str] = None,
        meeting_link: Optional[str] = None,
        notes: Optional[str] = None,
        enforce_no_conflict: bool = False,
    ) -> LessonSlot:
        student_id = require_non_empty(student_id, "Student")
        slot_type = _coerce_slot_type(slot_type)
        if slot_type == SlotType.MAKEUP:
            raise ValidationError("Makeup slots are created by rescheduling an existing slot")

        new_slot = NewLessonSlot(
            student_id=student_id,
            teacher_id=optional_text(teacher_id, "Teacher"),
            slot_type=slot_type,
            slot_date=parse_iso_date(slot_date),
            start_time=parse_hhmm(start_time),
            end_time=parse_hhmm(end_time),
            meeting_link=require_meeting_link(meeting_link),
            notes=optional_text(notes, "Notes"),
        )
        require_time_order(new_slot.start_time, new_slot.end_time)

        with self._booking_guard(
            enforce=enforce_no_conflict,
            teacher_id=new_slot.teacher_id,
            slot_date=new_slot.slot_date,
            start_time=new_slot.start_time,
            end_time=new_slot.end_time,
        ):
            slot = self._slots.insert_slot(new_slot=new_slot)

        logger.info(
            "Created %s slot %s for student %s on %s %s-%s",
            slot.slot_type.value,
            slot.slot_id,
            slot.student_id,
            format_date(slot.slot_date),
            format_hhmm(slot.start_time),
            format_hhmm(slot.end_time),
        )
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.INSERT, slot.slot_id)
        return slot

    def mark_absent(self, *, slot_id: str, reason: str) -> AbsenceRequest:
        reason = require_non_empty(reason, "Reason")
        slot = self._require_slot(slot_id)
        require_transition("mark_absent", slot.status)

        absence = self._slots.mark_absent(slot_id=slot.slot_id, reason=reason)
        if absence is None:
            self._raise_lost_race("mark_absent", slot.slot_id)

        logger.info("Slot %s marked absent (absence request %s)", slot.slot_id, absence.request_id)
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.UPDATE, slot.slot_id)
        self._publish(TABLE_ABSENCE_REQUESTS, ChangeKind.INSERT, absence.request_id)
        return absence

    def reschedule(
        self,
        *,
        original_slot_id: str,
        new_date: DateLike,
        new_start_time: TimeLike,
        new_end_time: TimeLike,
        teacher_id: Optional[str] = None,
        meeting_link: Optional[str] = None,
        notes: Optional[str] = None,
        enforce_no_conflict: bool = False,
    ) -> LessonSlot:
        """Replace a slot with a MAKEUP slot at a new time.

        The original becomes RESCHEDULED_SOURCE, the makeup is inserted with a link
        back to it, and an absence request on the original is marked RESCHEDULED.
        All three writes commit together or not at all.
        """

        original = self._require_slot(original_slot_id)
        require_transition("reschedule", original.status)

        slot_date = parse_iso_date(new_date)
        start_t = parse_hhmm(new_start_time)
        end_t = parse_hhmm(new_end_time)
        require_time_order(start_t, end_t)

        link = require_meeting_link(meeting_link) or original.meeting_link
        makeup = NewLessonSlot(
            student_id=original.student_id,
            teacher_id=optional_text(teacher_id, "Teacher") or original.teacher_id,
            slot_type=SlotType.MAKEUP,
            slot_date=slot_date,
            start_time=start_t,
            end_time=end_t,
            meeting_link=link,
            notes=optional_text(notes, "Notes")
            or f"Makeup for {format_date(original.slot_date)} {format_hhmm(original.start_time)} lesson",
            original_slot_id=original.slot_id,
        )
        admin_notes = f"Makeup lesson created: {format_date(slot_date)} {format_hhmm(start_t)}"

        with self._booking_guard(
            enforce=enforce_no_conflict,
            teacher_id=makeup.teacher_id,
            slot_date=slot_date,
            start_time=start_t,
            end_time=end_t,
            exclude_slot_id=original.slot_id,
        ):
            created = self._slots.reschedule(
                original_slot_id=original.slot_id,
                expected=ALLOWED_SOURCES["reschedule"],
                makeup=makeup,
                absence_admin_notes=admin_notes,
            )
        if created is None:
            self._raise_lost_race("reschedule", original.slot_id)

        logger.info(
            "Rescheduled slot %s (%s) to makeup %s on %s %s",
            original.slot_id,
            original.status.value,
            created.slot_id,
            format_date(created.slot_date),
            format_hhmm(created.start_time),
        )
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.UPDATE, original.slot_id)
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.INSERT, created.slot_id)
        self._publish(TABLE_ABSENCE_REQUESTS, ChangeKind.UPDATE)
        return created

    def update(self, *, slot_id: str, enforce_no_conflict: bool = False, **fields: Any) -> LessonSlot:
        unknown = sorted(set(fields) - MUTABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Field(s) cannot be updated: {', '.join(unknown)}")

        current = self._require_slot(slot_id)

        patch: dict[str, Any] = {}
        if "teacher_id" in fields:
            patch["teacher_id"] = optional_text(fields["teacher_id"], "Teacher")
        if "slot_type" in fields:
            new_type = _coerce_slot_type(fields["slot_type"])
            if (new_type == SlotType.MAKEUP) != (current.slot_type == SlotType.MAKEUP):
                raise ValidationError("Slot type cannot be changed to or from MAKEUP")
            patch["slot_type"] = new_type
        if "slot_date" in fields:
            patch["slot_date"] = parse_iso_date(fields["slot_date"])
        if "start_time" in fields:
            patch["start_time"] = parse_hhmm(fields["start_time"])
        if "end_time" in fields:
            patch["end_time"] = parse_hhmm(fields["end_time"])
        if "meeting_link" in fields:
            patch["meeting_link"] = require_meeting_link(fields["meeting_link"])
        if "notes" in fields:
            patch["notes"] = optional_text(fields["notes"], "Notes")

        teacher = patch.get("teacher_id", current.teacher_id)
        slot_date = patch.get("slot_date", current.slot_date)
        start_t = patch.get("start_time", current.start_time)
        end_t = patch.get("end_time", current.end_time)
        require_time_order(start_t, end_t)

        if not patch:
            return current

        with self._booking_guard(
            enforce=enforce_no_conflict and current.is_active,
            teacher_id=teacher,
            slot_date=slot_date,
            start_time=start_t,
            end_time=end_t,
            exclude_slot_id=current.slot_id,
        ):
            updated = self._slots.update_slot(slot_id=current.slot_id, fields=patch)
        if updated is None:
            raise NotFoundError(f"Lesson slot {current.slot_id} not found")

        logger.info("Updated slot %s: %s", updated.slot_id, ", ".join(sorted(patch)))
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.UPDATE, updated.slot_id)
        return updated

    def delete(self, *, slot_id: str) -> DeleteOutcome:
        slot_id = require_non_empty(slot_id, "Slot id")
        outcome = self._slots.delete_slot_cascade(slot_id=slot_id)
        if outcome is None:
            raise NotFoundError(f"Lesson slot {slot_id} not found")

        logger.info(
            "Deleted slot %s with %d absence and %d additional request(s)",
            slot_id,
            len(outcome.absence_request_ids),
            len(outcome.additional_request_ids),
        )
        for request_id in outcome.absence_request_ids:
            self._publish(TABLE_ABSENCE_REQUESTS, ChangeKind.DELETE, request_id)
        for request_id in outcome.additional_request_ids:
            self._publish(TABLE_ADDITIONAL_REQUESTS, ChangeKind.DELETE, request_id)
        for makeup_id in outcome.unlinked_makeup_ids:
            self._publish(TABLE_LESSON_SLOTS, ChangeKind.UPDATE, makeup_id)
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.DELETE, slot_id)
        return outcome

    def mark_completed(self, *, slot_id: str) -> LessonSlot:
        slot = self._require_slot(slot_id)
        target = require_transition("mark_completed", slot.status)

        updated = self._slots.set_status(
            slot_id=slot.slot_id,
            status=target,
            expected=ALLOWED_SOURCES["mark_completed"],
        )
        if updated is None:
            self._raise_lost_race("mark_completed", slot.slot_id)

        logger.info("Slot %s marked completed", slot.slot_id)
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.UPDATE, slot.slot_id)
        return updated

    def approve_additional_request(
        self,
        *,
        request_id: str,
        teacher_id: Optional[str] = None,
        admin_notes: Optional[str] = None,
        enforce_no_conflict: bool = False,
    ) -> LessonSlot:
        request_id = require_non_empty(request_id, "Request id")
        req = self._slots.get_additional_request(request_id=request_id)
        if req is None:
            raise NotFoundError(f"Additional lesson request {request_id} not found")
        if req.status != AdditionalRequestStatus.PENDING:
            raise InvalidStateError(f"Additional lesson request {request_id} is already {req.status.value}")

        require_time_order(req.requested_start_time, req.requested_end_time)
        new_slot = NewLessonSlot(
            student_id=req.student_id,
            teacher_id=optional_text(teacher_id, "Teacher") or req.teacher_id,
            slot_type=SlotType.ADDITIONAL,
            slot_date=req.requested_date,
            start_time=req.requested_start_time,
            end_time=req.requested_end_time,
            notes=req.notes or "Created from additional lesson request",
            status=SlotStatus.AS_SCHEDULED,
        )

        with self._booking_guard(
            enforce=enforce_no_conflict,
            teacher_id=new_slot.teacher_id,
            slot_date=new_slot.slot_date,
            start_time=new_slot.start_time,
            end_time=new_slot.end_time,
        ):
            slot = self._slots.approve_additional_request(
                request_id=request_id,
                new_slot=new_slot,
                admin_notes=optional_text(admin_notes, "Admin notes") or DEFAULT_APPROVAL_NOTE,
            )
        if slot is None:
            raise InvalidStateError(f"Additional lesson request {request_id} was already processed")

        logger.info("Approved additional lesson request %s as slot %s", request_id, slot.slot_id)
        self._publish(TABLE_LESSON_SLOTS, ChangeKind.INSERT, slot.slot_id)
        self._publish(TABLE_ADDITIONAL_REQUESTS, ChangeKind.UPDATE, request_id)
        return slot
