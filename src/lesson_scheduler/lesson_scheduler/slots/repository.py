from __future__ import annotations

from datetime import date
from typing import Any, ContextManager, Dict, Iterable, Optional, Protocol, Sequence

from ..core.enums import SlotStatus
from .model import (
    AbsenceRequest,
    AdditionalLessonRequest,
    DeleteOutcome,
    LessonSlot,
    LessonSlotDetails,
    NewLessonSlot,
)


class SlotStore(Protocol):
    """Persistence for lesson slots and the requests that reference them.

    No business rules live here. Methods that touch more than one row run in a
    single transaction: either every write lands or none does.
    """

    # Slots
    def get_slot(self, *, slot_id: str) -> Optional[LessonSlot]:
        raise NotImplementedError

    def insert_slot(self, *, new_slot: NewLessonSlot) -> LessonSlot:
        raise NotImplementedError

    def update_slot(self, *, slot_id: str, fields: Dict[str, Any]) -> Optional[LessonSlot]:
        """Patch mutable columns; returns the updated row or None when missing."""

        raise NotImplementedError

    def set_status(
        self,
        *,
        slot_id: str,
        status: SlotStatus,
        expected: Iterable[SlotStatus],
    ) -> Optional[LessonSlot]:
        """Compare-and-set on status. Returns None when the row is not in ``expected``."""

        raise NotImplementedError

    def list_active_for_teacher(self, *, teacher_id: str, slot_date: date) -> Sequence[LessonSlot]:
        """AS_SCHEDULED slots of one teacher on one date, by start time."""

        raise NotImplementedError

    def list_for_student_range(
        self,
        *,
        student_id: str,
        start_date: date,
        end_date: date,
    ) -> Sequence[LessonSlotDetails]:
        """Slots joined with names and request summaries, by date then start time."""

        raise NotImplementedError

    # Requests
    def get_additional_request(self, *, request_id: str) -> Optional[AdditionalLessonRequest]:
        raise NotImplementedError

    # Multi-row units of work
    def mark_absent(self, *, slot_id: str, reason: str) -> Optional[AbsenceRequest]:
        """Move an AS_SCHEDULED slot to ABSENT and insert its absence request.

        Returns None (and writes nothing) when the slot is no longer AS_SCHEDULED.
        """

        raise NotImplementedError

    def reschedule(
        self,
        *,
        original_slot_id: str,
        expected: Iterable[SlotStatus],
        makeup: NewLessonSlot,
        absence_admin_notes: str,
    ) -> Optional[LessonSlot]:
        """Mark the original RESCHEDULED_SOURCE, insert the makeup, settle its absence.

        Returns the makeup slot, or None (and writes nothing) when the original is not
        in one of the ``expected`` statuses.
        """

        raise NotImplementedError

    def delete_slot_cascade(self, *, slot_id: str) -> Optional[DeleteOutcome]:
        """Delete dependents, unlink makeups that point at the slot, then the slot itself.

        Returns None when the slot does not exist.
        """

        raise NotImplementedError

    def approve_additional_request(
        self,
        *,
        request_id: str,
        new_slot: NewLessonSlot,
        admin_notes: str,
    ) -> Optional[LessonSlot]:
        """Insert the additional slot and mark the PENDING request APPROVED.

        Returns None (and writes nothing) when the request is no longer PENDING.
        """

        raise NotImplementedError

    # Concurrency
    def teacher_day_lock(self, *, teacher_id: str, slot_date: date) -> ContextManager[None]:
        """Advisory lock held around a conflict check and the write that follows it."""

        raise NotImplementedError
