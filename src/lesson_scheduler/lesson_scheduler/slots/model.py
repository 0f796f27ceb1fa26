from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, Optional

from ..common.datetime_utils import format_date, format_hhmm
from ..core.enums import AbsenceStatus, AdditionalRequestStatus, SlotStatus, SlotType


@dataclass(frozen=True)
class LessonSlot:
    slot_id: str
    student_id: str
    teacher_id: Optional[str]
    slot_type: SlotType
    slot_date: date
    start_time: time
    end_time: time
    status: SlotStatus
    created_at: datetime
    updated_at: datetime
    meeting_link: Optional[str] = None
    original_slot_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SlotStatus.AS_SCHEDULED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.slot_id,
            "student_id": self.student_id,
            "teacher_id": self.teacher_id,
            "slot_type": self.slot_type.value,
            "slot_date": format_date(self.slot_date),
            "start_time": format_hhmm(self.start_time),
            "end_time": format_hhmm(self.end_time),
            "meeting_link": self.meeting_link,
            "status": self.status.value,
            "original_slot_id": self.original_slot_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class NewLessonSlot:
    """Validated values for a slot row that does not exist yet."""

    student_id: str
    teacher_id: Optional[str]
    slot_type: SlotType
    slot_date: date
    start_time: time
    end_time: time
    meeting_link: Optional[str] = None
    notes: Optional[str] = None
    status: SlotStatus = SlotStatus.AS_SCHEDULED
    original_slot_id: Optional[str] = None


@dataclass(frozen=True)
class AbsenceRequest:
    request_id: str
    lesson_slot_id: str
    student_id: str
    reason: str
    request_timestamp: datetime
    status: AbsenceStatus
    admin_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.request_id,
            "lesson_slot_id": self.lesson_slot_id,
            "student_id": self.student_id,
            "reason": self.reason,
            "request_timestamp": self.request_timestamp.isoformat(),
            "status": self.status.value,
            "admin_notes": self.admin_notes,
        }


@dataclass(frozen=True)
class AdditionalLessonRequest:
    request_id: str
    student_id: str
    requested_date: date
    requested_start_time: time
    requested_end_time: time
    request_timestamp: datetime
    status: AdditionalRequestStatus
    teacher_id: Optional[str] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_lesson_slot_id: Optional[str] = None


@dataclass(frozen=True)
class AbsenceSummary:
    request_id: str
    status: AbsenceStatus
    reason: str


@dataclass(frozen=True)
class AdditionalRequestSummary:
    request_id: str
    status: AdditionalRequestStatus


@dataclass(frozen=True)
class LessonSlotDetails:
    """A slot joined with display names and linked request summaries."""

    slot: LessonSlot
    student_name: str
    teacher_name: Optional[str] = None
    absence_request: Optional[AbsenceSummary] = None
    additional_request: Optional[AdditionalRequestSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        out = self.slot.to_dict()
        out["student_name"] = self.student_name
        out["teacher_name"] = self.teacher_name
        out["absence_request"] = (
            {
                "id": self.absence_request.request_id,
                "status": self.absence_request.status.value,
                "reason": self.absence_request.reason,
            }
            if self.absence_request
            else None
        )
        out["additional_request"] = (
            {"id": self.additional_request.request_id, "status": self.additional_request.status.value}
            if self.additional_request
            else None
        )
        return out


@dataclass(frozen=True)
class DeleteOutcome:
    """Rows removed or touched by a cascading slot delete."""

    slot_id: str
    absence_request_ids: tuple = field(default_factory=tuple)
    additional_request_ids: tuple = field(default_factory=tuple)
    unlinked_makeup_ids: tuple = field(default_factory=tuple)
