from __future__ import annotations

import logging
from datetime import date, time
from typing import Optional, Union

from ..common.datetime_utils import format_hhmm, parse_hhmm, parse_iso_date
from ..common.validators import optional_text, require_time_order
from ..core.exceptions import ConflictError
from .model import LessonSlot
from .repository import SlotStore

logger = logging.getLogger(__name__)


def overlaps(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open interval overlap: [start_a, end_a) and [start_b, end_b)."""
    return start_a < end_b and start_b < end_a


class ConflictChecker:
    """Finds a teacher's AS_SCHEDULED slot that collides with a proposed time range."""

    def __init__(self, slots: SlotStore):
        self._slots = slots

    def check_conflict(
        self,
        *,
        teacher_id: Optional[str],
        slot_date: Union[str, date],
        start_time: Union[str, time],
        end_time: Union[str, time],
        exclude_slot_id: Optional[str] = None,
    ) -> Optional[LessonSlot]:
        teacher_id = optional_text(teacher_id, "Teacher")
        slot_date = parse_iso_date(slot_date)
        start_t = parse_hhmm(start_time)
        end_t = parse_hhmm(end_time)
        require_time_order(start_t, end_t)
        if teacher_id is None:
            return None

        candidates = self._slots.list_active_for_teacher(teacher_id=teacher_id, slot_date=slot_date)
        for existing in sorted(candidates, key=lambda s: s.start_time):
            if exclude_slot_id and existing.slot_id == exclude_slot_id:
                continue
            if not existing.is_active:
                continue
            if overlaps(start_t, end_t, existing.start_time, existing.end_time):
                return existing
        return None

    def ensure_no_conflict(
        self,
        *,
        teacher_id: Optional[str],
        slot_date: Union[str, date],
        start_time: Union[str, time],
        end_time: Union[str, time],
        exclude_slot_id: Optional[str] = None,
    ) -> None:
        hit = self.check_conflict(
            teacher_id=teacher_id,
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            exclude_slot_id=exclude_slot_id,
        )
        if hit is not None:
            logger.warning(
                "Double booking for teacher %s on %s: overlaps slot %s (%s-%s)",
                teacher_id,
                hit.slot_date,
                hit.slot_id,
                format_hhmm(hit.start_time),
                format_hhmm(hit.end_time),
            )
            raise ConflictError(
                f"Teacher already has a lesson {format_hhmm(hit.start_time)}-{format_hhmm(hit.end_time)} on that date",
                conflicting_slot=hit,
            )
