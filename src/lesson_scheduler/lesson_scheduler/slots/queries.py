from __future__ import annotations

import logging
from datetime import date
from typing import List, Union

from ..common.datetime_utils import parse_iso_date
from ..common.validators import require_non_empty
from ..core.constants import DEFAULT_READ_ATTEMPTS, SCHEDULE_TABLES
from ..core.exceptions import PersistenceError, ValidationError
from ..notifications.channel import ChangeCallback, ChangeChannel, Subscription
from .model import LessonSlotDetails
from .repository import SlotStore

logger = logging.getLogger(__name__)


class ScheduleQueryService:
    """Read side of the schedule. Never writes."""

    def __init__(self, slots: SlotStore, channel: ChangeChannel, *, read_attempts: int = DEFAULT_READ_ATTEMPTS):
        self._slots = slots
        self._channel = channel
        self._read_attempts = max(1, int(read_attempts))

    def get_slots_for_student_range(
        self,
        *,
        student_id: str,
        start_date: Union[str, date],
        end_date: Union[str, date],
    ) -> List[LessonSlotDetails]:
        """Slots of one student between two dates (inclusive), by date then start time.

        An empty range yields an empty list. Transient storage failures are retried
        ``read_attempts`` times in total before the last error is raised.
        """

        student_id = require_non_empty(student_id, "Student")
        start = parse_iso_date(start_date)
        end = parse_iso_date(end_date)
        if end < start:
            raise ValidationError("End date must be on or after start date")

        attempt = 1
        while True:
            try:
                rows = self._slots.list_for_student_range(student_id=student_id, start_date=start, end_date=end)
                break
            except PersistenceError as e:
                if attempt >= self._read_attempts:
                    raise
                logger.warning("Schedule read failed (attempt %d/%d): %s", attempt, self._read_attempts, e)
                attempt += 1

        return sorted(rows or [], key=lambda d: (d.slot.slot_date, d.slot.start_time))

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        """Call ``on_change`` after any insert/update/delete on slots or their requests."""
        return self._channel.subscribe(SCHEDULE_TABLES, on_change)
