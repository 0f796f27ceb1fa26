from __future__ import annotations

from typing import Dict, FrozenSet

from ..core.enums import SlotStatus
from ..core.exceptions import InvalidStateError

# Operation name -> statuses a slot may be in when the operation starts.
ALLOWED_SOURCES: Dict[str, FrozenSet[SlotStatus]] = {
    "mark_absent": frozenset({SlotStatus.AS_SCHEDULED}),
    "reschedule": frozenset({SlotStatus.AS_SCHEDULED, SlotStatus.ABSENT}),
    "mark_completed": frozenset({SlotStatus.AS_SCHEDULED}),
}

TARGETS: Dict[str, SlotStatus] = {
    "mark_absent": SlotStatus.ABSENT,
    "reschedule": SlotStatus.RESCHEDULED_SOURCE,
    "mark_completed": SlotStatus.COMPLETED,
}


def require_transition(operation: str, current: SlotStatus) -> SlotStatus:
    """Return the target status of ``operation`` or raise InvalidStateError."""

    allowed = ALLOWED_SOURCES[operation]
    if current not in allowed:
        expected = ", ".join(sorted(s.value for s in allowed))
        raise InvalidStateError(
            f"Cannot {operation.replace('_', ' ')} a slot in status {current.value} (expected {expected})"
        )
    return TARGETS[operation]
