from __future__ import annotations

from enum import Enum


class SlotType(str, Enum):
    """Loại buổi học. MAKEUP chỉ được tạo bởi thao tác đổi lịch."""

    REGULAR = "REGULAR"
    FIXED_INTERVIEW = "FIXED_INTERVIEW"
    MAKEUP = "MAKEUP"
    ADDITIONAL = "ADDITIONAL"


class SlotStatus(str, Enum):
    """Trạng thái vòng đời của một buổi học lưu trong CSDL."""

    AS_SCHEDULED = "AS_SCHEDULED"
    COMPLETED = "COMPLETED"
    ABSENT = "ABSENT"
    RESCHEDULED_SOURCE = "RESCHEDULED_SOURCE"


class AbsenceStatus(str, Enum):
    UNRESCHEDULED = "UNRESCHEDULED"
    RESCHEDULED = "RESCHEDULED"


class AdditionalRequestStatus(str, Enum):
    """Trạng thái yêu cầu học thêm (tạo bên ngoài, duyệt tại đây)."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
