from __future__ import annotations

from datetime import time
from typing import Optional
from urllib.parse import urlparse

from ..core.constants import ALLOWED_LINK_SCHEMES
from ..core.exceptions import ValidationError


def require_text(value: object, field_name: str) -> Optional[str]:
    """Reject anything that is not a string (JSON numbers, lists...); None passes through."""
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string, got {type(value).__name__}")
    return value


def require_non_empty(value: Optional[str], field_name: str) -> str:
    value = require_text(value, field_name)
    if not value or not value.strip():
        raise ValidationError(f"{field_name} must not be empty")
    return value.strip()


def optional_text(value: Optional[str], field_name: str = "Value") -> Optional[str]:
    return (require_text(value, field_name) or "").strip() or None


def require_time_order(start_time: time, end_time: time) -> None:
    if end_time <= start_time:
        raise ValidationError(
            f"End time {end_time.strftime('%H:%M')} must be after start time {start_time.strftime('%H:%M')}"
        )


def require_meeting_link(value: Optional[str]) -> Optional[str]:
    """Return a stripped link, or None when empty.

    Only absolute http(s) URLs with a host are accepted.
    """

    link = optional_text(value, "Meeting link")
    if link is None:
        return None

    parsed = urlparse(link)
    if parsed.scheme not in ALLOWED_LINK_SCHEMES or not parsed.netloc or " " in link:
        raise ValidationError(f"Meeting link is not a valid URL: {link!r}")
    return link
