"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

DEFAULT_LOCK_TIMEOUT_SECONDS = 5
DEFAULT_READ_ATTEMPTS = 1

ALLOWED_LINK_SCHEMES = ("http", "https")

# Table names double as change-channel topics.
TABLE_LESSON_SLOTS = "lesson_slots"
TABLE_ABSENCE_REQUESTS = "absence_requests"
TABLE_ADDITIONAL_REQUESTS = "additional_lesson_requests"
SCHEDULE_TABLES = (TABLE_LESSON_SLOTS, TABLE_ABSENCE_REQUESTS, TABLE_ADDITIONAL_REQUESTS)

DEFAULT_APPROVAL_NOTE = "Approved"
