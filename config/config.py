"""Settings shared by every environment module."""

import os

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "lesson_scheduler"),
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
# Rotating log file; empty means stdout only.
LOG_FILE = os.getenv("LOG_FILE") or None

# Seconds to wait for the per-teacher-per-date advisory lock.
ADVISORY_LOCK_TIMEOUT_SECONDS = int(os.getenv("ADVISORY_LOCK_TIMEOUT_SECONDS", "5"))
# Total attempts for schedule reads on transient storage errors.
READ_ATTEMPTS = int(os.getenv("READ_ATTEMPTS", "1"))
# Default double-booking policy for API calls that do not say.
ENFORCE_NO_CONFLICT = bool(int(os.getenv("ENFORCE_NO_CONFLICT", "0")))
