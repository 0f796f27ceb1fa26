from __future__ import annotations

import logging
from datetime import date, datetime, time

import pytest

from src.lesson_scheduler.lesson_scheduler.common.datetime_utils import parse_hhmm, parse_iso_date
from src.lesson_scheduler.lesson_scheduler.common.logging_setup import PACKAGE_LOGGER, configure_logging
from src.lesson_scheduler.lesson_scheduler.common.validators import (
    optional_text,
    require_meeting_link,
    require_time_order,
)
from src.lesson_scheduler.lesson_scheduler.core.exceptions import ValidationError


def test_parse_iso_date_accepts_strings_and_dates():
    assert parse_iso_date(" 2024-06-03 ") == date(2024, 6, 3)
    assert parse_iso_date(date(2024, 6, 3)) == date(2024, 6, 3)
    assert parse_iso_date(datetime(2024, 6, 3, 10, 0)) == date(2024, 6, 3)
    with pytest.raises(ValidationError):
        parse_iso_date("03/06/2024")


def test_parse_hhmm_drops_seconds():
    assert parse_hhmm("09:05") == time(9, 5)
    assert parse_hhmm(time(9, 5, 30)) == time(9, 5)
    with pytest.raises(ValidationError):
        parse_hhmm("25:00")


def test_time_order_is_strict():
    require_time_order(time(9), time(9, 1))
    with pytest.raises(ValidationError):
        require_time_order(time(9), time(9))


def test_meeting_link():
    assert require_meeting_link(" https://zoom.us/j/123 ") == "https://zoom.us/j/123"
    assert require_meeting_link(None) is None
    assert optional_text("  ") is None
    with pytest.raises(ValidationError):
        require_meeting_link("https://zoom.us/j/1 23")


def test_configure_logging_does_not_stack_handlers(tmp_path):
    log_file = tmp_path / "logs" / "app.log"
    configure_logging("debug", str(log_file))
    logger = configure_logging("info", str(log_file))
    try:
        assert logger.name == PACKAGE_LOGGER
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 2
        assert log_file.parent.is_dir()
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
