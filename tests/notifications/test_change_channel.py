from __future__ import annotations

import pytest

from src.lesson_scheduler.lesson_scheduler.core.enums import ChangeKind
from src.lesson_scheduler.lesson_scheduler.core.exceptions import NotFoundError
from src.lesson_scheduler.lesson_scheduler.notifications.channel import ChangeChannel, ChangeEvent


def _event(table="lesson_slots", kind=ChangeKind.UPDATE, row_id="x"):
    return ChangeEvent(table=table, kind=kind, row_id=row_id)


def test_publish_only_reaches_matching_tables(recorder):
    channel = ChangeChannel()
    channel.subscribe(["absence_requests"], recorder)

    assert channel.publish(_event("lesson_slots")) == 0
    assert channel.publish(_event("absence_requests")) == 1
    assert [e.table for e in recorder.events] == ["absence_requests"]


def test_unsubscribe_is_idempotent(recorder):
    channel = ChangeChannel()
    sub = channel.subscribe(["lesson_slots"], recorder)
    sub.unsubscribe()
    sub.unsubscribe()

    assert not sub.active
    assert channel.subscriber_count() == 0
    channel.publish(_event())
    assert recorder.events == []


def test_failing_subscriber_does_not_block_others(recorder, caplog):
    channel = ChangeChannel()

    def broken(event):
        raise RuntimeError("boom")

    channel.subscribe(["lesson_slots"], broken)
    channel.subscribe(["lesson_slots"], recorder)

    assert channel.publish(_event()) == 2
    assert len(recorder.events) == 1
    assert "Change subscriber failed" in caplog.text


def test_subscribe_requires_a_table(recorder):
    with pytest.raises(ValueError):
        ChangeChannel().subscribe([], recorder)


def test_failed_write_publishes_nothing(manager, channel, recorder):
    channel.subscribe(["lesson_slots"], recorder)
    with pytest.raises(NotFoundError):
        manager.mark_absent(slot_id="missing", reason="fever")
    assert recorder.events == []
