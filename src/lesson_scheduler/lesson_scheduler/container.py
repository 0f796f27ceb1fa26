from __future__ import annotations

from dataclasses import dataclass

from .core.constants import DEFAULT_LOCK_TIMEOUT_SECONDS, DEFAULT_READ_ATTEMPTS
from .database.connection import DBConfig, DatabaseConnection
from .notifications.channel import ChangeChannel
from .slots.conflicts import ConflictChecker
from .slots.mysql_slot_repository import MySQLSlotRepository
from .slots.queries import ScheduleQueryService
from .slots.service import SlotLifecycleManager


@dataclass(frozen=True)
class Container:
    conn: DatabaseConnection

    slots_repo: MySQLSlotRepository
    change_channel: ChangeChannel

    conflict_checker: ConflictChecker
    schedule_queries: ScheduleQueryService
    slot_lifecycle: SlotLifecycleManager


def build_container(
    *,
    db_config: dict,
    lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    read_attempts: int = DEFAULT_READ_ATTEMPTS,
) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_settings(db_config))

    slots_repo = MySQLSlotRepository(conn, lock_timeout_seconds=lock_timeout_seconds)
    change_channel = ChangeChannel()

    conflict_checker = ConflictChecker(slots_repo)
    schedule_queries = ScheduleQueryService(slots_repo, change_channel, read_attempts=read_attempts)
    slot_lifecycle = SlotLifecycleManager(slots_repo, conflict_checker, change_channel)

    return Container(
        conn=conn,
        slots_repo=slots_repo,
        change_channel=change_channel,
        conflict_checker=conflict_checker,
        schedule_queries=schedule_queries,
        slot_lifecycle=slot_lifecycle,
    )
