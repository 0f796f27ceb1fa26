"""Example: drive the service layer directly (no Flask).

Controllers are a thin layer; the lifecycle rules live in the services.
Run after scripts/init_db.py and scripts/seed_db.py.
"""

import importlib

from config import get_settings_module

from src.lesson_scheduler.lesson_scheduler.container import build_container

STUDENT_ID = "5a1c0d2e-0000-4000-8000-000000000001"
TEACHER_ID = "7e4b9f10-0000-4000-8000-000000000001"


def main():
    settings = importlib.import_module(get_settings_module())
    container = build_container(db_config=settings.DB_CONFIG)

    subscription = container.schedule_queries.subscribe(lambda event: print("changed:", event.table, event.kind.value))

    slot = container.slot_lifecycle.create(
        student_id=STUDENT_ID,
        teacher_id=TEACHER_ID,
        slot_type="REGULAR",
        slot_date="2024-06-03",
        start_time="16:00",
        end_time="17:00",
    )
    container.slot_lifecycle.mark_absent(slot_id=slot.slot_id, reason="fever")
    makeup = container.slot_lifecycle.reschedule(
        original_slot_id=slot.slot_id,
        new_date="2024-06-05",
        new_start_time="16:00",
        new_end_time="17:00",
        enforce_no_conflict=True,
    )
    print("makeup:", makeup.to_dict())

    for row in container.schedule_queries.get_slots_for_student_range(
        student_id=STUDENT_ID, start_date="2024-06-01", end_date="2024-06-30"
    ):
        print(row.to_dict())

    subscription.unsubscribe()


if __name__ == "__main__":
    main()
