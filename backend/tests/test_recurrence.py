from datetime import date

import pytest
from sqlalchemy import select

from taskboard.commands import TaskCommands
from taskboard.exceptions import ConflictError, RecurrenceInvalidError
from taskboard.models.project import Task, TaskAssignment
from taskboard.schemas.recurrence import RecurrenceSpec
from taskboard.services.recurrence import describe, next_after, upcoming_occurrences
from taskboard.services.recurring_task import RecurringTaskService

MON, WED, FRI = 0, 2, 4


def spec(**fields) -> RecurrenceSpec:
    return RecurrenceSpec.parse(fields)


class TestNextAfter:
    def test_weekly_days(self) -> None:
        weekly = spec(frequency="weekly", days_of_week=[FRI, MON, WED], start_date=date(2025, 1, 6))
        assert next_after(date(2025, 1, 7), weekly) == date(2025, 1, 8)
        assert next_after(date(2025, 1, 10), weekly) == date(2025, 1, 13)

    def test_end_date_stops_the_series(self) -> None:
        weekly = spec(
            frequency="weekly",
            days_of_week=[MON, WED, FRI],
            start_date=date(2025, 1, 6),
            end_date=date(2025, 1, 12),
        )
        assert next_after(date(2025, 1, 10), weekly) is None

    def test_future_start_is_the_first_occurrence(self) -> None:
        daily = spec(frequency="daily", start_date=date(2025, 3, 1))
        assert next_after(date(2025, 1, 1), daily) == date(2025, 3, 1)

    def test_monthly_clamps_and_returns_to_anchor(self) -> None:
        monthly = spec(frequency="monthly", start_date=date(2025, 1, 31))
        assert upcoming_occurrences(monthly, count=3, after=date(2025, 1, 31)) == [
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]

    def test_leap_year_february(self) -> None:
        monthly = spec(frequency="monthly", day_of_month=31, start_date=date(2024, 1, 31))
        assert next_after(date(2024, 1, 31), monthly) == date(2024, 2, 29)

    def test_quarterly_and_yearly(self) -> None:
        quarterly = spec(frequency="quarterly", start_date=date(2025, 1, 15))
        assert next_after(date(2025, 1, 15), quarterly) == date(2025, 4, 15)

        yearly = spec(frequency="yearly", month_of_year=2, day_of_month=29, start_date=date(2024, 2, 29))
        assert next_after(date(2024, 2, 29), yearly) == date(2025, 2, 28)

    def test_biweekly_and_interval(self) -> None:
        biweekly = spec(frequency="biweekly", start_date=date(2025, 1, 1))
        assert next_after(date(2025, 1, 1), biweekly) == date(2025, 1, 15)

        every_three_days = spec(frequency="daily", interval=3, start_date=date(2025, 1, 1))
        assert next_after(date(2025, 1, 2), every_three_days) == date(2025, 1, 4)

    def test_max_occurrences(self) -> None:
        limited = spec(frequency="daily", start_date=date(2025, 1, 1), max_occurrences=2)
        assert upcoming_occurrences(limited, count=5, after=date(2024, 12, 31)) == [
            date(2025, 1, 1),
            date(2025, 1, 2),
        ]
        exhausted = spec(
            frequency="daily", start_date=date(2025, 1, 1), max_occurrences=2, occurrences_created=2
        )
        assert next_after(date(2025, 1, 1), exhausted) is None

    @pytest.mark.parametrize("frequency", ["daily", "weekly", "biweekly", "monthly", "quarterly", "yearly", "custom"])
    def test_dates_strictly_increase(self, frequency) -> None:
        series = spec(frequency=frequency, days_of_week=[MON, FRI], start_date=date(2025, 1, 31))
        dates = upcoming_occurrences(series, count=12, after=date(2025, 1, 1))
        assert len(dates) == 12
        assert all(earlier < later for earlier, later in zip(dates, dates[1:]))


class TestDescribe:
    @pytest.mark.parametrize(
        "fields, expected",
        [
            ({"frequency": "daily"}, "Daily"),
            ({"frequency": "daily", "interval": 3}, "Every 3 days"),
            ({"frequency": "weekly", "interval": 2, "days_of_week": [WED, MON]}, "Every 2 weeks on Mon, Wed"),
            ({"frequency": "monthly", "day_of_month": 15}, "Monthly on day 15"),
            ({"frequency": "yearly", "month_of_year": 3}, "Yearly in March"),
            ({"frequency": "daily", "max_occurrences": 4}, "Daily, 4 times"),
            ({"frequency": "biweekly", "end_date": "2025-06-30"}, "Every 2 weeks until 2025-06-30"),
        ],
    )
    def test_describe(self, fields, expected) -> None:
        assert describe(spec(start_date=date(2025, 1, 1), **fields)) == expected


@pytest.mark.parametrize(
    "fields",
    [
        {"frequency": "hourly", "start_date": "2025-01-01"},
        {"frequency": "daily", "interval": 0, "start_date": "2025-01-01"},
        {"frequency": "weekly", "days_of_week": [7], "start_date": "2025-01-01"},
        {"frequency": "daily", "start_date": "2025-01-10", "end_date": "2025-01-01"},
        {"frequency": "daily"},
    ],
    ids=["frequency", "interval", "weekday", "window", "start"],
)
def test_invalid_specs(fields) -> None:
    with pytest.raises(RecurrenceInvalidError):
        RecurrenceSpec.parse(fields)


def test_preview_does_not_need_a_session() -> None:
    preview = TaskCommands.preview_recurrence(
        {"frequency": "weekly", "days_of_week": [MON], "start_date": "2025-01-06"},
        count=3,
        after=date(2025, 1, 1),
    )
    assert preview.description == "Weekly on Mon"
    assert preview.upcoming == [date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20)]


# =============================================================================
# Materialization
# =============================================================================


async def occurrences(db, template_id) -> list[Task]:
    result = await db.execute(
        select(Task).where(Task.recurrence_template_id == template_id).order_by(Task.recurrence_date)
    )
    return list(result.scalars().all())


async def test_process_due_is_idempotent(db, make_task, commands_for, alice, bob) -> None:
    owner = commands_for(alice)
    template = await make_task(
        "Weekly report",
        stage_id="in_progress",
        start_date=date(2025, 1, 6),
        due_date=date(2025, 1, 8),
    )
    await owner.assign(template.id, bob.id)
    recurrence = await owner.recurrences.create_recurrence(
        template.id,
        {"frequency": "weekly", "start_date": "2025-01-06"},
        owner.actor,
        today=date(2025, 1, 1),
    )
    await db.commit()
    assert recurrence.next_occurrence == date(2025, 1, 6)

    service = RecurringTaskService(db)
    created = await service.process_due(today=date(2025, 1, 6))
    await db.commit()
    again = await service.process_due(today=date(2025, 1, 6))
    await db.commit()

    assert len(created) == 1
    assert again == []
    tasks = await occurrences(db, template.id)
    assert len(tasks) == 1
    occurrence = tasks[0]
    assert occurrence.stage_id == "todo"
    assert occurrence.start_date == date(2025, 1, 6)
    assert occurrence.due_date == date(2025, 1, 8)
    assert occurrence.approval_status == "none"
    assert recurrence.occurrences_created == 1
    assert recurrence.next_occurrence == date(2025, 1, 13)

    assignees = await db.execute(select(TaskAssignment.user_id).where(TaskAssignment.task_id == occurrence.id))
    assert list(assignees.scalars()) == [bob.id]


async def test_materialize_twice_returns_existing(db, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    template = await make_task("Standup")
    recurrence = await owner.create_recurrence(template.id, {"frequency": "daily", "start_date": "2025-01-01"})

    service = RecurringTaskService(db)
    first, created = await service.materialize(recurrence, date(2025, 2, 1))
    second, created_again = await service.materialize(recurrence, date(2025, 2, 1))

    assert created and not created_again
    assert first.id == second.id
    assert recurrence.occurrences_created == 1


async def test_series_deactivates_when_finished(db, make_task, commands_for, alice) -> None:
    owner = commands_for(alice)
    template = await make_task("Onboarding")
    recurrence = await owner.recurrences.create_recurrence(
        template.id,
        {"frequency": "daily", "start_date": "2025-01-01", "max_occurrences": 1},
        owner.actor,
        today=date(2024, 12, 31),
    )
    await db.commit()

    created = await RecurringTaskService(db).process_due(today=date(2025, 1, 1))
    await db.commit()

    assert len(created) == 1
    assert recurrence.next_occurrence is None
    assert recurrence.is_active is False


async def test_recurrence_management(project, make_task, commands_for, alice, bob) -> None:
    editor = commands_for(bob)
    template = await make_task("Backup check")
    template_id, project_id = template.id, project.id
    recurrence = await editor.create_recurrence(template_id, {"frequency": "daily", "start_date": "2025-01-01"})
    recurrence_id = recurrence.id

    with pytest.raises(ConflictError):
        await editor.create_recurrence(template_id, {"frequency": "weekly", "start_date": "2025-01-01"})

    updated = await editor.update_recurrence(recurrence_id, {"frequency": "weekly", "days_of_week": [FRI]})
    assert updated.frequency == "weekly"
    assert updated.days_of_week == [FRI]

    paused = await editor.set_recurrence_active(recurrence_id, False)
    assert paused.is_active is False
    assert await editor.project_recurrences(project_id) == []
    assert len(await editor.project_recurrences(project_id, active_only=False)) == 1

    await editor.delete_recurrence(recurrence_id)
    assert await editor.project_recurrences(project_id, active_only=False) == []
