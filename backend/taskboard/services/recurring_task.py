"""Recurring task service for recurrence patterns and occurrence materialization."""

from datetime import date
from typing import Any, Sequence
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import ConflictError, NotFoundError
from taskboard.models.enums import ApprovalStatus
from taskboard.models.project import Task, TaskAssignment, TaskRecurrence
from taskboard.schemas.recurrence import RecurrenceSpec
from taskboard.services import board
from taskboard.services.access_control import Principal
from taskboard.services.recurrence import next_after
from taskboard.utils.time import utcnow

logger = structlog.get_logger()

EDIT_ROLE = "editor"

SPEC_FIELDS = (
    "frequency",
    "interval",
    "days_of_week",
    "day_of_month",
    "month_of_year",
    "start_date",
    "end_date",
    "max_occurrences",
)


class RecurringTaskService:
    """Service for managing task recurrences and generating occurrences."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Recurrence CRUD Operations
    # =========================================================================

    async def create_recurrence(
        self,
        task_id: UUID,
        data: dict[str, Any],
        actor: Principal,
        today: date | None = None,
    ) -> TaskRecurrence:
        """Attach a recurrence pattern to a template task.

        Raises:
            RecurrenceInvalidError: the pattern is malformed
            ConflictError: the task already recurs
        """
        task = await board.get_task(self.db, task_id)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        spec = RecurrenceSpec.parse({k: v for k, v in data.items() if k in SPEC_FIELDS})

        if await self.get_task_recurrence(task_id) is not None:
            raise ConflictError(f"Task {task_id} already has a recurrence", code="RECURRENCE_EXISTS")

        recurrence = TaskRecurrence(
            task_id=task_id,
            frequency=spec.frequency.value,
            interval=spec.interval,
            days_of_week=spec.days_of_week,
            day_of_month=spec.day_of_month,
            month_of_year=spec.month_of_year,
            start_date=spec.start_date,
            end_date=spec.end_date,
            max_occurrences=spec.max_occurrences,
            occurrences_created=0,
            next_occurrence=next_after(today or date.today(), spec),
            is_active=True,
            created_by_id=actor.user_id,
        )
        self.db.add(recurrence)
        await self.db.flush()

        logger.info(
            "recurrence_created",
            recurrence_id=str(recurrence.id),
            task_id=str(task_id),
            frequency=spec.frequency.value,
            next_occurrence=str(recurrence.next_occurrence) if recurrence.next_occurrence else None,
        )
        return recurrence

    async def get_recurrence(self, recurrence_id: UUID) -> TaskRecurrence:
        result = await self.db.execute(
            select(TaskRecurrence).where(TaskRecurrence.id == recurrence_id)
        )
        recurrence = result.scalar_one_or_none()
        if recurrence is None:
            raise NotFoundError("Recurrence", recurrence_id)
        return recurrence

    async def get_task_recurrence(self, task_id: UUID) -> TaskRecurrence | None:
        result = await self.db.execute(
            select(TaskRecurrence).where(TaskRecurrence.task_id == task_id)
        )
        return result.scalar_one_or_none()

    async def get_project_recurrences(
        self,
        project_id: UUID,
        active_only: bool = True,
    ) -> Sequence[TaskRecurrence]:
        """Get all recurrences of a project's template tasks."""
        query = (
            select(TaskRecurrence)
            .join(Task, Task.id == TaskRecurrence.task_id)
            .where(Task.project_id == project_id)
        )
        if active_only:
            query = query.where(TaskRecurrence.is_active.is_(True))
        query = query.order_by(TaskRecurrence.next_occurrence)

        result = await self.db.execute(query)
        return result.scalars().all()

    async def update_recurrence(
        self,
        recurrence_id: UUID,
        data: dict[str, Any],
        actor: Principal,
        today: date | None = None,
    ) -> TaskRecurrence:
        """Update a pattern; the next occurrence is recalculated."""
        recurrence = await self.get_recurrence(recurrence_id)
        task = await board.get_task(self.db, recurrence.task_id)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        merged = {field: getattr(recurrence, field) for field in SPEC_FIELDS}
        merged.update({k: v for k, v in data.items() if k in SPEC_FIELDS})
        merged["occurrences_created"] = recurrence.occurrences_created
        spec = RecurrenceSpec.parse(merged)

        recurrence.frequency = spec.frequency.value
        recurrence.interval = spec.interval
        recurrence.days_of_week = spec.days_of_week
        recurrence.day_of_month = spec.day_of_month
        recurrence.month_of_year = spec.month_of_year
        recurrence.start_date = spec.start_date
        recurrence.end_date = spec.end_date
        recurrence.max_occurrences = spec.max_occurrences
        recurrence.next_occurrence = next_after(today or date.today(), spec)
        await self.db.flush()

        logger.info("recurrence_updated", recurrence_id=str(recurrence_id))
        return recurrence

    async def set_active(
        self,
        recurrence_id: UUID,
        is_active: bool,
        actor: Principal,
        today: date | None = None,
    ) -> TaskRecurrence:
        """Pause or resume a recurrence."""
        recurrence = await self.get_recurrence(recurrence_id)
        task = await board.get_task(self.db, recurrence.task_id)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        recurrence.is_active = is_active
        if is_active:
            recurrence.next_occurrence = next_after(
                today or date.today(), RecurrenceSpec.from_model(recurrence)
            )
        await self.db.flush()
        return recurrence

    async def delete_recurrence(self, recurrence_id: UUID, actor: Principal) -> None:
        recurrence = await self.get_recurrence(recurrence_id)
        task = await board.get_task(self.db, recurrence.task_id)
        await actor.require_project_role(task.project_id, EDIT_ROLE)

        await self.db.delete(recurrence)
        await self.db.flush()
        logger.info("recurrence_deleted", recurrence_id=str(recurrence_id))

    # =========================================================================
    # Occurrence Generation
    # =========================================================================

    async def materialize(
        self,
        recurrence: TaskRecurrence,
        occurrence_date: date,
    ) -> tuple[Task, bool]:
        """
        Create the task for one occurrence of a recurrence.

        Idempotent on (template task, occurrence date): a second call returns
        the existing task and leaves the counters alone.

        Returns:
            Tuple of (task, created)
        """
        existing = await self._get_occurrence(recurrence.task_id, occurrence_date)
        if existing is not None:
            return existing, False

        template = await board.get_task(self.db, recurrence.task_id)
        project = await board.get_project(self.db, template.project_id, lock=True)
        stages = board.project_stages(project)
        first_stage = next((stage for stage in stages if not stage.is_done_stage), stages.first)

        due_date = occurrence_date
        if template.start_date and template.due_date:
            due_date = occurrence_date + (template.due_date - template.start_date)

        task = Task(
            title=template.title,
            description=template.description,
            priority=template.priority,
            project_id=template.project_id,
            stage_id=first_stage.id,
            position=len(await board.stage_tasks(self.db, project.id, first_stage.id)),
            start_date=occurrence_date,
            due_date=due_date,
            estimated_hours=template.estimated_hours,
            milestone_id=template.milestone_id,
            color=template.color,
            created_by_id=recurrence.created_by_id or template.created_by_id,
            approval_status=ApprovalStatus.NONE.value,
            recurrence_template_id=template.id,
            recurrence_date=occurrence_date,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(task)
        except IntegrityError:
            # Another worker materialized the same occurrence first
            existing = await self._get_occurrence(recurrence.task_id, occurrence_date)
            if existing is None:
                raise
            return existing, False

        assignments = await self.db.execute(
            select(TaskAssignment).where(TaskAssignment.task_id == template.id)
        )
        now = utcnow()
        for assignment in assignments.scalars().all():
            self.db.add(
                TaskAssignment(
                    task_id=task.id,
                    user_id=assignment.user_id,
                    assigned_by_id=assignment.assigned_by_id,
                    role=assignment.role,
                    assigned_at=now,
                )
            )

        recurrence.occurrences_created += 1
        recurrence.last_created_at = now
        await self.db.flush()

        logger.info(
            "recurring_task_created",
            task_id=str(task.id),
            template_task_id=str(template.id),
            occurrence_date=occurrence_date.isoformat(),
        )
        return task, True

    async def process_due(self, today: date | None = None) -> list[Task]:
        """Materialize every active recurrence that is due. Called by Celery."""
        today = today or date.today()

        result = await self.db.execute(
            select(TaskRecurrence).where(
                and_(
                    TaskRecurrence.is_active.is_(True),
                    TaskRecurrence.next_occurrence <= today,
                )
            )
        )
        recurrences = result.scalars().all()

        created_tasks = []
        for recurrence in recurrences:
            try:
                async with self.db.begin_nested():
                    task, created = await self.materialize(recurrence, recurrence.next_occurrence)
                    if created:
                        created_tasks.append(task)
                    self._advance(recurrence, today)
            except SQLAlchemyError as e:
                logger.error(
                    "recurring_task_creation_failed",
                    recurrence_id=str(recurrence.id),
                    error=str(e),
                )
                continue

        logger.info(
            "recurrences_processed",
            recurrences_processed=len(recurrences),
            tasks_created=len(created_tasks),
        )
        return created_tasks

    def _advance(self, recurrence: TaskRecurrence, today: date) -> None:
        """Move ``next_occurrence`` past today, deactivating finished series."""
        spec = RecurrenceSpec.from_model(recurrence)
        recurrence.next_occurrence = next_after(today, spec)
        if recurrence.next_occurrence is None:
            recurrence.is_active = False
            logger.info("recurrence_finished", recurrence_id=str(recurrence.id))

    async def _get_occurrence(self, template_task_id: UUID, occurrence_date: date) -> Task | None:
        result = await self.db.execute(
            select(Task).where(
                Task.recurrence_template_id == template_task_id,
                Task.recurrence_date == occurrence_date,
            )
        )
        return result.scalar_one_or_none()
