"""Recurrence rule endpoints."""

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Query, status
from pydantic import BaseModel

from taskboard.api.deps import Commands
from taskboard.api.v1.tasks import RecurrenceResponse
from taskboard.commands import TaskCommands
from taskboard.models.project import TaskRecurrence

router = APIRouter()


class RecurrencePreviewResponse(BaseModel):
    description: str
    upcoming: list[date]


@router.post("/preview", response_model=RecurrencePreviewResponse)
async def preview_recurrence(
    data: dict[str, Any] = Body(...),
    count: int = Query(5, ge=1, le=50),
    after: date | None = Query(None),
) -> RecurrencePreviewResponse:
    """Describe a pattern and list its next dates without saving it."""
    preview = TaskCommands.preview_recurrence(data, count=count, after=after)
    return RecurrencePreviewResponse(description=preview.description, upcoming=preview.upcoming)


@router.patch("/{recurrence_id}", response_model=RecurrenceResponse)
async def update_recurrence(
    recurrence_id: UUID,
    commands: Commands,
    data: dict[str, Any] = Body(...),
) -> TaskRecurrence:
    return await commands.update_recurrence(recurrence_id, data)


@router.post("/{recurrence_id}/pause", response_model=RecurrenceResponse)
async def pause_recurrence(recurrence_id: UUID, commands: Commands) -> TaskRecurrence:
    return await commands.set_recurrence_active(recurrence_id, False)


@router.post("/{recurrence_id}/resume", response_model=RecurrenceResponse)
async def resume_recurrence(recurrence_id: UUID, commands: Commands) -> TaskRecurrence:
    """Resume a paused rule; the next occurrence is recomputed from today."""
    return await commands.set_recurrence_active(recurrence_id, True)


@router.delete("/{recurrence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recurrence(recurrence_id: UUID, commands: Commands) -> None:
    await commands.delete_recurrence(recurrence_id)
