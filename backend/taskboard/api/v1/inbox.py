"""Attention inbox endpoints."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel

from taskboard.api.deps import Commands
from taskboard.models.attention import AttentionItem

router = APIRouter()


class AttentionItemResponse(BaseModel):
    """Inbox item response."""

    id: UUID
    attention_type: str
    priority: str
    title: str
    body: str | None
    task_id: UUID | None
    comment_id: UUID | None
    project_id: UUID | None
    actor_user_id: UUID | None
    read_at: datetime | None
    actioned_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int


@router.get("/", response_model=list[AttentionItemResponse])
async def list_inbox(
    commands: Commands,
    filter: Literal["all", "unread", "mentions", "assignments"] = Query("all"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[AttentionItem]:
    """Live (not dismissed) items of the current user, newest first."""
    return list(await commands.inbox(filter, limit, offset))


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(commands: Commands) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await commands.unread_count())


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(commands: Commands) -> MarkAllReadResponse:
    return MarkAllReadResponse(updated=await commands.mark_all_read())


@router.post("/{item_id}/read", response_model=AttentionItemResponse)
async def mark_read(item_id: UUID, commands: Commands) -> AttentionItem:
    return await commands.mark_read(item_id)


@router.post("/{item_id}/dismiss", response_model=AttentionItemResponse)
async def dismiss(item_id: UUID, commands: Commands) -> AttentionItem:
    return await commands.dismiss(item_id)


@router.post("/{item_id}/action", response_model=AttentionItemResponse)
async def mark_actioned(item_id: UUID, commands: Commands) -> AttentionItem:
    return await commands.mark_actioned(item_id)
