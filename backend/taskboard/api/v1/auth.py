"""Authentication and password-reset PIN endpoints."""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.api.deps import CurrentUser, Dispatcher
from taskboard.commands import PasswordResetCommands
from taskboard.config import get_settings
from taskboard.db.session import get_db_session
from taskboard.models.user import User

router = APIRouter()
logger = structlog.get_logger()
settings = get_settings()

PIN_REQUEST_MESSAGE = "If an account exists for that email, a reset PIN has been sent."


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyPinRequest(BaseModel):
    email: EmailStr
    pin: str = Field(..., pattern=r"^\d{6}$")


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    """User information response."""

    id: UUID
    email: str
    username: str
    display_name: str
    avatar_url: str | None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser) -> User:
    """Get the authenticated user."""
    return current_user


@router.post("/forgot-password", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def forgot_password(
    request: ForgotPasswordRequest,
    dispatcher: Dispatcher,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    """Email a reset PIN. The answer is the same whether or not the account exists."""
    await PasswordResetCommands(db, dispatcher, settings).request_pin(request.email)
    return MessageResponse(message=PIN_REQUEST_MESSAGE)


@router.post("/verify-pin", response_model=MessageResponse)
async def verify_pin(
    request: VerifyPinRequest,
    dispatcher: Dispatcher,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    """Check a reset PIN; wrong guesses count against the PIN."""
    await PasswordResetCommands(db, dispatcher, settings).verify_pin(request.email, request.pin)
    logger.info("password_reset_pin_verified")
    return MessageResponse(message="PIN verified")
