"""Password reset PIN model."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from taskboard.db.base import BaseModel


class PasswordResetPin(BaseModel):
    """One outstanding reset PIN per email address."""

    __tablename__ = "password_reset_pins"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    # SHA-256 of the PIN; the clear code only ever leaves through the email sink
    pin_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invalidated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PasswordResetPin {self.email}>"
