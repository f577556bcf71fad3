"""Password reset PIN issue and verification."""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings, get_settings
from taskboard.exceptions import PinExhaustedError, PinExpiredError, PinInvalidError
from taskboard.models.auth import PasswordResetPin
from taskboard.models.user import User
from taskboard.utils.time import ensure_aware, utcnow

logger = structlog.get_logger()

PIN_LENGTH = 6


def hash_pin(pin: str) -> str:
    return hashlib.sha256(pin.encode("utf-8")).hexdigest()


def generate_pin() -> str:
    return f"{secrets.randbelow(10**PIN_LENGTH):0{PIN_LENGTH}d}"


@dataclass
class IssuedPin:
    email: str
    pin: str
    expires_at: datetime


class PinService:
    """
    Six-digit reset PINs.

    One outstanding PIN per email. Wrong submissions count against the PIN;
    once the limit is reached it is invalidated and every later submission
    fails with ``PinExhaustedError`` until a new PIN is issued.
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def issue_pin(self, email: str, now: datetime | None = None) -> IssuedPin | None:
        """
        Replace any outstanding PIN for ``email`` with a fresh one.

        Returns:
            The clear PIN for the email sink, or None when no active account
            uses the address (callers answer identically either way)
        """
        email = email.strip().lower()
        result = await self.db.execute(
            select(User.id).where(func.lower(User.email) == email, User.is_active.is_(True))
        )
        if result.scalar_one_or_none() is None:
            logger.info("password_reset_unknown_email")
            return None

        now = now or utcnow()
        pin = generate_pin()
        expires_at = now + timedelta(minutes=self.settings.pin_expiry_minutes)

        await self.db.execute(delete(PasswordResetPin).where(PasswordResetPin.email == email))
        self.db.add(
            PasswordResetPin(
                email=email,
                pin_hash=hash_pin(pin),
                expires_at=expires_at,
                attempts=0,
            )
        )
        await self.db.flush()

        logger.info("password_reset_pin_issued", expires_at=expires_at.isoformat())
        return IssuedPin(email=email, pin=pin, expires_at=expires_at)

    async def verify_pin(self, email: str, pin: str, now: datetime | None = None) -> PasswordResetPin:
        """
        Check a submitted PIN.

        Attempt counters are flushed before an error is raised; the caller
        commits them even though the verification failed.

        Raises:
            PinInvalidError: wrong PIN, or no PIN outstanding
            PinExpiredError: PIN is past its expiry
            PinExhaustedError: PIN was invalidated after too many wrong attempts
        """
        email = email.strip().lower()
        now = now or utcnow()
        max_attempts = self.settings.pin_max_attempts

        result = await self.db.execute(
            select(PasswordResetPin).where(PasswordResetPin.email == email).with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise PinInvalidError(attempts_remaining=0)

        if ensure_aware(record.expires_at) < now:
            raise PinExpiredError()

        if record.invalidated_at is not None or record.attempts >= max_attempts:
            raise PinExhaustedError()

        if not hmac.compare_digest(record.pin_hash, hash_pin(pin.strip())):
            record.attempts += 1
            remaining = max(max_attempts - record.attempts, 0)
            if remaining == 0:
                record.invalidated_at = now
            await self.db.flush()
            logger.info("password_reset_pin_rejected", attempts=record.attempts)
            raise PinInvalidError(attempts_remaining=remaining)

        record.verified_at = record.verified_at or now
        await self.db.flush()
        logger.info("password_reset_pin_verified")
        return record

    async def purge_expired(self, now: datetime | None = None, grace: timedelta = timedelta(days=1)) -> int:
        """Delete PINs that expired more than ``grace`` ago."""
        cutoff = (now or utcnow()) - grace
        result = await self.db.execute(
            delete(PasswordResetPin).where(PasswordResetPin.expires_at < cutoff)
        )
        if result.rowcount:
            logger.info("password_reset_pins_purged", count=result.rowcount)
        return result.rowcount
