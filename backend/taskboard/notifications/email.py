"""Email sinks: SMTP delivery and an in-memory outbox."""

import asyncio
import smtplib
import uuid
from email.message import EmailMessage
from html import escape

import structlog

from taskboard.config import Settings
from taskboard.notifications.base import EmailMessageData, EmailSink, SinkResult

logger = structlog.get_logger()


class SmtpEmailSink(EmailSink):
    """Sends mail through an SMTP relay.

    smtplib is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_addr: str = "noreply@taskboard.local",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_addr = from_addr
        self.timeout = timeout

    async def send(self, message: EmailMessageData) -> SinkResult:
        try:
            message_id = await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", to=message.to, error=str(e))
            return SinkResult(success=False, error=str(e))
        return SinkResult(success=True, message_id=message_id)

    def _send_sync(self, message: EmailMessageData) -> str:
        message_id = f"<{uuid.uuid4()}@{self.host}>"
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self.from_addr
        msg["To"] = message.to
        msg["Message-ID"] = message_id
        msg.set_content(message.text)
        msg.add_alternative(message.html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        return message_id


class InMemoryEmailSink(EmailSink):
    """Keeps messages in ``outbox``; used in tests and when no SMTP host is set."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessageData] = []

    async def send(self, message: EmailMessageData) -> SinkResult:
        self.outbox.append(message)
        return SinkResult(success=True, message_id=f"memory-{len(self.outbox)}")


def build_email_sink(settings: Settings) -> EmailSink:
    if not settings.smtp_host:
        return InMemoryEmailSink()
    return SmtpEmailSink(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password.get_secret_value(),
        use_tls=settings.smtp_use_tls,
        from_addr=settings.email_from,
        timeout=settings.sink_timeout_seconds,
    )


# =============================================================================
# Message builders
# =============================================================================


def password_reset_pin_email(to: str, pin: str, expiry_minutes: int) -> EmailMessageData:
    text = (
        f"Your password reset PIN is {pin}.\n\n"
        f"It expires in {expiry_minutes} minutes. "
        "If you did not request a reset, you can ignore this email."
    )
    html = (
        f"<p>Your password reset PIN is <strong>{escape(pin)}</strong>.</p>"
        f"<p>It expires in {expiry_minutes} minutes. "
        "If you did not request a reset, you can ignore this email.</p>"
    )
    return EmailMessageData(to=to, subject="Your password reset PIN", html=html, text=text)
