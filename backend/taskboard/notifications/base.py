"""Sink interfaces for outbound notifications.

Sinks are fire-and-forget from the command's point of view. Implementations
report failures through ``SinkResult`` rather than raising.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class SinkResult:
    """Outcome of a single sink call.

    Attributes:
        success: Whether the message was accepted
        message_id: Provider message id (email) or message timestamp (chat)
        thread_ref: Thread the message belongs to (chat only)
        error: Failure description when ``success`` is False
    """
    success: bool
    message_id: str | None = None
    thread_ref: str | None = None
    error: str | None = None


@dataclass
class EmailMessageData:
    to: str
    subject: str
    html: str
    text: str


@dataclass
class ChatMessageData:
    channel: str
    text: str
    thread_ref: str | None = None


class EmailSink(ABC):
    """Outbound email."""

    @abstractmethod
    async def send(self, message: EmailMessageData) -> SinkResult:
        """Deliver one message."""
        pass


class ChatSink(ABC):
    """Outbound chat posts."""

    @abstractmethod
    async def post(self, message: ChatMessageData) -> SinkResult:
        """Post a message, optionally as a reply in ``thread_ref``."""
        pass
