"""Outbound notifications and the change feed."""

from taskboard.notifications.base import (
    ChatMessageData,
    ChatSink,
    EmailMessageData,
    EmailSink,
    SinkResult,
)
from taskboard.notifications.chat import InMemoryChatSink, SlackChatSink, build_chat_sink
from taskboard.notifications.dispatcher import NotificationDispatcher
from taskboard.notifications.email import InMemoryEmailSink, SmtpEmailSink, build_email_sink
from taskboard.notifications.feed import ChangeEvent, InMemoryChangeFeed, Subscription, change

__all__ = [
    "ChangeEvent",
    "ChatMessageData",
    "ChatSink",
    "EmailMessageData",
    "EmailSink",
    "InMemoryChangeFeed",
    "InMemoryChatSink",
    "InMemoryEmailSink",
    "NotificationDispatcher",
    "SinkResult",
    "SlackChatSink",
    "SmtpEmailSink",
    "Subscription",
    "build_chat_sink",
    "build_email_sink",
    "change",
]
