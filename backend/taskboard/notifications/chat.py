"""Chat sinks and task-lifecycle threading.

Posts about one task share a thread while they happen on the same UTC
calendar day as the thread's first message; the first post of a new day
starts a fresh thread.
"""

from datetime import datetime

import httpx
import structlog

from taskboard.config import Settings
from taskboard.notifications.base import ChatMessageData, ChatSink, SinkResult
from taskboard.utils.time import ensure_aware, utcnow

logger = structlog.get_logger()


class SlackChatSink(ChatSink):
    """Posts through the Slack Web API ``chat.postMessage`` method."""

    def __init__(self, token: str, base_url: str = "https://slack.com/api", timeout: float = 10.0):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def post(self, message: ChatMessageData) -> SinkResult:
        payload: dict[str, str] = {"channel": message.channel, "text": message.text}
        if message.thread_ref:
            payload["thread_ts"] = message.thread_ref

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat.postMessage",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.token}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.error("chat_post_timeout", channel=message.channel)
            return SinkResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.error("chat_post_failed", channel=message.channel, error=str(e))
            return SinkResult(success=False, error=str(e))

        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            logger.error("chat_post_rejected", channel=message.channel, error=error)
            return SinkResult(success=False, error=error)

        ts = data.get("ts")
        return SinkResult(success=True, message_id=ts, thread_ref=message.thread_ref or ts)


class InMemoryChatSink(ChatSink):
    """Records posts in ``messages``; thread refs are sequential fake timestamps."""

    def __init__(self) -> None:
        self.messages: list[ChatMessageData] = []

    async def post(self, message: ChatMessageData) -> SinkResult:
        self.messages.append(message)
        ts = f"{len(self.messages)}.000000"
        return SinkResult(success=True, message_id=ts, thread_ref=message.thread_ref or ts)


def build_chat_sink(settings: Settings) -> ChatSink | None:
    """Slack sink when a bot token is configured, otherwise chat is disabled."""
    token = settings.slack_bot_token.get_secret_value()
    if not token:
        return None
    return SlackChatSink(
        token=token,
        base_url=settings.slack_api_base_url,
        timeout=settings.sink_timeout_seconds,
    )


def should_use_thread(
    thread_ref: str | None,
    thread_started_at: datetime | None,
    now: datetime | None = None,
) -> bool:
    """Reply in the existing thread only on the UTC day it was started."""
    if not thread_ref or thread_started_at is None:
        return False
    now = now or utcnow()
    return ensure_aware(thread_started_at).date() == ensure_aware(now).date()


# Plain-text lines for task lifecycle posts
TASK_EVENT_TEMPLATES = {
    "created": "{actor} created task *{title}*",
    "moved": "{actor} moved *{title}* to {stage}",
    "approval_requested": "*{title}* is ready for approval",
    "approved": "{actor} approved *{title}*",
    "rejected": "{actor} rejected *{title}* and returned it to {stage}",
}


def task_event_text(event: str, title: str, actor: str, stage: str | None = None, reason: str | None = None) -> str:
    text = TASK_EVENT_TEMPLATES[event].format(actor=actor, title=title, stage=stage or "")
    if reason:
        text += f"\nReason: {reason}"
    return text
