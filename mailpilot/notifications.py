"""Notification dispatch used for re-auth prompts, escalations and announcements."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, Field

from .config import MailpilotConfig, load_config
from .contracts import utcnow

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    to: str
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: datetime = Field(default_factory=utcnow)


class Notifier(Protocol):
    """Sends a templated message to one recipient."""

    async def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        """Deliver ``template`` rendered with ``data`` to ``to``."""


class LoggingNotifier:
    """Writes notifications to the log instead of delivering them."""

    async def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        logger.info(f"Notification {template} -> {to}: {data}")


class InMemoryNotifier:
    """Keeps sent notifications in a list. Useful for tests."""

    def __init__(self) -> None:
        self.sent: List[Notification] = []
        self.fail_with: Optional[Exception] = None

    async def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(Notification(to=to, template=template, data=dict(data)))

    def templates(self) -> List[str]:
        return [n.template for n in self.sent]


class WebhookNotifier:
    """Posts notifications as JSON to a delivery service."""

    def __init__(
        self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, to: str, template: str, data: Dict[str, Any]) -> None:
        response = await self._client.post(
            self.url, json={"to": to, "template": template, "data": data}
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


async def dispatch(
    notifier: Notifier, to: str, template: str, data: Dict[str, Any]
) -> bool:
    """Send without letting a delivery failure reach the caller.

    State transitions are committed before notifying, so a failed send is
    logged and reported through the return value only.
    """
    try:
        await notifier.send(to, template, data)
    except Exception as e:
        logger.error(f"Failed to send {template} notification to {to}: {e}")
        return False
    return True


def get_notifier(config: Optional[MailpilotConfig] = None) -> Notifier:
    """Factory function to get the configured notifier."""

    config = config or load_config()
    backend = config.notifications.backend
    if backend == "log":
        return LoggingNotifier()
    if backend == "webhook":
        if not config.notifications.webhook_url:
            raise ValueError("notifications.webhook_url is required for webhook backend")
        return WebhookNotifier(config.notifications.webhook_url)
    raise ValueError(f"Unsupported notification backend: {backend}")
