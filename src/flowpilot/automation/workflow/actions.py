"""Outbound message sending for ACTION nodes.

Senders signal failure by raising `MessageSendError`; they never swallow a
failed send.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

import requests
from pydantic import BaseModel

from .conditions import MISSING, resolve_path

if TYPE_CHECKING:
    from flowpilot.automation.config import AutomationSettings

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")


class MessageSendError(RuntimeError):
    pass


class MessageRequest(BaseModel):
    to: str
    body: str
    template: str | None = None


class SendResult(BaseModel):
    ok: bool
    id: str


class MessageSender(Protocol):
    channel: str

    async def send_message(self, request: MessageRequest) -> SendResult: ...


class MockMessageSender:
    """Simulated sender: logs the message and acknowledges it after a short delay."""

    def __init__(self, *, channel: str = "whatsapp", delay_ms: int = 100) -> None:
        self.channel = channel
        self._delay_ms = delay_ms

    async def send_message(self, request: MessageRequest) -> SendResult:
        logger.info(
            "[MOCK] Sending message",
            extra={"channel": self.channel, **request.model_dump(exclude_none=True)},
        )
        if self._delay_ms:
            await asyncio.sleep(self._delay_ms / 1000)
        return SendResult(ok=True, id=f"msg_{int(time.time() * 1000)}")


class WebhookMessageSender:
    """POST messages as JSON to an HTTP endpoint.

    The endpoint is expected to answer 2xx with ``{"ok": bool, "id": str}``;
    ``id`` may also come back as ``messageId``.
    """

    def __init__(
        self,
        *,
        url: str,
        token: str = "",
        channel: str = "whatsapp",
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook URL is required")
        self.channel = channel
        self._url = url
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Content-Type": "application/json", "User-Agent": "flowpilot"}
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _post(self, request: MessageRequest) -> SendResult:
        payload = {"channel": self.channel, **request.model_dump(exclude_none=True)}
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise MessageSendError(f"Message send to {request.to} failed: {e}") from e

        try:
            data: Any = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if data.get("ok") is False:
            reason = data.get("error") or "rejected by provider"
            raise MessageSendError(f"Message send to {request.to} failed: {reason}")

        message_id = data.get("id") or data.get("messageId") or ""
        logger.info(
            "Message sent", extra={"channel": self.channel, "to": request.to, "id": message_id}
        )
        return SendResult(ok=True, id=str(message_id))

    async def send_message(self, request: MessageRequest) -> SendResult:
        return await asyncio.to_thread(self._post, request)

    def close(self) -> None:
        self._session.close()


def build_message_sender(settings: AutomationSettings) -> MessageSender:
    if settings.message_webhook_url.strip():
        return WebhookMessageSender(
            url=settings.message_webhook_url.strip(),
            token=settings.message_webhook_token,
            channel=settings.message_channel,
            timeout_seconds=settings.message_timeout_seconds,
        )
    return MockMessageSender(channel=settings.message_channel, delay_ms=settings.mock_send_delay_ms)


def resolve_recipient(to_field: str, context: Mapping[str, Any]) -> str:
    """Resolve ``toField`` against the trigger context.

    Falls back to the literal value when the path is absent or does not hold a
    scalar, so a phone number can also be configured directly.
    """

    value = resolve_path(context, to_field)
    if value is MISSING or isinstance(value, Mapping | list | bool) or value is None:
        return to_field
    return str(value)


def render_template(text: str, context: Mapping[str, Any]) -> str:
    """Substitute ``{{ dotted.path }}`` placeholders; unknown paths are left as-is."""

    def _replace(match: re.Match[str]) -> str:
        value = resolve_path(context, match.group(1))
        if value is MISSING or value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_replace, text)
