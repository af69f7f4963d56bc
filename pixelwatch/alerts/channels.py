"""Notification channels: one class per delivery kind."""

from __future__ import annotations

import asyncio
import logging
import uuid
from email.message import EmailMessage
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import httpx

from pixelwatch.errors import ChannelError

if TYPE_CHECKING:
    from pixelwatch.models.snapshot import AlertEvent

logger = logging.getLogger(__name__)

ALERT_TITLE = "Visual Regression Detected"


def _pct(ratio: float) -> str:
    return f"{ratio * 100:.2f}%"


class Channel:
    """A destination for alert events. ``send`` raises ChannelError on failure."""

    kind = "channel"

    async def send(self, event: AlertEvent) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class _WebhookChannel(Channel):
    """Channels that POST a JSON body to a URL."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.timeout = timeout
        self._transport = transport

    def payload(self, event: AlertEvent) -> dict[str, Any]:
        raise NotImplementedError

    async def send(self, event: AlertEvent) -> None:
        body = self.payload(event)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=body, headers=self.headers)
        except httpx.HTTPError as e:
            raise ChannelError(f"{self.kind} webhook request failed: {e}") from e
        if resp.status_code >= 400:
            raise ChannelError(f"{self.kind} webhook returned HTTP {resp.status_code}")
        logger.debug("%s webhook delivered (HTTP %d)", self.kind, resp.status_code)


class SlackChannel(_WebhookChannel):
    """Slack incoming webhook, rendered as message blocks."""

    kind = "slack"

    def payload(self, event: AlertEvent) -> dict[str, Any]:
        return {
            "text": f"Visual regression detected! {_pct(event.diff_ratio)} difference",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": ALERT_TITLE, "emoji": True},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*URL:*\n{event.url}"},
                        {"type": "mrkdwn", "text": f"*Viewport:*\n{event.viewport}"},
                    ],
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Selector:*\n`{event.selector}`"},
                        {"type": "mrkdwn", "text": f"*Difference:*\n{_pct(event.diff_ratio)}"},
                    ],
                },
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"Detected at {event.detected_at} by pixelwatch"},
                    ],
                },
            ],
        }


class TeamsChannel(_WebhookChannel):
    """Microsoft Teams incoming webhook (MessageCard)."""

    kind = "teams"

    def payload(self, event: AlertEvent) -> dict[str, Any]:
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": "0076D7",
            "summary": ALERT_TITLE,
            "sections": [
                {
                    "activityTitle": ALERT_TITLE,
                    "facts": [
                        {"name": "URL", "value": event.url},
                        {"name": "Viewport", "value": event.viewport},
                        {"name": "Selector", "value": event.selector},
                        {"name": "Difference", "value": _pct(event.diff_ratio)},
                        {"name": "Detected At", "value": event.detected_at},
                    ],
                    "markdown": True,
                }
            ],
        }


class GenericWebhookChannel(_WebhookChannel):
    """Plain JSON envelope for custom integrations."""

    kind = "generic"

    def payload(self, event: AlertEvent) -> dict[str, Any]:
        return {
            "event": "visual-regression-detected",
            "data": event.model_dump(),
            "timestamp": event.detected_at,
        }


class EmailChannel(Channel):
    """Enqueues an email into an outbox spool picked up by a mail relay."""

    kind = "email"

    def __init__(self, recipients: list[str], outbox_dir: Path, sender: str = "pixelwatch@localhost"):
        self.recipients = recipients
        self.outbox_dir = Path(outbox_dir)
        self.sender = sender

    def build_message(self, event: AlertEvent) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[pixelwatch] {ALERT_TITLE}: {event.url} ({event.viewport})"
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        lines = [
            f"{ALERT_TITLE}",
            "",
            f"URL:         {event.url}",
            f"Viewport:    {event.viewport}",
            f"Selector:    {event.selector}",
            f"Difference:  {_pct(event.diff_ratio)}",
            f"Detected at: {event.detected_at}",
        ]
        if event.diff_image_ref:
            lines.append(f"Diff image:  {event.diff_image_ref}")
        msg.set_content("\n".join(lines))
        return msg

    def _enqueue(self, msg: EmailMessage) -> Path:
        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        path = self.outbox_dir / f"{uuid.uuid4().hex}.eml"
        path.write_bytes(bytes(msg))
        return path

    async def send(self, event: AlertEvent) -> None:
        msg = self.build_message(event)
        try:
            path = await asyncio.to_thread(self._enqueue, msg)
        except OSError as e:
            raise ChannelError(f"email enqueue failed: {e}") from e
        logger.debug("Queued alert email for %d recipient(s) at %s", len(self.recipients), path)
