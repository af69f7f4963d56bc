"""Alert dispatcher: fans an alert out to every configured channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pixelwatch.alerts.channels import Channel
from pixelwatch.models.snapshot import AlertEvent

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def all_delivered(self) -> bool:
        return not self.failed


class AlertDispatcher:
    """Delivers to each channel independently; one failure never blocks the rest."""

    async def dispatch(self, event: AlertEvent, channels: list[Channel]) -> DispatchReport:
        report = DispatchReport()
        for i, channel in enumerate(channels):
            name = f"{channel.kind}#{i}"
            try:
                await channel.send(event)
                report.delivered.append(name)
            except Exception as e:
                logger.error("Error sending alert to %s channel: %s", name, e)
                report.failed[name] = str(e)
        if channels:
            logger.info(
                "Alert for %s (%s) delivered to %d/%d channel(s)",
                event.url, event.viewport, len(report.delivered), len(channels),
            )
        return report
