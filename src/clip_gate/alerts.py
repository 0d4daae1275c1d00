"""Operator alerts.

A disclosure hard fail means a fully produced clip cannot ship, so the
producer pages an operator. Alert delivery never raises: an unreachable
alert channel must not break production.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx

from clip_gate.logging import get_logger

logger = get_logger(__name__)


class AlertLevel(str, Enum):
    """Alert severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class OperatorAlerter(ABC):
    """Delivers alerts to a human operator."""

    @abstractmethod
    async def alert(self, level: AlertLevel, message: str, context: dict[str, Any] | None = None) -> None:
        """Send one alert. Implementations log delivery failures instead of raising."""


class LoggingAlerter(OperatorAlerter):
    """Writes alerts to the log. The default when no channel is configured."""

    async def alert(self, level: AlertLevel, message: str, context: dict[str, Any] | None = None) -> None:
        extra = {"event": "operator_alert", "alert_level": AlertLevel(level).value, **(context or {})}
        if level == AlertLevel.CRITICAL:
            logger.critical(message, extra=extra)
        elif level == AlertLevel.WARNING:
            logger.warning(message, extra=extra)
        else:
            logger.info(message, extra=extra)


class WebhookAlerter(OperatorAlerter):
    """Posts alerts as JSON to a webhook (chat bot, incident tool, ...).

    Every alert is also logged, so a delivery failure loses nothing.

    Args:
        url: Webhook endpoint
        timeout: Seconds before the POST is abandoned
    """

    _PREFIX = {
        AlertLevel.INFO: "INFO",
        AlertLevel.WARNING: "WARNING",
        AlertLevel.CRITICAL: "CRITICAL",
    }

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self._fallback = LoggingAlerter()

    async def alert(self, level: AlertLevel, message: str, context: dict[str, Any] | None = None) -> None:
        level = AlertLevel(level)
        await self._fallback.alert(level, message, context)
        payload = {
            "level": level.value,
            "text": f"{self._PREFIX[level]}\n{message}",
            "context": context or {},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Alert webhook unreachable", extra={"error": str(e), "url": self.url})


def get_alerter(webhook_url: str | None = None) -> OperatorAlerter:
    """Webhook alerter when a URL is configured, logging otherwise."""
    if webhook_url:
        return WebhookAlerter(webhook_url)
    return LoggingAlerter()
