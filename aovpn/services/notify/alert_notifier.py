"""
Alert Notifier

Posts escalation alerts to an HTTP webhook. Best effort: failures are
logged and never raised to the caller.
"""

import socket
from datetime import datetime, timezone
from typing import Any

import httpx

from aovpn.common.logging_setup import get_service_logger

logger = get_service_logger("notify")


class AlertNotifier:
    """Sends JSON alerts to a webhook"""

    def __init__(
        self,
        webhook_url: str = "",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def _build_payload(
        self,
        event: str,
        message: str,
        details: dict[str, Any] | None,
    ) -> dict[str, Any]:
        return {
            "event": event,
            "message": message,
            "host": socket.gethostname(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }

    async def send(
        self,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """
        Send an alert.

        Returns:
            True if the webhook accepted the alert
        """
        if not self.enabled:
            logger.debug(f"Alerts disabled, not sending {event}")
            return False

        payload = self._build_payload(event, message, details)

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout_s,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send alert {event}: {e}")
            return False

        logger.info(f"Alert sent: {event}")
        return True

    async def on_escalation(self, service_name: str, message: str) -> None:
        """Supervisor escalation hook"""
        await self.send(
            "service_restart_escalated",
            message,
            {"service_name": service_name},
        )
