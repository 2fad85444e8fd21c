from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class AlertDispatchError(Exception):
    """Raised when a notification could not be handed to the delivery service."""


class NotificationSink(Protocol):
    async def notify(
        self,
        *,
        recipient_role: str,
        title: str,
        message: str,
        severity: str,
        metadata: dict[str, Any],
    ) -> None: ...


class HttpNotificationSink:
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self._client = client

    async def notify(
        self,
        *,
        recipient_role: str,
        title: str,
        message: str,
        severity: str,
        metadata: dict[str, Any],
    ) -> None:
        payload = {
            "recipient_role": recipient_role,
            "title": title,
            "message": message,
            "severity": severity,
            "metadata": metadata,
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}/notifications", json=payload, headers=self.headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(
                        f"{self.base_url}/notifications", json=payload, headers=self.headers
                    )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AlertDispatchError(f"notification delivery failed: {exc}") from exc


class LoggingNotificationSink:
    """Used when no notification service is configured."""

    async def notify(
        self,
        *,
        recipient_role: str,
        title: str,
        message: str,
        severity: str,
        metadata: dict[str, Any],
    ) -> None:
        logger.warning(
            "notification recipient_role=%s severity=%s title=%s message=%s",
            recipient_role,
            severity,
            title,
            message,
        )
