# backend/app/services/notify.py
"""Outbound webhook for buyer-facing notifications and viewer broadcasts."""
from typing import Optional

import httpx

from backend.app.core.events import Event
from backend.app.core.logging import get_logger

logger = get_logger(__name__)


class WebhookNotifier:
    """
    POSTs {"event": <name>, "data": <payload>} to the configured URL.

    Without a URL every send is a no-op. Failures are logged and reported as
    False; they never reach the ledgers.
    """

    def __init__(self, url: Optional[str], timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, event: Event) -> bool:
        if not self.enabled:
            logger.debug("Notification webhook not configured, skip", event_name=event.name)
            return False

        body = {"event": event.name, "data": event.model_dump(mode="json")}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=body)
                response.raise_for_status()
                return True
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Notification webhook rejected event",
                event_name=event.name,
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
        except httpx.TimeoutException:
            logger.warning("Notification webhook timeout", event_name=event.name)
        except httpx.RequestError as e:
            logger.warning("Notification webhook request error", event_name=event.name, error=str(e))
        return False
