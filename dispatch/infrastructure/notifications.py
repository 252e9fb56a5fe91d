"""
Best-effort customer notifications.

Delivery happens after the HTTP response (FastAPI ``BackgroundTasks``) and
never affects the state transition that triggered it: every failure is
logged at WARNING and swallowed.  Without ``notify_webhook_url`` the
event is only logged.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from dispatch.config import settings

logger = logging.getLogger(__name__)

RIDE_ACCEPTED = "ride.accepted"
RIDE_CANCELLED = "ride.cancelled"
RIDE_NO_SHOW = "ride.no_show"
RIDE_COMPLETED = "ride.completed"


class Notifier:
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.webhook_url = (
            settings.notify_webhook_url if webhook_url is None else webhook_url
        )
        self.timeout = (
            settings.notify_timeout_seconds
            if timeout_seconds is None
            else timeout_seconds
        )

    async def send(self, event: str, payload: dict[str, Any]) -> bool:
        """Deliver *event*; returns False (never raises) when delivery failed."""
        if not self.webhook_url:
            logger.info("Notification %s: %s", event, payload)
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.webhook_url, json={"event": event, **payload}
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification %s failed: %s", event, exc)
            return False
        return True


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
