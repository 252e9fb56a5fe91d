"""
Reverse time-zone lookup for pickup coordinates (TimeZoneDB).

Used only at the read boundary (admin listing) to show scheduled times in
the pickup's local zone.  Without an API key, or when the call fails, the
configured ``local_timezone`` is returned instead.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from dispatch.config import settings

logger = logging.getLogger(__name__)


class TimezoneLookup:
    def __init__(
        self,
        api_key: Optional[str] = None,
        fallback: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = settings.timezonedb_api_key if api_key is None else api_key
        self.fallback = fallback or settings.local_timezone or "UTC"
        self.timeout = (
            settings.timezone_lookup_timeout_seconds
            if timeout_seconds is None
            else timeout_seconds
        )
        self._cache: dict[tuple[float, float], str] = {}

    async def zone_for(self, lat: float, lng: float) -> str:
        key = (round(lat, 2), round(lng, 2))
        if key in self._cache:
            return self._cache[key]
        if not self.api_key:
            return self.fallback

        zone = self.fallback
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    settings.timezonedb_url,
                    params={
                        "key": self.api_key,
                        "format": "json",
                        "by": "position",
                        "lat": lat,
                        "lng": lng,
                    },
                )
                resp.raise_for_status()
                zone = resp.json().get("zoneName") or self.fallback
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Time zone lookup failed for %s,%s: %s", lat, lng, exc)
            return zone
        self._cache[key] = zone
        return zone


_lookup: Optional[TimezoneLookup] = None


def get_timezone_lookup() -> TimezoneLookup:
    """Process-wide lookup so the coordinate cache outlives a request."""
    global _lookup
    if _lookup is None:
        _lookup = TimezoneLookup()
    return _lookup
