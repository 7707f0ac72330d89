"""Coordinate to IANA time zone resolution via the TimeZoneDB API."""
from __future__ import annotations

import logging

import pytz
import requests

from lookup_errors import TimezoneFailure

LOGGER = logging.getLogger(__name__)

TIMEZONEDB_URL = "https://api.timezonedb.com/v2.1/get-time-zone"


class TimezoneResolver:
    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def resolve(self, latitude: float, longitude: float) -> str:
        """Return the IANA zone name for the given position."""
        params = {
            "key": self.api_key,
            "by": "position",
            "lat": latitude,
            "lng": longitude,
            "format": "json",
        }
        LOGGER.debug("Requesting timezone for lat=%s lng=%s", latitude, longitude)
        # Exception text from requests embeds the full URL, API key included; never interpolate it.
        try:
            response = requests.get(TIMEZONEDB_URL, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TimezoneFailure(f"Timezone request failed: {type(exc).__name__}") from exc
        LOGGER.debug("Timezone response status: %s", response.status_code)
        if not response.ok:
            raise TimezoneFailure(f"TimeZoneDB returned HTTP {response.status_code} {response.reason}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TimezoneFailure("TimeZoneDB returned a non-JSON body") from exc

        if not isinstance(payload, dict) or payload.get("status") != "OK":
            message = payload.get("message") if isinstance(payload, dict) else None
            raise TimezoneFailure(f"TimeZoneDB returned a failure status: {message or payload!r}")

        zone_name = str(payload.get("zoneName") or "").strip()
        if not zone_name:
            raise TimezoneFailure("TimeZoneDB response missing zoneName")
        try:
            pytz.timezone(zone_name)
        except pytz.UnknownTimeZoneError as exc:
            raise TimezoneFailure(f"Unknown timezone {zone_name!r}") from exc

        LOGGER.debug("Resolved timezone %s for lat=%s lng=%s", zone_name, latitude, longitude)
        return zone_name
