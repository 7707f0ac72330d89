"""Fetching daily prayer times by city from the AlAdhan API."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

import pytz
import requests

from lookup_errors import PrayerFailure

LOGGER = logging.getLogger(__name__)

ALADHAN_TIMINGS_BY_CITY_URL = "https://api.aladhan.com/v1/timingsByCity"
PRAYER_ORDER = ["Fajr", "Dhuhr", "Asr", "Maghrib", "Isha"]


@dataclass
class PrayerInfo:
    name: str
    time: datetime


@dataclass(frozen=True)
class PrayerTimes:
    """The five daily timings exactly as the provider reported them."""

    fajr: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str

    def as_dict(self) -> Dict[str, str]:
        return {name: getattr(self, name.lower()) for name in PRAYER_ORDER}

    def localized(self, timezone_name: str, on_date: Optional[date] = None) -> List[PrayerInfo]:
        """Return timezone-aware datetimes for each prayer on *on_date*."""
        tzinfo = pytz.timezone(timezone_name)
        on_date = on_date or datetime.now(tzinfo).date()
        return [
            PrayerInfo(name=name, time=_parse_time_string(value, tzinfo, on_date))
            for name, value in self.as_dict().items()
        ]

    def next_prayer(self, timezone_name: str, now: Optional[datetime] = None) -> Optional[PrayerInfo]:
        """Return the next upcoming prayer relative to *now*."""
        now = now or datetime.now(pytz.timezone(timezone_name))
        for info in self.localized(timezone_name, now.date()):
            if info.time > now:
                return info
        return None


class PrayerTimesService:
    """Fetches prayer times from the AlAdhan API."""

    def __init__(self, method: int = 2, school: int = 0, timeout: float = 10.0) -> None:
        self.method = method
        self.school = school
        self.timeout = timeout

    def fetch_prayer_times(self, city: str, country: str) -> PrayerTimes:
        params = {
            "city": city,
            "country": country,
            "method": self.method,
            "school": self.school,
        }
        LOGGER.debug("Requesting prayer times by city with params=%s", params)
        try:
            response = requests.get(ALADHAN_TIMINGS_BY_CITY_URL, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PrayerFailure(f"Prayer times request failed for {city}, {country}: {type(exc).__name__}") from exc
        LOGGER.debug("Prayer times response status: %s", response.status_code)
        if not response.ok:
            raise PrayerFailure(f"AlAdhan returned HTTP {response.status_code} {response.reason}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise PrayerFailure("AlAdhan returned a non-JSON body") from exc

        if not isinstance(payload, dict) or payload.get("code") != 200:
            status = payload.get("status") if isinstance(payload, dict) else payload
            raise PrayerFailure(f"Invalid response from AlAdhan API: {status}")

        data = payload.get("data") or {}
        timings = data.get("timings") if isinstance(data, dict) else None
        if not isinstance(timings, dict):
            raise PrayerFailure("AlAdhan response missing timings")
        missing = [name for name in PRAYER_ORDER if not timings.get(name)]
        if missing:
            raise PrayerFailure(f"AlAdhan response missing timings for {', '.join(missing)}")

        LOGGER.debug("Prayer timings for %s, %s: %s", city, country, {name: timings[name] for name in PRAYER_ORDER})
        return PrayerTimes(
            fajr=str(timings["Fajr"]),
            dhuhr=str(timings["Dhuhr"]),
            asr=str(timings["Asr"]),
            maghrib=str(timings["Maghrib"]),
            isha=str(timings["Isha"]),
        )


def _parse_time_string(time_str: str, tzinfo: pytz.BaseTzInfo, target_date: date) -> datetime:
    # AlAdhan may append a zone suffix such as "05:10 (EET)".
    clean = "".join(ch for ch in time_str if ch.isdigit() or ch == ":")[:5]
    if len(clean) != 5:
        clean = "00:00"
    hour, minute = map(int, clean.split(":"))
    naive = datetime(target_date.year, target_date.month, target_date.day, hour=hour, minute=minute)
    return tzinfo.localize(naive)
