"""Stage-tagged error taxonomy for city lookups."""
from __future__ import annotations

from typing import Mapping, Optional


class CityLookupError(Exception):
    """Base class for every failure a lookup cycle can end with."""

    stage = "lookup"
    message_key = "failed_to_load"
    default_message = "Failed to load data. Please check your internet connection or try again later."

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.default_message)
        self.detail = detail


class InvalidQuery(CityLookupError):
    stage = "input"
    message_key = "invalid_city"
    default_message = "Please enter a valid city name."


class GeocodeNotFound(CityLookupError):
    stage = "geocode"
    message_key = "city_not_found"
    default_message = "City not found. Please check the city name and try again."


class GeocodeFailure(CityLookupError):
    stage = "geocode"
    message_key = "geocode_failed"
    default_message = "Unable to reach the location service. Please try again later."


class TimezoneFailure(CityLookupError):
    stage = "timezone"
    message_key = "timezone_failed"
    default_message = "Unable to fetch the time zone for this city."


class PrayerFailure(CityLookupError):
    stage = "prayer"
    message_key = "prayer_failed"
    default_message = "Unable to fetch prayer times. Please try again."


class WeatherFailure(CityLookupError):
    stage = "weather"
    message_key = "weather_failed"
    default_message = "Unable to fetch the weather for this city."


def describe_error(error: CityLookupError, strings: Optional[Mapping[str, str]] = None) -> str:
    """Return the user-facing message for *error*, preferring translated *strings*."""
    strings = strings or {}
    return str(strings.get(error.message_key, error.default_message))
