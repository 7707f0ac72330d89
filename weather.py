"""Current weather retrieval from the OpenWeatherMap API."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from lookup_errors import WeatherFailure

LOGGER = logging.getLogger(__name__)

OPENWEATHER_CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"
OPENWEATHER_ICON_URL = "https://openweathermap.org/img/wn/{icon}@2x.png"


@dataclass(frozen=True)
class WeatherInfo:
    """Snapshot of current weather conditions."""

    temperature_c: float
    description: str
    icon_id: str

    @property
    def temperature_f(self) -> float:
        return self.temperature_c * 9.0 / 5.0 + 32.0

    @property
    def icon_url(self) -> str:
        return OPENWEATHER_ICON_URL.format(icon=self.icon_id)


class WeatherService:
    """Thin wrapper around the OpenWeatherMap current conditions endpoint."""

    def __init__(self, api_key: str, language: str = "en", timeout: float = 10.0) -> None:
        self.api_key = api_key
        self.language = language
        self.timeout = timeout

    def fetch_current_weather(self, city: str) -> WeatherInfo:
        params = {
            "q": city,
            "appid": self.api_key,
            "units": "metric",
            "lang": self.language,
        }
        LOGGER.debug("Requesting weather for q=%s lang=%s", city, self.language)
        # Exception text from requests embeds the full URL, appid included; never interpolate it.
        try:
            response = requests.get(OPENWEATHER_CURRENT_URL, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise WeatherFailure(f"Weather request failed for {city}: {type(exc).__name__}") from exc
        LOGGER.debug("OpenWeatherMap response status: %s", response.status_code)
        if not response.ok:
            raise WeatherFailure(f"OpenWeatherMap returned HTTP {response.status_code} {response.reason}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise WeatherFailure("OpenWeatherMap returned a non-JSON body") from exc

        if not isinstance(payload, dict):
            raise WeatherFailure(f"Unexpected weather payload type {type(payload).__name__}")
        LOGGER.debug("OpenWeatherMap payload keys: %s", list(payload.keys()))

        # "cod" arrives as an int on success but as a string on some errors.
        try:
            code = int(payload.get("cod"))
        except (TypeError, ValueError):
            code = None
        if code != 200:
            raise WeatherFailure(f"OpenWeatherMap returned cod={payload.get('cod')}: {payload.get('message', '')}")

        return self._parse_current(payload)

    @staticmethod
    def _parse_current(payload: dict) -> WeatherInfo:
        main = payload.get("main") or {}
        conditions = payload.get("weather") or []
        temperature_raw = main.get("temp") if isinstance(main, dict) else None
        if temperature_raw is None:
            raise WeatherFailure("Weather payload missing temperature")
        try:
            temperature = float(temperature_raw)
        except (TypeError, ValueError) as exc:
            raise WeatherFailure(f"Invalid temperature value {temperature_raw!r}") from exc
        if not isinstance(conditions, list) or not conditions or not isinstance(conditions[0], dict):
            raise WeatherFailure("Weather payload missing conditions")

        first = conditions[0]
        return WeatherInfo(
            temperature_c=temperature,
            description=str(first.get("description", "")),
            icon_id=str(first.get("icon", "")),
        )
