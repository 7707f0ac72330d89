"""Resolution pipeline aggregating geocode, time zone, prayer and weather lookups."""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Optional, Tuple, Union

import pytz

from geocoder import CityCandidate, Geocoder
from lookup_errors import CityLookupError, GeocodeNotFound, InvalidQuery, PrayerFailure, WeatherFailure
from prayer_times import PrayerTimes, PrayerTimesService
from timezone_resolver import TimezoneResolver
from weather import WeatherInfo, WeatherService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedLocation:
    city: str
    country: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_candidate(cls, candidate: CityCandidate) -> "ResolvedLocation":
        return cls(
            city=candidate.city,
            country=candidate.country,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
        )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class LookupResult:
    location: ResolvedLocation
    timezone: str
    prayer_times: PrayerTimes
    weather: WeatherInfo

    def local_time(self, now: Optional[datetime] = None) -> datetime:
        """Return *now* (default: the current instant) in the resolved time zone."""
        now = now or datetime.now(pytz.utc)
        return now.astimezone(pytz.timezone(self.timezone))


LookupTarget = Union[ResolvedLocation, str]


def parse_query(text: str) -> ResolvedLocation:
    """Split ``"City, Country"`` on its last comma; text without a country keeps it empty."""
    city, _, country = text.rpartition(",")
    if not city:
        city, country = country, ""
    return ResolvedLocation(city=city.strip(), country=country.strip())


class LookupPipeline:
    """Runs one lookup cycle: prayer and weather alongside the geocode-then-timezone chain."""

    def __init__(
        self,
        geocoder: Geocoder,
        timezone_resolver: TimezoneResolver,
        prayer_service: PrayerTimesService,
        weather_service: WeatherService,
        executor: Optional[Executor] = None,
    ) -> None:
        self.geocoder = geocoder
        self.timezone_resolver = timezone_resolver
        self.prayer_service = prayer_service
        self.weather_service = weather_service
        self._executor = executor

    async def lookup(self, target: LookupTarget) -> LookupResult:
        """Resolve *target* into a LookupResult or raise the first stage's CityLookupError."""
        location = parse_query(target) if isinstance(target, str) else target
        location = replace(location, city=location.city.strip(), country=location.country.strip())
        if not location.city or not location.country:
            raise InvalidQuery(f"City and country are required (city={location.city!r} country={location.country!r})")

        LOGGER.debug("Starting lookup for %s, %s", location.city, location.country)
        loop = asyncio.get_running_loop()
        prayer_task = loop.create_task(
            self._run_blocking(self.prayer_service.fetch_prayer_times, location.city, location.country)
        )
        weather_task = loop.create_task(self._run_blocking(self.weather_service.fetch_current_weather, location.city))
        geocode_task = loop.create_task(self._resolve_coordinates(location))
        chain_task = loop.create_task(self._resolve_timezone(geocode_task))
        tasks = [prayer_task, weather_task, geocode_task, chain_task]

        try:
            try:
                for next_done in asyncio.as_completed([prayer_task, weather_task, chain_task]):
                    await next_done
            except (PrayerFailure, WeatherFailure):
                # A missing city often makes these providers fail before the geocoder answers;
                # report it as not found rather than as an outage.
                await asyncio.wait([geocode_task])
                if not geocode_task.cancelled() and isinstance(geocode_task.exception(), GeocodeNotFound):
                    raise geocode_task.exception()
                raise
        except BaseException as exc:
            if isinstance(exc, CityLookupError):
                LOGGER.debug("Lookup for %s, %s failed at stage %s", location.city, location.country, exc.stage)
            for task in tasks:
                task.cancel()
            # Settle the remaining branches so their late errors are not reported as unretrieved.
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        resolved, timezone_name = chain_task.result()
        result = LookupResult(
            location=resolved,
            timezone=timezone_name,
            prayer_times=prayer_task.result(),
            weather=weather_task.result(),
        )
        LOGGER.info("Lookup completed for %s, %s (tz=%s)", resolved.city, resolved.country, timezone_name)
        return result

    async def _resolve_coordinates(self, location: ResolvedLocation) -> ResolvedLocation:
        if location.has_coordinates:
            return location
        coordinates = await self._run_blocking(self.geocoder.locate, location.city, location.country)
        if coordinates is None:
            raise GeocodeNotFound(f"No geocode match for {location.city}, {location.country}")
        latitude, longitude = coordinates
        LOGGER.debug("Geocoded %s, %s to lat=%s lon=%s", location.city, location.country, latitude, longitude)
        return replace(location, latitude=latitude, longitude=longitude)

    async def _resolve_timezone(self, geocode_task: asyncio.Task) -> Tuple[ResolvedLocation, str]:
        location = await geocode_task
        timezone_name = await self._run_blocking(self.timezone_resolver.resolve, location.latitude, location.longitude)
        return location, timezone_name

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
