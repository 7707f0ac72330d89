"""Entry point and state coordinator for the city lookup service."""
from __future__ import annotations

import asyncio
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, List, Mapping, Optional, Tuple

from app_config import AppConfig, load_config
from geocoder import CityCandidate, Geocoder
from lookup_errors import CityLookupError, describe_error
from pipeline import LookupPipeline, LookupResult, LookupTarget, ResolvedLocation
from prayer_times import PrayerTimesService
from scheduler import LatestJobSlot
from suggestions import SuggestionDebouncer
from timezone_resolver import TimezoneResolver
from weather import WeatherService

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppState:
    """Immutable snapshot of everything the view renders."""

    version: int = 0
    query: str = ""
    suggestions: Tuple[CityCandidate, ...] = field(default_factory=tuple)
    result: Optional[LookupResult] = None
    error: Optional[CityLookupError] = None
    loading: bool = False


StateListener = Callable[[AppState], None]


def build_pipeline(config: AppConfig, executor: Optional[ThreadPoolExecutor] = None) -> LookupPipeline:
    return LookupPipeline(
        geocoder=Geocoder(config.user_agent, timeout=config.request_timeout),
        timezone_resolver=TimezoneResolver(config.timezone_api_key, timeout=config.request_timeout),
        prayer_service=PrayerTimesService(
            method=config.prayer_method,
            school=config.prayer_school,
            timeout=config.request_timeout,
        ),
        weather_service=WeatherService(
            config.weather_api_key,
            language=config.language,
            timeout=config.request_timeout,
        ),
        executor=executor,
    )


class CityLookupApp:
    """Owns the application state and coordinates suggestions and lookup cycles.

    Must be created inside a running event loop. Every lookup cycle is tagged
    with a sequence number; a cycle publishes only while it is still the most
    recently started one.
    """

    def __init__(
        self,
        config: AppConfig,
        pipeline: Optional[LookupPipeline] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.config = config
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4)
        self.pipeline = pipeline or build_pipeline(config, self._executor)
        self._slot = LatestJobSlot()
        self.debouncer = SuggestionDebouncer(
            self.pipeline.geocoder,
            self._slot,
            self._handle_suggestions,
            quiet_interval=config.debounce_seconds,
            limit=config.suggestion_limit,
            executor=self._executor,
        )
        self._state = AppState()
        self._listeners: List[StateListener] = []
        self._sequence = 0
        self._active_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> AppState:
        return self._state

    def on_state_change(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    def type_query(self, text: str) -> None:
        """Record a keystroke-level edit of the query and refresh suggestions."""
        self._publish(query=text)
        self.debouncer.on_query_changed(text)

    def select_suggestion(self, candidate: CityCandidate) -> asyncio.Task:
        """Commit a suggestion: clear the list and start a lookup for it."""
        self.debouncer.cancel()
        self._publish(query=candidate.city, suggestions=())
        return self.commit(ResolvedLocation.from_candidate(candidate))

    def commit(self, target: LookupTarget) -> asyncio.Task:
        """Start a lookup cycle, cancelling the one still in flight."""
        if self._active_task is not None and not self._active_task.done():
            LOGGER.debug("Cancelling superseded lookup cycle")
            self._active_task.cancel()
        self._active_task = asyncio.get_running_loop().create_task(self.lookup(target))
        return self._active_task

    async def lookup(self, target: LookupTarget) -> AppState:
        """Run one lookup cycle and publish its outcome unless a newer cycle started."""
        self._sequence += 1
        sequence = self._sequence
        self._publish(result=None, error=None, loading=True)

        result: Optional[LookupResult] = None
        error: Optional[CityLookupError] = None
        try:
            result = await self.pipeline.lookup(target)
        except CityLookupError as exc:
            LOGGER.error("Lookup cycle %d failed at stage %s: %s", sequence, exc.stage, exc)
            error = exc
        except BaseException:
            if sequence == self._sequence:
                self._publish(loading=False)
            raise

        if sequence != self._sequence:
            LOGGER.debug("Discarding stale lookup cycle %d (current=%d)", sequence, self._sequence)
            return self._state
        return self._publish(result=result, error=error, loading=False)

    def message_for(self, error: CityLookupError, strings: Optional[Mapping[str, str]] = None) -> str:
        return describe_error(error, strings)

    async def close(self) -> None:
        self.debouncer.cancel()
        if self._active_task is not None and not self._active_task.done():
            self._active_task.cancel()
        self._slot.shutdown()
        # APScheduler defers its shutdown to the loop.
        await asyncio.sleep(0)
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    def _handle_suggestions(self, query: str, candidates: List[CityCandidate]) -> None:
        LOGGER.debug("Publishing %d suggestions for %r", len(candidates), query)
        self._publish(suggestions=tuple(candidates))

    def _publish(self, **changes) -> AppState:
        self._state = replace(self._state, version=self._state.version + 1, **changes)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state


def format_result(result: LookupResult) -> str:
    location = result.location
    lines = [
        f"{location.city}, {location.country} ({location.latitude}, {location.longitude})",
        f"Time zone: {result.timezone} (local time {result.local_time():%H:%M})",
    ]
    lines.extend(f"{name}: {value}" for name, value in result.prayer_times.as_dict().items())
    next_prayer = result.prayer_times.next_prayer(result.timezone)
    if next_prayer is not None:
        lines.append(f"Next prayer: {next_prayer.name} at {next_prayer.time:%H:%M}")
    lines.append(f"Weather: {result.weather.temperature_c}°C - {result.weather.description}")
    return "\n".join(lines)


async def _run_once(config: AppConfig, query: str) -> int:
    app = CityLookupApp(config)
    try:
        state = await app.commit(query)
    finally:
        await app.close()
    if state.error is not None:
        print(app.message_for(state.error), file=sys.stderr)
        return 1
    if state.result is None:
        return 1
    print(format_result(state.result))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if not argv:
        print('usage: main.py "<city>, <country>" | <city> <country>', file=sys.stderr)
        return 2
    query = argv[0] if len(argv) == 1 else f"{argv[0]}, {' '.join(argv[1:])}"
    return asyncio.run(_run_once(load_config(), query))


if __name__ == "__main__":
    sys.exit(main())
