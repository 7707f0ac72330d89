"""Debounced autocomplete suggestions driven by keystroke input."""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from typing import Callable, List, Optional

from geocoder import CityCandidate, Geocoder
from lookup_errors import GeocodeFailure
from scheduler import LatestJobSlot

LOGGER = logging.getLogger(__name__)

DEFAULT_QUIET_INTERVAL = 0.3


class SuggestionDebouncer:
    """Turn a stream of query edits into geocoder calls for the latest edit only.

    Every edit bumps a generation counter. A response is published only if no
    newer edit arrived while it was in flight, so the published suggestions
    always belong to the last query typed.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        slot: LatestJobSlot,
        on_suggestions: Callable[[str, List[CityCandidate]], None],
        *,
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        limit: int = 5,
        executor: Optional[Executor] = None,
    ) -> None:
        self._geocoder = geocoder
        self._slot = slot
        self._on_suggestions = on_suggestions
        self._quiet_interval = quiet_interval
        self._limit = limit
        self._executor = executor
        self._generation = 0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def on_query_changed(self, text: str) -> None:
        self._generation += 1
        self._cancel_inflight()
        query = text.strip()
        if not query:
            LOGGER.debug("Empty query; clearing suggestions")
            self._slot.cancel()
            self._on_suggestions(text, [])
            return
        self._slot.schedule(self._quiet_interval, self._fire, args=[query, self._generation])

    def cancel(self) -> None:
        """Drop any pending or in-flight suggestion work."""
        self._generation += 1
        self._slot.cancel()
        self._cancel_inflight()

    async def _fire(self, query: str, generation: int) -> None:
        if generation != self._generation:
            return
        # Run the fetch as its own task so cancelling it leaves the scheduler's job untouched.
        self._inflight = asyncio.get_running_loop().create_task(self._fetch(query, generation))

    async def _fetch(self, query: str, generation: int) -> None:
        loop = asyncio.get_running_loop()
        LOGGER.debug("Fetching suggestions for %r (generation=%d)", query, generation)
        try:
            candidates = await loop.run_in_executor(self._executor, self._geocoder.resolve, query, self._limit)
        except GeocodeFailure:
            if generation != self._generation:
                return
            LOGGER.warning("Suggestion lookup failed for %r", query, exc_info=True)
            candidates = []

        if generation != self._generation:
            LOGGER.debug("Discarding stale suggestions for %r", query)
            return
        self._on_suggestions(query, candidates)

    def _cancel_inflight(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            LOGGER.debug("Cancelling in-flight suggestion fetch")
            self._inflight.cancel()
        self._inflight = None
