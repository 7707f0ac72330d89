"""City name resolution through the OpenStreetMap Nominatim search API."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from lookup_errors import GeocodeFailure

LOGGER = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
CITY_ADDRESS_KEYS = ("city", "town", "village")


@dataclass(frozen=True)
class CityCandidate:
    city: str
    country: str
    display_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Geocoder:
    """Turns free text into candidate (city, country) pairs."""

    def __init__(self, user_agent: str, timeout: float = 10.0) -> None:
        self.user_agent = user_agent
        self.timeout = timeout

    def resolve(self, query: str, limit: int = 5, country: Optional[str] = None) -> List[CityCandidate]:
        """Return matching candidates; an empty list means the search found nothing."""
        payload = self._search(query, limit, country)

        by_name: Dict[str, CityCandidate] = {}
        for record in payload:
            candidate = self._parse_record(record)
            if candidate is None:
                continue
            existing = by_name.get(candidate.display_name)
            # A later duplicate only wins when it adds coordinates the first one lacked.
            if existing is None or (existing.latitude is None and candidate.latitude is not None):
                by_name[candidate.display_name] = candidate
        candidates = list(by_name.values())
        LOGGER.debug("Parsed %d geocode candidates from %d records", len(candidates), len(payload))
        return candidates

    def locate(self, city: str, country: Optional[str] = None, limit: int = 1) -> Optional[Tuple[float, float]]:
        """Return the coordinates of the first record that has them, or None when nothing matched.

        Unlike resolve, records are not required to name a city, town or village.
        """
        for record in self._search(city, limit, country):
            if not isinstance(record, dict):
                continue
            latitude = _safe_float(record.get("lat"))
            longitude = _safe_float(record.get("lon"))
            if latitude is not None and longitude is not None:
                return latitude, longitude
        return None

    def _search(self, query: str, limit: int, country: Optional[str]) -> List[Any]:
        params: Dict[str, Any] = {
            "city": query,
            "format": "json",
            "addressdetails": 1,
            "limit": limit,
        }
        if country:
            params["country"] = country
        LOGGER.debug("Requesting geocode with params=%s", params)
        try:
            response = requests.get(
                NOMINATIM_SEARCH_URL,
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GeocodeFailure(f"Geocode request failed for {query!r}: {type(exc).__name__}") from exc
        LOGGER.debug("Geocode response status: %s", response.status_code)
        if not response.ok:
            raise GeocodeFailure(f"Nominatim returned HTTP {response.status_code} {response.reason}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise GeocodeFailure("Nominatim returned a non-JSON body") from exc

        if not isinstance(payload, list):
            raise GeocodeFailure(f"Unexpected geocode payload type {type(payload).__name__}")
        return payload

    @staticmethod
    def _parse_record(record: Any) -> Optional[CityCandidate]:
        if not isinstance(record, dict):
            return None
        address = record.get("address")
        if not isinstance(address, dict):
            LOGGER.debug("Skipping geocode record without address details")
            return None

        city = next((str(address[key]).strip() for key in CITY_ADDRESS_KEYS if address.get(key)), "")
        country = str(address.get("country") or "").strip()
        if not city or not country:
            LOGGER.debug("Skipping geocode record missing city/country: %s", address)
            return None

        return CityCandidate(
            city=city,
            country=country,
            display_name=f"{city}, {country}",
            latitude=_safe_float(record.get("lat")),
            longitude=_safe_float(record.get("lon")),
        )


def _safe_float(value: Optional[object]) -> Optional[float]:
    try:
        if value in (None, ""):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
