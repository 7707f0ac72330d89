import asyncio
import json
import time

import pytest
import responses

from geocoder import NOMINATIM_SEARCH_URL, CityCandidate, Geocoder
from lookup_errors import (
    GeocodeFailure,
    GeocodeNotFound,
    InvalidQuery,
    PrayerFailure,
    TimezoneFailure,
    WeatherFailure,
)
from pipeline import LookupPipeline, ResolvedLocation, parse_query
from prayer_times import ALADHAN_TIMINGS_BY_CITY_URL, PrayerTimes, PrayerTimesService
from timezone_resolver import TIMEZONEDB_URL, TimezoneResolver
from weather import OPENWEATHER_CURRENT_URL, WeatherInfo, WeatherService

PRAYER_PAYLOAD = {
    "code": 200,
    "status": "OK",
    "data": {
        "timings": {
            "Fajr": "04:12",
            "Sunrise": "05:40",
            "Dhuhr": "11:55",
            "Asr": "15:25",
            "Maghrib": "18:10",
            "Isha": "19:29",
        }
    },
}
WEATHER_PAYLOAD = {
    "cod": 200,
    "main": {"temp": 25.3},
    "weather": [{"description": "clear sky", "icon": "01d"}],
}
GEOCODE_PAYLOAD = [{"lat": "30.04", "lon": "31.24", "address": {"city": "Cairo", "country": "Egypt"}}]
TIMEZONE_PAYLOAD = {"status": "OK", "zoneName": "Africa/Cairo"}


def build_pipeline() -> LookupPipeline:
    return LookupPipeline(
        geocoder=Geocoder("city-lookup-tests"),
        timezone_resolver=TimezoneResolver("tz-key"),
        prayer_service=PrayerTimesService(method=2),
        weather_service=WeatherService("weather-key"),
    )


def register(mock, geocode=GEOCODE_PAYLOAD, prayer=PRAYER_PAYLOAD, weather=WEATHER_PAYLOAD, timezone=TIMEZONE_PAYLOAD):
    mock.add(responses.GET, NOMINATIM_SEARCH_URL, json=geocode, status=200)
    mock.add(responses.GET, ALADHAN_TIMINGS_BY_CITY_URL, json=prayer, status=200)
    mock.add(responses.GET, OPENWEATHER_CURRENT_URL, json=weather, status=200)
    mock.add(responses.GET, TIMEZONEDB_URL, json=timezone, status=200)


def called_urls(mock):
    return [call.request.url.split("?")[0] for call in mock.calls]


def test_cairo_lookup_round_trip():
    pipeline = build_pipeline()

    with responses.RequestsMock() as mock:
        register(mock)
        result = asyncio.run(pipeline.lookup(ResolvedLocation(city="Cairo", country="Egypt")))
        urls = called_urls(mock)

    assert sorted(urls) == sorted(
        [NOMINATIM_SEARCH_URL, ALADHAN_TIMINGS_BY_CITY_URL, OPENWEATHER_CURRENT_URL, TIMEZONEDB_URL]
    )
    # The time zone request always follows the geocode request.
    assert urls.index(NOMINATIM_SEARCH_URL) < urls.index(TIMEZONEDB_URL)

    assert result.timezone == "Africa/Cairo"
    assert result.location == ResolvedLocation(city="Cairo", country="Egypt", latitude=30.04, longitude=31.24)
    assert result.prayer_times == PrayerTimes(fajr="04:12", dhuhr="11:55", asr="15:25", maghrib="18:10", isha="19:29")
    assert result.weather == WeatherInfo(temperature_c=25.3, description="clear sky", icon_id="01d")
    assert result.weather.temperature_c == 25.3


def test_committed_coordinates_skip_geocoding():
    pipeline = build_pipeline()
    candidate = CityCandidate("Cairo", "Egypt", "Cairo, Egypt", 30.04, 31.24)

    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ALADHAN_TIMINGS_BY_CITY_URL, json=PRAYER_PAYLOAD, status=200)
        mock.add(responses.GET, OPENWEATHER_CURRENT_URL, json=WEATHER_PAYLOAD, status=200)
        mock.add(responses.GET, TIMEZONEDB_URL, json=TIMEZONE_PAYLOAD, status=200)
        result = asyncio.run(pipeline.lookup(ResolvedLocation.from_candidate(candidate)))
        urls = called_urls(mock)

    assert NOMINATIM_SEARCH_URL not in urls
    assert result.timezone == "Africa/Cairo"


def test_raw_query_text_is_split_into_city_and_country():
    pipeline = build_pipeline()

    with responses.RequestsMock() as mock:
        register(mock)
        result = asyncio.run(pipeline.lookup("Cairo, Egypt"))
        prayer_url = next(call.request.url for call in mock.calls if call.request.url.startswith(ALADHAN_TIMINGS_BY_CITY_URL))

    assert "city=Cairo" in prayer_url and "country=Egypt" in prayer_url
    assert result.location.city == "Cairo"


@pytest.mark.parametrize(
    "target",
    [
        ResolvedLocation(city="", country="Egypt"),
        ResolvedLocation(city="Cairo", country=""),
        ResolvedLocation(city="   ", country="Egypt"),
        "Cairo",
        "",
    ],
)
def test_invalid_query_issues_no_network_calls(target):
    pipeline = build_pipeline()

    with responses.RequestsMock() as mock:
        with pytest.raises(InvalidQuery):
            asyncio.run(pipeline.lookup(target))
        call_count = len(mock.calls)
    assert call_count == 0


def test_unknown_city_is_not_found_not_failure():
    pipeline = build_pipeline()

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        register(mock, geocode=[])
        with pytest.raises(GeocodeNotFound) as excinfo:
            asyncio.run(pipeline.lookup(ResolvedLocation(city="Zzzznotacity", country="Egypt")))
        urls = called_urls(mock)

    assert not isinstance(excinfo.value, GeocodeFailure)
    assert TIMEZONEDB_URL not in urls


def test_geocode_transport_error_is_failure():
    pipeline = build_pipeline()

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        register(mock)
        mock.replace(responses.GET, NOMINATIM_SEARCH_URL, body="unavailable", status=503)
        with pytest.raises(GeocodeFailure):
            asyncio.run(pipeline.lookup(ResolvedLocation(city="Cairo", country="Egypt")))


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"prayer": {"code": 400, "status": "BAD_REQUEST", "data": "Unable to find city"}}, PrayerFailure),
        ({"weather": {"cod": "404", "message": "city not found"}}, WeatherFailure),
        ({"timezone": {"status": "FAILED", "message": "Invalid API key."}}, TimezoneFailure),
    ],
)
def test_embedded_provider_failure_surfaces_its_stage(overrides, expected):
    pipeline = build_pipeline()

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        register(mock, **overrides)
        with pytest.raises(expected):
            asyncio.run(pipeline.lookup(ResolvedLocation(city="Cairo", country="Egypt")))


class _FailingPrayerService:
    def fetch_prayer_times(self, city, country):
        raise PrayerFailure("boom")


class _SlowWeatherService:
    def __init__(self):
        self.calls = 0

    def fetch_current_weather(self, city):
        self.calls += 1
        time.sleep(0.5)
        return WeatherInfo(temperature_c=1.0, description="late", icon_id="01n")


def test_first_failure_wins_without_waiting_for_other_branches():
    weather = _SlowWeatherService()
    pipeline = LookupPipeline(
        geocoder=Geocoder("city-lookup-tests"),
        timezone_resolver=TimezoneResolver("tz-key"),
        prayer_service=_FailingPrayerService(),
        weather_service=weather,
    )

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(PrayerFailure):
            await pipeline.lookup(ResolvedLocation(city="Cairo", country="Egypt", latitude=30.04, longitude=31.24))
        return loop.time() - started

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        mock.add(responses.GET, TIMEZONEDB_URL, json=TIMEZONE_PAYLOAD, status=200)
        elapsed = asyncio.run(scenario())

    assert elapsed < 0.4


def test_parse_query():
    assert parse_query("Cairo, Egypt") == ResolvedLocation("Cairo", "Egypt")
    assert parse_query("Washington, D.C., United States") == ResolvedLocation("Washington, D.C.", "United States")
    assert parse_query("  Cairo  ") == ResolvedLocation("Cairo", "")


def test_timezone_chain_only_needs_coordinates():
    pipeline = build_pipeline()
    geocode = [{"lat": "1.29", "lon": "103.85", "address": {"municipality": "Singapore", "country": "Singapore"}}]

    with responses.RequestsMock() as mock:
        register(mock, geocode=geocode, timezone={"status": "OK", "zoneName": "Asia/Singapore"})
        result = asyncio.run(pipeline.lookup(ResolvedLocation(city="Singapore", country="Singapore")))

    assert result.timezone == "Asia/Singapore"
    assert result.location == ResolvedLocation("Singapore", "Singapore", 1.29, 103.85)


def test_missing_city_wins_over_faster_weather_failure():
    pipeline = build_pipeline()

    def slow_empty_geocode(request):
        time.sleep(0.2)
        return 200, {"Content-Type": "application/json"}, "[]"

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        register(mock)
        mock.remove(responses.GET, NOMINATIM_SEARCH_URL)
        mock.add_callback(responses.GET, NOMINATIM_SEARCH_URL, callback=slow_empty_geocode)
        mock.replace(responses.GET, OPENWEATHER_CURRENT_URL, json={"cod": "404", "message": "city not found"}, status=404)
        with pytest.raises(GeocodeNotFound):
            asyncio.run(pipeline.lookup(ResolvedLocation(city="Zzzznotacity", country="Egypt")))
        urls = called_urls(mock)

    assert OPENWEATHER_CURRENT_URL in urls
    assert TIMEZONEDB_URL not in urls


def test_provider_failure_stands_when_city_exists():
    pipeline = build_pipeline()

    def slow_geocode(request):
        time.sleep(0.2)
        return 200, {"Content-Type": "application/json"}, json.dumps(GEOCODE_PAYLOAD)

    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        register(mock)
        mock.remove(responses.GET, NOMINATIM_SEARCH_URL)
        mock.add_callback(responses.GET, NOMINATIM_SEARCH_URL, callback=slow_geocode)
        mock.replace(responses.GET, OPENWEATHER_CURRENT_URL, json={"cod": 401, "message": "Invalid API key"}, status=401)
        with pytest.raises(WeatherFailure):
            asyncio.run(pipeline.lookup(ResolvedLocation(city="Cairo", country="Egypt")))
