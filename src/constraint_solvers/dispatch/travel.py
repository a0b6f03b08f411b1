"""
Travel estimator for sequencing jobs.

The default estimate is the great-circle distance divided by an average
driving speed. An optional routing backend (Distance Matrix style JSON over
HTTP) can refine it; any backend failure falls back to the distance-based
estimate, so ``estimate`` never fails.
"""

import math, re, time
from datetime import timedelta
from typing import Callable, Optional

import requests

from domain import DISPATCH_CONFIG, DispatchConfig

from .domain import Location
from .errors import CollaboratorUnavailable

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)

EARTH_RADIUS_MILES = 3959.0

# Rough distances (miles) when only street addresses are known
SAME_ZIP_MILES = 3.0
SAME_ZIP_REGION_MILES = 8.0
SAME_ZIP_AREA_MILES = 15.0
DIFFERENT_AREA_MILES = 25.0
SAME_CITY_MILES = 8.0
DEFAULT_MILES = 15.0

ZIP_PATTERN = re.compile(r"\b\d{5}\b")


def haversine_miles(origin: Location, destination: Location) -> float:
    """Calculate the great-circle distance between two geocoded points.

    Args:
        origin (Location): Starting point, must have coordinates.
        destination (Location): End point, must have coordinates.

    Returns:
        float: Distance in miles.
    """
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(destination.lat)
    dlat = math.radians(destination.lat - origin.lat)
    dlng = math.radians(destination.lng - origin.lng)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def estimate_miles_from_addresses(origin: Location, destination: Location) -> float:
    """Guess a distance from ZIP codes or city names when coordinates are missing."""
    origin_zip = ZIP_PATTERN.search(origin.address or "")
    destination_zip = ZIP_PATTERN.search(destination.address or "")

    if origin_zip and destination_zip:
        a, b = origin_zip.group(0), destination_zip.group(0)

        match a, b:
            case (a, b) if a == b:
                return SAME_ZIP_MILES
            case (a, b) if a[:3] == b[:3]:
                return SAME_ZIP_REGION_MILES
            case (a, b) if a[:2] == b[:2]:
                return SAME_ZIP_AREA_MILES
            case _:
                return DIFFERENT_AREA_MILES

    origin_parts = (origin.address or "").lower().split(",")
    destination_parts = (destination.address or "").lower().split(",")

    if len(origin_parts) > 1 and len(destination_parts) > 1:
        if origin_parts[1].strip() and origin_parts[1].strip() == destination_parts[1].strip():
            return SAME_CITY_MILES

    return DEFAULT_MILES


def _same_place(origin: Location, destination: Location) -> bool:
    if origin.has_coordinates and destination.has_coordinates:
        return (origin.lat, origin.lng) == (destination.lat, destination.lng)

    if origin.has_coordinates or destination.has_coordinates:
        return False

    return bool(origin.address) and (
        origin.address.strip().lower() == destination.address.strip().lower()
    )


def _format_location(location: Location) -> str:
    if location.has_coordinates:
        return f"{location.lat},{location.lng}"
    return location.address


class RoutingClient:
    """Client for a Distance Matrix style routing backend."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def duration_minutes(self, origin: Location, destination: Location) -> float:
        """
        Ask the backend for the driving time between two locations.

        Raises:
            CollaboratorUnavailable: On transport errors, timeouts, non-OK
                statuses or malformed payloads.
        """
        params = {
            "origins": _format_location(origin),
            "destinations": _format_location(destination),
            "mode": "driving",
        }
        if self.api_key:
            params["key"] = self.api_key

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

        except (requests.RequestException, ValueError) as e:
            raise CollaboratorUnavailable(f"Routing request failed: {e}") from e

        try:
            element = data["rows"][0]["elements"][0]

            if data.get("status") != "OK" or element.get("status") != "OK":
                raise CollaboratorUnavailable(
                    f"Routing backend returned status {data.get('status')}/{element.get('status')}"
                )

            return element["duration"]["value"] / 60

        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorUnavailable(f"Malformed routing response: {e}") from e


class TravelEstimator:
    """
    Estimates one-way travel time between two locations.

    Contract: never fails and is monotonic in distance. The distance-based
    fallback is symmetric; a routing backend need not be.
    """

    def __init__(
        self,
        config: Optional[DispatchConfig] = None,
        routing_client: Optional[RoutingClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or DISPATCH_CONFIG
        self.clock = clock
        self._cache: dict[tuple, tuple[float, int]] = {}

        if routing_client is None and self.config.routing_url:
            routing_client = RoutingClient(
                self.config.routing_url,
                api_key=self.config.routing_api_key,
                timeout=self.config.routing_timeout_seconds,
            )
        self.routing_client = routing_client

    def estimate(self, origin: Location, destination: Location) -> timedelta:
        """Estimate one-way travel duration."""
        return timedelta(minutes=self.estimate_minutes(origin, destination))

    def estimate_minutes(self, origin: Location, destination: Location) -> int:
        """Estimate one-way travel time in whole minutes (rounded up)."""
        if _same_place(origin, destination):
            return 0

        if self.routing_client is not None:
            routed = self._routed_minutes(origin, destination)
            if routed is not None:
                return routed

        return self.fallback_minutes(origin, destination)

    def fallback_minutes(self, origin: Location, destination: Location) -> int:
        """Distance-based estimate: miles / average speed."""
        if origin.has_coordinates and destination.has_coordinates:
            miles = haversine_miles(origin, destination)
        else:
            miles = estimate_miles_from_addresses(origin, destination)

        return math.ceil(round(miles / self.config.average_speed_mph * 60, 6))

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _routed_minutes(self, origin: Location, destination: Location) -> Optional[int]:
        key = (_format_location(origin).lower(), _format_location(destination).lower())
        cached = self._cache.get(key)

        if cached is not None:
            stored_at, minutes = cached
            if self.clock() - stored_at < self.config.routing_cache_ttl_seconds:
                return minutes
            del self._cache[key]

        try:
            minutes = math.ceil(self.routing_client.duration_minutes(origin, destination))

        except CollaboratorUnavailable as e:
            logger.warning(f"Routing backend unavailable, using distance estimate: {e}")
            return None

        self._remember(key, minutes)
        return minutes

    def _remember(self, key: tuple, minutes: int) -> None:
        """Cache a routed duration, dropping expired entries and the oldest past the cap."""
        now = self.clock()
        ttl = self.config.routing_cache_ttl_seconds

        # Entries are kept in insertion order, so expired ones sit at the front
        while self._cache:
            oldest = next(iter(self._cache))
            if now - self._cache[oldest][0] < ttl:
                break
            del self._cache[oldest]

        while len(self._cache) >= self.config.routing_cache_max_entries:
            del self._cache[next(iter(self._cache))]

        self._cache[key] = (now, minutes)
