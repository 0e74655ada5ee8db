"""Typed forward/reverse geocoding on top of the Nominatim vendor module.

Lookups are never retried. Failures are raised as ``GeocodingError``
subclasses so callers can tell "no such address yet" apart from "the service
is down".
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict

from company_locator.models import Coordinates
from company_locator.vendors import nominatim

logger = logging.getLogger(__name__)


class GeocodingError(RuntimeError):
    """Base class for geocoding failures."""


class GeocodeNotFound(GeocodingError):
    """The geocoder answered but had no candidate for the query."""


class GeocodeServiceUnavailable(GeocodingError):
    """Network/HTTP failure, non-2xx status or malformed payload."""


class GeocoderBusy(GeocodingError):
    """A forward lookup is already outstanding on this client."""


def _parse_coordinate(candidate: Dict[str, Any], key: str) -> float:
    try:
        return float(candidate[key])
    except (KeyError, TypeError, ValueError) as exc:
        raise GeocodeServiceUnavailable(f"candidate has no usable {key!r}") from exc


def format_position(lat: float, lng: float) -> str:
    return f"Location: {lat:.4f}, {lng:.4f}"


class GeocodingClient:
    """One client per form instance; tracks whether a forward lookup is in flight."""

    def __init__(self) -> None:
        self._in_flight = False
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def forward_geocode(self, address: str) -> Coordinates:
        with self._lock:
            if self._in_flight:
                raise GeocoderBusy("a forward lookup is already in flight")
            self._in_flight = True
        try:
            logger.info("Forward geocoding address=%s", address)
            try:
                results = nominatim.search(address)
            except nominatim.NominatimError as exc:
                raise GeocodeServiceUnavailable(str(exc)) from exc

            if not results:
                raise GeocodeNotFound(f"no match for {address!r}")
            best = results[0]
            if not isinstance(best, dict):
                raise GeocodeServiceUnavailable("search candidate is not an object")
            return Coordinates(_parse_coordinate(best, "lat"), _parse_coordinate(best, "lon"))
        finally:
            with self._lock:
                self._in_flight = False

    def reverse_geocode(self, lat: float, lng: float) -> str:
        try:
            payload = nominatim.reverse(lat, lng)
        except nominatim.NominatimError as exc:
            raise GeocodeServiceUnavailable(str(exc)) from exc
        display_name = payload.get("display_name")
        if not display_name:
            raise GeocodeNotFound(f"no display name for {lat}, {lng}")
        return str(display_name)

    def describe_position(self, lat: float, lng: float) -> str:
        """Readable label for a position, falling back to raw coordinates."""
        try:
            return self.reverse_geocode(lat, lng)
        except GeocodingError as exc:
            logger.warning("Reverse geocoding failed for %.4f, %.4f: %s", lat, lng, exc)
            return format_position(lat, lng)
