"""Authoritative location of a registration in progress.

The tracker is the only writer of ``LocationState``. Address lookups are
tagged with a token; a lookup may write only while its token is still the
current one, so slow responses that were overtaken by newer typing, a drag or
a cleared field are dropped on arrival.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from company_locator.core.events import Disposer, Signal
from company_locator.models import Coordinates

logger = logging.getLogger(__name__)


class LocationSource(str, enum.Enum):
    NONE = "none"
    GEOCODED = "geocoded"
    MANUAL = "manual"


@dataclass(frozen=True)
class LocationState:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: LocationSource = LocationSource.NONE

    def __post_init__(self) -> None:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must both be present or both absent")
        if (self.source is LocationSource.NONE) != (self.latitude is None):
            raise ValueError(f"source {self.source.value!r} does not match coordinate presence")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None

    @property
    def coordinates(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude, "source": self.source.value}


EMPTY = LocationState()


@dataclass(frozen=True)
class AddressQuery:
    text: str
    token: int


class LocationTracker:
    def __init__(self) -> None:
        self._state = EMPTY
        self._tokens = itertools.count(1)
        self._token = 0
        self._lock = threading.RLock()
        self.changed = Signal("location_state_changed")

    @property
    def state(self) -> LocationState:
        return self._state

    @property
    def current_token(self) -> int:
        return self._token

    def subscribe(self, listener: Callable[[LocationState], None]) -> Disposer:
        return self.changed.connect(listener)

    def begin_query(self, text: str) -> AddressQuery:
        with self._lock:
            self._token = next(self._tokens)
            return AddressQuery(text=text, token=self._token)

    def invalidate(self) -> None:
        """Make every outstanding query stale."""
        with self._lock:
            self._token = next(self._tokens)

    def is_current(self, query: AddressQuery) -> bool:
        return query.token == self._token

    def address_changed(self) -> None:
        """New address text always discards a hand-placed pin."""
        with self._lock:
            if self._state.source is LocationSource.MANUAL:
                logger.info("Address edited; dropping manual location override")
                self._set(EMPTY)

    def clear(self) -> None:
        with self._lock:
            self._set(EMPTY)

    def apply_geocoded(self, query: AddressQuery, coords: Coordinates) -> bool:
        with self._lock:
            if not self.is_current(query):
                logger.debug("Discarding stale geocode result token=%s current=%s", query.token, self._token)
                return False
            if self._state.source is LocationSource.MANUAL:
                logger.debug("Ignoring geocode result over manual location token=%s", query.token)
                return False
            self._set(LocationState(coords.latitude, coords.longitude, LocationSource.GEOCODED))
            return True

    def apply_not_found(self, query: AddressQuery) -> bool:
        with self._lock:
            if not self.is_current(query):
                return False
            self._set(EMPTY)
            return True

    def apply_manual(self, lat: float, lng: float) -> None:
        with self._lock:
            self.invalidate()
            self._set(LocationState(float(lat), float(lng), LocationSource.MANUAL))

    def _set(self, state: LocationState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug("Location state -> %s", state)
        self.changed.emit(state)
