"""Map surface abstraction and the single-marker synchronizer used by forms."""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from company_locator.core.events import Disposer, Signal
from company_locator.core.geocoding import format_position
from company_locator.core.location import LocationState

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]

INSPECT_ZOOM = 15
DRAG_TOOLTIP = "Drag to adjust location"


class Emphasis(str, enum.Enum):
    NORMAL = "normal"
    SELECTED = "selected"


@dataclass(frozen=True)
class MapMarker:
    position: LatLng
    draggable: bool = False
    emphasis: Emphasis = Emphasis.NORMAL
    popup: Optional[str] = None
    tooltip: Optional[str] = None
    key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": list(self.position),
            "draggable": self.draggable,
            "emphasis": self.emphasis.value,
            "popup": self.popup,
            "tooltip": self.tooltip,
            "key": self.key,
        }


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_points(cls, points: Iterable[LatLng]) -> "Bounds":
        points = list(points)
        if not points:
            raise ValueError("cannot compute bounds of zero points")
        lats = [lat for lat, _ in points]
        lngs = [lng for _, lng in points]
        return cls(min(lats), min(lngs), max(lats), max(lngs))

    def pad(self, ratio: float) -> "Bounds":
        """Grow each side by ``ratio`` of the span, like Leaflet's ``LatLngBounds.pad``."""
        lat_buffer = abs(self.north - self.south) * ratio
        lng_buffer = abs(self.east - self.west) * ratio
        return Bounds(
            self.south - lat_buffer,
            self.west - lng_buffer,
            self.north + lat_buffer,
            self.east + lng_buffer,
        )

    @property
    def center(self) -> LatLng:
        return ((self.south + self.north) / 2, (self.west + self.east) / 2)

    def contains(self, point: LatLng) -> bool:
        lat, lng = point
        return self.south <= lat <= self.north and self.west <= lng <= self.east


class MapSurface(Protocol):
    """What the locator needs from a map: markers, viewport and user events.

    Events: ``"click"`` (lat, lng), ``"dragend"`` (marker_id, lat, lng) and
    ``"marker_click"`` (marker_id).
    """

    def add_marker(self, marker: MapMarker) -> str: ...

    def remove_marker(self, marker_id: str) -> None: ...

    def set_view(self, center: LatLng, zoom: int) -> None: ...

    def fly_to(self, center: LatLng, zoom: int, duration: float) -> None: ...

    def fit_bounds(self, bounds: Bounds, animate: bool = False) -> None: ...

    def set_popup(self, marker_id: str, popup: str) -> None: ...

    def on(self, event: str, handler: Callable[..., Any]) -> Disposer: ...


class InMemoryMapSurface:
    """Headless map surface that records markers, viewport and operations."""

    EVENTS = ("click", "dragend", "marker_click")

    def __init__(self, center: LatLng = (28.6139, 77.209), zoom: int = 10) -> None:
        self.center = center
        self.zoom = zoom
        self.bounds: Optional[Bounds] = None
        self.markers: Dict[str, MapMarker] = {}
        self.history: List[Tuple[Any, ...]] = []
        self._ids = itertools.count(1)
        self._signals = {name: Signal(name) for name in self.EVENTS}
        self._lock = threading.RLock()

    def add_marker(self, marker: MapMarker) -> str:
        with self._lock:
            marker_id = f"m{next(self._ids)}"
            self.markers[marker_id] = marker
            self.history.append(("add_marker", marker_id, marker.position))
            return marker_id

    def remove_marker(self, marker_id: str) -> None:
        with self._lock:
            if self.markers.pop(marker_id, None) is not None:
                self.history.append(("remove_marker", marker_id))

    def set_view(self, center: LatLng, zoom: int) -> None:
        with self._lock:
            self.center, self.zoom, self.bounds = center, zoom, None
            self.history.append(("set_view", center, zoom))

    def fly_to(self, center: LatLng, zoom: int, duration: float) -> None:
        with self._lock:
            self.center, self.zoom, self.bounds = center, zoom, None
            self.history.append(("fly_to", center, zoom, duration))

    def fit_bounds(self, bounds: Bounds, animate: bool = False) -> None:
        with self._lock:
            self.center, self.bounds = bounds.center, bounds
            self.history.append(("fit_bounds", bounds, animate))

    def set_popup(self, marker_id: str, popup: str) -> None:
        with self._lock:
            marker = self.markers.get(marker_id)
            if marker is None:
                return
            self.markers[marker_id] = replace(marker, popup=popup)
            self.history.append(("set_popup", marker_id, popup))

    def on(self, event: str, handler: Callable[..., Any]) -> Disposer:
        if event not in self._signals:
            raise ValueError(f"unsupported map event: {event}")
        return self._signals[event].connect(handler)

    def handler_count(self, event: str) -> int:
        return len(self._signals[event])

    # -- simulated user input ---------------------------------------------

    def click(self, lat: float, lng: float) -> None:
        self._signals["click"].emit(lat, lng)

    def click_marker(self, marker_id: str) -> None:
        if marker_id not in self.markers:
            raise KeyError(marker_id)
        self._signals["marker_click"].emit(marker_id)

    def drag_marker(self, marker_id: str, lat: float, lng: float) -> None:
        with self._lock:
            marker = self.markers.get(marker_id)
            if marker is None:
                raise KeyError(marker_id)
            if not marker.draggable:
                raise ValueError(f"marker {marker_id} is not draggable")
            self.markers[marker_id] = replace(marker, position=(lat, lng))
        self._signals["dragend"].emit(marker_id, lat, lng)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "center": list(self.center),
                "zoom": self.zoom,
                "markers": {marker_id: m.to_dict() for marker_id, m in self.markers.items()},
            }


class MarkerSynchronizer:
    """Keeps one marker in step with a ``LocationState``.

    The synchronizer owns its marker exclusively. It reports drags through
    ``on_drag_end`` and never decides the provenance of the coordinates.

    Without an address the marker is placed at once with a coordinate label;
    ``describe`` then runs on ``executor`` and its label replaces the popup
    only if that marker is still on the map.
    """

    def __init__(
        self,
        surface: MapSurface,
        *,
        editable: bool,
        on_drag_end: Optional[Callable[[float, float], None]] = None,
        address_provider: Optional[Callable[[], str]] = None,
        describe: Optional[Callable[[float, float], str]] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self._surface = surface
        self._editable = editable
        self._on_drag_end = on_drag_end
        self._address_provider = address_provider or (lambda: "")
        self._describe = describe
        self._executor = executor
        self._marker_id: Optional[str] = None
        self._disposers: List[Disposer] = []
        self._lock = threading.RLock()

    @property
    def marker_id(self) -> Optional[str]:
        return self._marker_id

    def attach(self) -> None:
        if self._editable and not self._disposers:
            self._disposers.append(self._surface.on("dragend", self._handle_dragend))

    def detach(self) -> None:
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        with self._lock:
            self._remove_marker()

    def render(self, state: LocationState) -> None:
        coords = state.coordinates
        with self._lock:
            self._remove_marker()
            if coords is None:
                return

            address = (self._address_provider() or "").strip()
            marker = MapMarker(
                position=coords,
                draggable=self._editable,
                popup=address or format_position(*coords),
                tooltip=DRAG_TOOLTIP if self._editable else None,
            )
            marker_id = self._marker_id = self._surface.add_marker(marker)
            self._surface.set_view(coords, INSPECT_ZOOM)
        logger.debug("Placed marker %s at %.6f, %.6f", marker_id, *coords)

        if address or self._describe is None:
            return
        if self._executor is None:
            self._resolve_label(marker_id, coords)
        else:
            self._executor.submit(self._resolve_label, marker_id, coords)

    def _resolve_label(self, marker_id: str, coords: LatLng) -> None:
        label = self._describe(*coords)
        with self._lock:
            if marker_id != self._marker_id:
                logger.debug("Dropping label for replaced marker %s", marker_id)
                return
            self._surface.set_popup(marker_id, label)

    def _remove_marker(self) -> None:
        if self._marker_id is not None:
            self._surface.remove_marker(self._marker_id)
            self._marker_id = None

    def _handle_dragend(self, marker_id: str, lat: float, lng: float) -> None:
        if marker_id != self._marker_id or self._on_drag_end is None:
            return
        self._on_drag_end(lat, lng)
