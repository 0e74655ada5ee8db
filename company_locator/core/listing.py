"""Read-only multi-marker map for the company listing."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from company_locator.core.debounce import DebounceScheduler
from company_locator.core.events import Disposer
from company_locator.core.markers import Bounds, Emphasis, MapMarker, MapSurface
from company_locator.models import CompanyRecord

logger = logging.getLogger(__name__)

OVERVIEW_ZOOM = 12
OVERVIEW_DURATION = 1.0
CLOSE_ZOOM = 16
CLOSE_DURATION = 1.2
CLOSE_ZOOM_DELAY_MS = 800
FIT_PADDING = 0.1
_FLY_KEY = "fly"


def company_popup(record: CompanyRecord) -> str:
    lines = [record.name, f"Address: {record.address}"]
    if record.opening_hours or record.closing_hours:
        lines.append(f"Hours: {record.opening_hours or '?'} - {record.closing_hours or '?'}")
    if record.contact:
        lines.append(f"Contact: {record.contact}")
    return "\n".join(lines)


class ListingMap:
    """One marker per company; list clicks and marker clicks both go through ``select``."""

    def __init__(self, surface: MapSurface, scheduler: Optional[DebounceScheduler] = None) -> None:
        self._surface = surface
        self._scheduler = scheduler or DebounceScheduler()
        self._records: List[CompanyRecord] = []
        self._visible: List[CompanyRecord] = []
        self._search_term = ""
        self._selected: Optional[CompanyRecord] = None
        self._marker_records: Dict[str, str] = {}
        self._disposers: List[Disposer] = [surface.on("marker_click", self._handle_marker_click)]

    @property
    def selected(self) -> Optional[CompanyRecord]:
        return self._selected

    @property
    def visible_records(self) -> List[CompanyRecord]:
        return list(self._visible)

    def show(self, records: List[CompanyRecord]) -> None:
        self._records = list(records)
        self._apply_filter()
        self._redraw()
        if self._selected is None:
            self._fit_all(animate=False)

    def search(self, term: str) -> None:
        self._search_term = term.strip()
        self._apply_filter()
        if self._selected is not None and not self._is_visible(self._selected.id):
            self.clear_selection()
            return
        self._redraw()

    def select(self, record: CompanyRecord) -> None:
        if self._selected is not None and self._selected.id == record.id:
            logger.debug("Company %s selected twice; clearing selection", record.id)
            self.clear_selection()
            return

        self._selected = record
        self._visible = [record] + [r for r in self._visible if r.id != record.id]
        self._redraw()
        self._animate_to(record)

    def clear_selection(self) -> None:
        if self._selected is None:
            return
        self._selected = None
        self._scheduler.cancel(_FLY_KEY)
        self._redraw()
        self._fit_all(animate=True)

    def remove(self, record_id: str) -> None:
        self._records = [r for r in self._records if r.id != record_id]
        self._visible = [r for r in self._visible if r.id != record_id]
        if self._selected is not None and self._selected.id == record_id:
            self.clear_selection()
            return
        self._redraw()

    def close(self) -> None:
        self._scheduler.cancel(_FLY_KEY)
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        self._clear_markers()

    def marker_id_for(self, record_id: str) -> Optional[str]:
        for marker_id, rid in self._marker_records.items():
            if rid == record_id:
                return marker_id
        return None

    def _apply_filter(self) -> None:
        term = self._search_term.lower()
        if not term:
            self._visible = list(self._records)
        else:
            self._visible = [r for r in self._records if term in r.name.lower()]

    def _is_visible(self, record_id: str) -> bool:
        return any(r.id == record_id for r in self._visible)

    def _clear_markers(self) -> None:
        for marker_id in list(self._marker_records):
            self._surface.remove_marker(marker_id)
        self._marker_records.clear()

    def _redraw(self) -> None:
        self._clear_markers()
        selected_id = self._selected.id if self._selected is not None else None
        for record in self._visible:
            emphasis = Emphasis.SELECTED if record.id == selected_id else Emphasis.NORMAL
            marker = MapMarker(
                position=record.position.as_tuple(),
                emphasis=emphasis,
                popup=company_popup(record),
                key=record.id,
            )
            self._marker_records[self._surface.add_marker(marker)] = record.id

    def _fit_all(self, animate: bool) -> None:
        if not self._visible:
            return
        bounds = Bounds.from_points(r.position.as_tuple() for r in self._visible)
        self._surface.fit_bounds(bounds.pad(FIT_PADDING), animate=animate)

    def _animate_to(self, record: CompanyRecord) -> None:
        target = record.position.as_tuple()
        self._surface.fly_to(target, OVERVIEW_ZOOM, OVERVIEW_DURATION)
        self._scheduler.schedule(
            _FLY_KEY,
            CLOSE_ZOOM_DELAY_MS,
            lambda: self._surface.fly_to(target, CLOSE_ZOOM, CLOSE_DURATION),
        )

    def _handle_marker_click(self, marker_id: str) -> None:
        record_id = self._marker_records.get(marker_id)
        if record_id is None:
            return
        record = next((r for r in self._records if r.id == record_id), None)
        if record is not None:
            self.select(record)
