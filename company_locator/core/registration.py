"""Registration form workflow: address text -> coordinates -> draggable marker.

The controller is the component boundary for geocoding failures: nothing
raised by the geocoder escapes it. ``NotFound`` quietly resets the location,
``ServiceUnavailable`` keeps it and raises a single warning.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from company_locator.core.config import Settings, get_settings
from company_locator.core.debounce import DebounceScheduler
from company_locator.core.events import Disposer, Signal
from company_locator.core.geocoding import (
    GeocoderBusy,
    GeocodeNotFound,
    GeocodeServiceUnavailable,
    GeocodingClient,
)
from company_locator.core.location import AddressQuery, LocationState, LocationTracker
from company_locator.core.markers import MapSurface, MarkerSynchronizer
from company_locator.core.validation import first_invalid_field, validate_registration
from company_locator.etl.transform import to_registration_payload
from company_locator.models import EmailStatus, RegistrationForm
from company_locator.vendors import directory_api

logger = logging.getLogger(__name__)

ADDRESS_KEY = "address"
EMAIL_KEY = "email"
SERVICE_UNAVAILABLE_WARNING = "Map service is currently unavailable. Please try again later."
EMAIL_CHECK_FAILED = "Error checking email"

_PLAIN_FIELDS = ("first_name", "password", "company_name", "opening_hours", "closing_hours", "agree_terms")

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="geocode")

_TRUE_FLAGS = {"1", "true", "yes", "on"}
_FALSE_FLAGS = {"0", "false", "no", "off", ""}


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_FLAGS:
            return True
        if lowered in _FALSE_FLAGS:
            return False
    raise ValueError(f"agree_terms must be a boolean, got {value!r}")


@dataclass
class SubmissionResult:
    ok: bool
    errors: Dict[str, str] = field(default_factory=dict)
    focus: Optional[str] = None
    message: str = ""
    company: Dict[str, Any] = field(default_factory=dict)


class RegistrationController:
    def __init__(
        self,
        surface: MapSurface,
        *,
        client: Optional[GeocodingClient] = None,
        scheduler: Optional[DebounceScheduler] = None,
        executor: Optional[Executor] = None,
        session: directory_api.SessionContext = directory_api.ANONYMOUS,
        settings: Optional[Settings] = None,
    ) -> None:
        self._surface = surface
        self._client = client or GeocodingClient()
        self._scheduler = scheduler or DebounceScheduler()
        self._executor = executor or _executor
        self._settings = settings or get_settings()
        self.session = session

        self.form = RegistrationForm()
        self.email_status = EmailStatus()
        self.warnings: List[str] = []
        self.tracker = LocationTracker()
        self.synchronizer = MarkerSynchronizer(
            surface,
            editable=True,
            on_drag_end=self.on_marker_drag_end,
            address_provider=lambda: self.form.address,
            describe=self._client.describe_position,
            executor=self._executor,
        )

        self.geocoding_warning = Signal("geocoding_warning")
        self.email_status_changed = Signal("email_status_changed")

        self._lock = threading.RLock()
        self._mounted = False
        self._closed = False
        self._geocoding = False
        self._deferred: Optional[AddressQuery] = None
        self._disposers: List[Disposer] = []

    # -- observers ----------------------------------------------------------

    @property
    def location(self) -> LocationState:
        return self.tracker.state

    @property
    def is_geocoding(self) -> bool:
        return self._geocoding or self._client.in_flight

    def on_location_state_changed(self, listener: Callable[[LocationState], None]) -> Disposer:
        return self.tracker.subscribe(listener)

    def on_geocoding_warning(self, listener: Callable[[str], None]) -> Disposer:
        return self.geocoding_warning.connect(listener)

    def on_email_status_changed(self, listener: Callable[[EmailStatus], None]) -> Disposer:
        return self.email_status_changed.connect(listener)

    # -- lifecycle ----------------------------------------------------------

    def on_mount(self) -> None:
        with self._lock:
            if self._mounted or self._closed:
                return
            self._mounted = True
            self._disposers.append(self.tracker.subscribe(self.synchronizer.render))
            self._disposers.append(self._surface.on("click", self.on_map_click))
            self.synchronizer.attach()
            self.synchronizer.render(self.tracker.state)
        logger.debug("Registration form mounted")

    def on_unmount(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._mounted = False
            self._scheduler.cancel_all()
            self.tracker.invalidate()
            self._deferred = None
            for dispose in self._disposers:
                dispose()
            self._disposers.clear()
            self.synchronizer.detach()
        logger.debug("Registration form unmounted")

    # -- user input ---------------------------------------------------------

    def on_address_text_change(self, text: str) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Ignoring address change after unmount")
                return
            self.form.address = text
            self.tracker.address_changed()
            query = self.tracker.begin_query(text)
            self._deferred = None

            if not text.strip() or len(text) < self._settings.min_address_length:
                self._scheduler.cancel(ADDRESS_KEY)
                self.tracker.clear()
                return

            self._scheduler.schedule(
                ADDRESS_KEY,
                self._settings.address_debounce_ms,
                lambda: self._dispatch_geocode(query),
            )

    def on_marker_drag_end(self, lat: float, lng: float) -> None:
        self._place_manually(lat, lng, "drag")

    def on_map_click(self, lat: float, lng: float) -> None:
        self._place_manually(lat, lng, "click")

    def on_email_change(self, text: str) -> None:
        with self._lock:
            if self._closed:
                return
            self.form.email = text
            if "@" in text:
                self._scheduler.schedule(
                    EMAIL_KEY,
                    self._settings.email_debounce_ms,
                    lambda: self._check_email(text),
                )
                return
            self._scheduler.cancel(EMAIL_KEY)
            self._set_email_status(EmailStatus())

    def on_field_change(self, name: str, value: Any) -> None:
        if name not in ("address", "email") and name not in _PLAIN_FIELDS:
            raise ValueError(f"unknown registration field: {name}")
        if name == "agree_terms":
            value = _parse_flag(value)
        elif not isinstance(value, str):
            raise ValueError(f"{name} must be a string")

        if name == "address":
            self.on_address_text_change(value)
        elif name == "email":
            self.on_email_change(value)
        else:
            with self._lock:
                setattr(self.form, name, value)

    # -- submission ---------------------------------------------------------

    def submit(self) -> SubmissionResult:
        with self._lock:
            errors = validate_registration(self.form, self.tracker.state, self.email_status)
            if errors:
                return SubmissionResult(ok=False, errors=errors, focus=first_invalid_field(errors))
            if not self.session.authenticated:
                return SubmissionResult(ok=False, message="You cannot register without signing up first")
            payload = to_registration_payload(self.form, self.tracker.state)

        try:
            company = directory_api.register_company(self.session, payload)
        except directory_api.ConflictError as exc:
            with self._lock:
                self._set_email_status(EmailStatus(message=str(exc), available=False))
            errors = {"email": "Email already exists"}
            return SubmissionResult(ok=False, errors=errors, focus="email", message=str(exc))
        except directory_api.DirectoryApiError as exc:
            logger.warning("Registration failed: %s", exc)
            return SubmissionResult(ok=False, message=str(exc) or "Registration failed. Please try again.")

        return SubmissionResult(ok=True, message="Company registered successfully!", company=company)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            form = asdict(self.form)
            form.pop("password", None)
            marker_id = self.synchronizer.marker_id
            return {
                "form": form,
                "location": self.tracker.state.to_dict(),
                "marker_id": marker_id,
                "is_geocoding": self.is_geocoding,
                "warnings": list(self.warnings),
                "email_status": asdict(self.email_status),
            }

    # -- internals ----------------------------------------------------------

    def _place_manually(self, lat: float, lng: float, how: str) -> None:
        with self._lock:
            if self._closed:
                return
            self._scheduler.cancel(ADDRESS_KEY)
            self._deferred = None
            logger.info("Location set by %s to %.6f, %.6f", how, lat, lng)
            self.tracker.apply_manual(lat, lng)

    def _dispatch_geocode(self, query: AddressQuery) -> None:
        with self._lock:
            if self._closed or not self.tracker.is_current(query):
                return
            if self.is_geocoding:
                logger.debug("Geocode in flight; deferring token=%s", query.token)
                self._deferred = query
                return
            self._geocoding = True
        self._executor.submit(self._run_geocode, query)

    def _run_geocode(self, query: AddressQuery) -> None:
        try:
            coords = self._client.forward_geocode(query.text)
        except GeocodeNotFound:
            with self._lock:
                if not self._closed and self.tracker.apply_not_found(query):
                    logger.info("No geocode match for %r yet", query.text)
        except GeocodeServiceUnavailable as exc:
            with self._lock:
                if not self._closed and self.tracker.is_current(query):
                    logger.warning("Geocoding service unavailable: %s", exc)
                    self._warn(SERVICE_UNAVAILABLE_WARNING)
        except GeocoderBusy:
            with self._lock:
                if self._deferred is None:
                    self._deferred = query
        else:
            with self._lock:
                if not self._closed and self.tracker.apply_geocoded(query, coords):
                    logger.info("Geocoded %r to %.6f, %.6f", query.text, coords.latitude, coords.longitude)
        finally:
            with self._lock:
                self._geocoding = False
                deferred, self._deferred = self._deferred, None
            if deferred is not None:
                self._dispatch_geocode(deferred)

    def _check_email(self, email: str) -> None:
        try:
            status = directory_api.check_email(email, self.session)
        except directory_api.DirectoryApiError as exc:
            logger.warning("Email availability check failed: %s", exc)
            status = EmailStatus(message=EMAIL_CHECK_FAILED, available=None)
        with self._lock:
            if self._closed or self.form.email != email:
                return
            self._set_email_status(status)

    def _set_email_status(self, status: EmailStatus) -> None:
        if status == self.email_status:
            return
        self.email_status = status
        self.email_status_changed.emit(status)

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self.geocoding_warning.emit(message)
