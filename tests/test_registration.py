"""Behaviour of the registration workflow: typing, geocoding, dragging, submitting."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from company_locator.core import registration
from company_locator.core.config import Settings
from company_locator.core.debounce import DebounceScheduler
from company_locator.core.geocoding import GeocodeNotFound, GeocodeServiceUnavailable
from company_locator.core.location import EMPTY, LocationSource, LocationState
from company_locator.core.markers import InMemoryMapSurface
from company_locator.core.registration import (
    SERVICE_UNAVAILABLE_WARNING,
    RegistrationController,
)
from company_locator.models import Coordinates, EmailStatus
from company_locator.vendors import directory_api
from company_locator.vendors.directory_api import SessionContext


class FakeGeocoder:
    """Scripted geocoder; answers are keyed by address text."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []
        self.in_flight = False

    def forward_geocode(self, address):
        self.calls.append(address)
        answer = self.answers.get(address, GeocodeNotFound(address))
        if isinstance(answer, Exception):
            raise answer
        return answer

    def describe_position(self, lat, lng):
        return f"Location: {lat:.4f}, {lng:.4f}"


GOOGLEPLEX = "1600 Amphitheatre Parkway"


@pytest.fixture
def geocoder():
    return FakeGeocoder({GOOGLEPLEX: Coordinates(37.4220, -122.0841)})


@pytest.fixture
def surface():
    return InMemoryMapSurface()


@pytest.fixture
def make_controller(clock, surface, geocoder, immediate_executor):
    def _make(executor=immediate_executor, session=SessionContext(token="tok")):
        controller = RegistrationController(
            surface,
            client=geocoder,
            scheduler=DebounceScheduler(timer_factory=clock),
            executor=executor,
            session=session,
            settings=Settings(),
        )
        controller.on_mount()
        return controller

    return _make


def _type(controller, text):
    for end in range(1, len(text) + 1):
        controller.on_address_text_change(text[:end])


def test_short_address_clears_synchronously_without_lookup(make_controller, clock, geocoder):
    controller = make_controller()

    for text in ("", "a", "ab", "     "):
        controller.on_address_text_change(text)
        assert controller.location == EMPTY

    assert clock.live == []
    assert geocoder.calls == []


def test_rapid_edits_issue_one_lookup_with_final_text(make_controller, clock, geocoder, surface):
    controller = make_controller()

    _type(controller, GOOGLEPLEX)
    assert geocoder.calls == []
    assert len(clock.live) == 1
    assert clock.live[0].interval == 1.0

    clock.fire_all()

    assert geocoder.calls == [GOOGLEPLEX]
    assert controller.location == LocationState(37.4220, -122.0841, LocationSource.GEOCODED)
    marker = surface.markers[controller.synchronizer.marker_id]
    assert marker.position == (37.4220, -122.0841)
    assert marker.popup == GOOGLEPLEX
    assert marker.draggable is True


def test_drag_then_keystroke_scenario(make_controller, clock, surface, geocoder):
    controller = make_controller()
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    surface.drag_marker(controller.synchronizer.marker_id, 37.5, -122.1)
    assert controller.location == LocationState(37.5, -122.1, LocationSource.MANUAL)

    controller.on_address_text_change("1")
    assert controller.location == EMPTY
    assert surface.markers == {}


def test_keystroke_after_drag_resets_to_none_before_lookup(make_controller, clock, surface):
    controller = make_controller()
    controller.on_map_click(37.5, -122.1)
    assert controller.location.source is LocationSource.MANUAL

    controller.on_address_text_change(GOOGLEPLEX)

    assert controller.location == EMPTY
    clock.fire_all()
    assert controller.location.source is LocationSource.GEOCODED


def test_map_click_sets_manual_location(make_controller, surface):
    controller = make_controller()

    surface.click(12.5, 77.25)

    assert controller.location == LocationState(12.5, 77.25, LocationSource.MANUAL)
    marker = surface.markers[controller.synchronizer.marker_id]
    assert marker.popup == "Location: 12.5000, 77.2500"


def test_drag_cancels_pending_lookup(make_controller, clock, geocoder):
    controller = make_controller()
    controller.on_address_text_change(GOOGLEPLEX)

    controller.on_marker_drag_end(37.5, -122.1)
    clock.fire_all()

    assert geocoder.calls == []
    assert controller.location.source is LocationSource.MANUAL


def test_stale_response_is_discarded(make_controller, clock, geocoder, deferred_executor):
    geocoder.answers["Main Street A"] = Coordinates(1.0, 1.0)
    geocoder.answers["Main Street B"] = Coordinates(2.0, 2.0)
    controller = make_controller(executor=deferred_executor)

    controller.on_address_text_change("Main Street A")
    clock.fire_all()
    controller.on_address_text_change("Main Street B")
    clock.fire_all()

    # Second lookup waits for the outstanding one instead of double-issuing.
    assert len(deferred_executor.tasks) == 1
    assert controller.is_geocoding

    deferred_executor.run_next()
    assert controller.location == EMPTY

    deferred_executor.run_next()
    assert geocoder.calls == ["Main Street A", "Main Street B"]
    assert controller.location == LocationState(2.0, 2.0, LocationSource.GEOCODED)
    assert not controller.is_geocoding


def test_response_after_drag_does_not_overwrite_manual(make_controller, clock, deferred_executor):
    controller = make_controller(executor=deferred_executor)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    controller.on_marker_drag_end(37.5, -122.1)
    deferred_executor.run_next()

    assert controller.location == LocationState(37.5, -122.1, LocationSource.MANUAL)


def test_not_found_clears_without_warning(make_controller, clock, geocoder):
    controller = make_controller()
    warnings = []
    controller.on_geocoding_warning(warnings.append)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    controller.on_address_text_change(GOOGLEPLEX + " zzz")
    clock.fire_all()

    assert controller.location == EMPTY
    assert warnings == []


def test_service_unavailable_keeps_location_and_warns_once(make_controller, clock, geocoder):
    geocoder.answers["Broken Road"] = GeocodeServiceUnavailable("503")
    controller = make_controller()
    warnings = []
    controller.on_geocoding_warning(warnings.append)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    controller.on_address_text_change("Broken Road")
    clock.fire_all()

    assert controller.location == LocationState(37.4220, -122.0841, LocationSource.GEOCODED)
    assert warnings == [SERVICE_UNAVAILABLE_WARNING]

    controller.on_address_text_change("Broken Road")
    clock.fire_all()
    assert warnings == [SERVICE_UNAVAILABLE_WARNING, SERVICE_UNAVAILABLE_WARNING]
    assert controller.snapshot()["warnings"] == warnings


def test_location_listener_receives_changes(make_controller, clock):
    controller = make_controller()
    seen = []
    dispose = controller.on_location_state_changed(seen.append)

    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()
    controller.on_map_click(1.0, 2.0)
    dispose()
    controller.on_address_text_change("")

    assert [s.source for s in seen] == [LocationSource.GEOCODED, LocationSource.MANUAL]


def test_unmount_cancels_timers_and_ignores_late_responses(make_controller, clock, surface, deferred_executor):
    controller = make_controller(executor=deferred_executor)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()
    controller.on_email_change("a@b.co")

    controller.on_unmount()
    deferred_executor.run_next()

    assert clock.live == []
    assert controller.location == EMPTY
    assert surface.handler_count("click") == 0
    assert surface.handler_count("dragend") == 0

    controller.on_address_text_change("Something else")
    assert clock.live == []


def test_email_check_is_debounced(make_controller, clock, monkeypatch):
    checked = []

    def fake_check(email, ctx):
        checked.append(email)
        return EmailStatus(message="Email is already used", available=False)

    monkeypatch.setattr(registration.directory_api, "check_email", fake_check)
    controller = make_controller()

    for text in ("ada", "ada@", "ada@example.com"):
        controller.on_email_change(text)
    assert clock.live[-1].interval == 0.5
    clock.fire_all()

    assert checked == ["ada@example.com"]
    assert controller.email_status == EmailStatus("Email is already used", False)

    controller.on_email_change("ada")
    assert controller.email_status == EmailStatus()


def test_email_check_failure_sets_status(make_controller, clock, monkeypatch):
    def failing_check(email, ctx):
        raise directory_api.DirectoryApiError("down")

    monkeypatch.setattr(registration.directory_api, "check_email", failing_check)
    controller = make_controller()

    controller.on_email_change("ada@example.com")
    clock.fire_all()

    assert controller.email_status == EmailStatus(message="Error checking email", available=None)


def _fill_form(controller):
    controller.on_field_change("first_name", "Ada")
    controller.on_field_change("password", "secret1")
    controller.on_field_change("company_name", "Acme")
    controller.on_field_change("agree_terms", True)
    controller.form.email = "ada@example.com"


def test_submit_reports_first_invalid_field(make_controller):
    controller = make_controller()

    result = controller.submit()

    assert result.ok is False
    assert result.focus == "first_name"
    assert list(result.errors)[:3] == ["first_name", "email", "password"]


def test_submit_requires_location(make_controller):
    controller = make_controller()
    _fill_form(controller)
    controller.on_address_text_change(GOOGLEPLEX)

    result = controller.submit()

    assert result.focus == "location"


def test_submit_posts_registration(make_controller, clock, monkeypatch):
    posted = {}

    def fake_register(ctx, payload):
        posted.update(payload=payload, token=ctx.token)
        return {"id": "c1", "companyName": "Acme"}

    monkeypatch.setattr(registration.directory_api, "register_company", fake_register)
    controller = make_controller()
    _fill_form(controller)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    result = controller.submit()

    assert result.ok is True
    assert result.company["id"] == "c1"
    assert posted["token"] == "tok"
    assert posted["payload"]["latitude"] == pytest.approx(37.4220)
    assert posted["payload"]["address"] == GOOGLEPLEX


def test_submit_maps_duplicate_email_to_field_error(make_controller, clock, monkeypatch):
    def conflict(ctx, payload):
        raise directory_api.ConflictError("Email already exists", 400)

    monkeypatch.setattr(registration.directory_api, "register_company", conflict)
    controller = make_controller()
    _fill_form(controller)
    controller.on_map_click(1.0, 2.0)
    controller.on_field_change("address", "Somewhere 1")
    controller.on_map_click(1.0, 2.0)

    result = controller.submit()

    assert result.ok is False
    assert result.errors == {"email": "Email already exists"}
    assert result.focus == "email"
    assert controller.email_status.available is False


def test_submit_without_session(make_controller, clock):
    controller = make_controller(session=SessionContext())
    _fill_form(controller)
    controller.on_address_text_change(GOOGLEPLEX)
    clock.fire_all()

    result = controller.submit()

    assert result.ok is False
    assert "signing up" in result.message


def test_unknown_field_is_rejected(make_controller):
    controller = make_controller()

    with pytest.raises(ValueError):
        controller.on_field_change("nickname", "x")


def test_padded_short_address_still_looks_up(make_controller, clock, geocoder):
    controller = make_controller()

    controller.on_address_text_change(" ab")
    clock.fire_all()

    assert geocoder.calls == [" ab"]


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), ("true", True), ("1", True), (False, False), ("false", False), ("0", False)],
)
def test_agree_terms_parses_flags(make_controller, value, expected):
    controller = make_controller()

    controller.on_field_change("agree_terms", value)

    assert controller.form.agree_terms is expected


@pytest.mark.parametrize(
    "name, value",
    [("agree_terms", "maybe"), ("agree_terms", None), ("address", None), ("email", None), ("first_name", 5)],
)
def test_field_values_of_wrong_type_are_rejected(make_controller, geocoder, clock, name, value):
    controller = make_controller()

    with pytest.raises(ValueError):
        controller.on_field_change(name, value)

    assert controller.form.address == ""
    assert controller.form.agree_terms is False
    assert clock.live == []


class SlowGeocoder(FakeGeocoder):
    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def describe_position(self, lat, lng):
        self.started.set()
        self.release.wait(5)
        return "Mountain View"


def test_marker_is_placed_before_reverse_label_arrives(clock):
    slow = SlowGeocoder()
    surface = InMemoryMapSurface()
    pool = ThreadPoolExecutor(max_workers=1)
    controller = RegistrationController(
        surface,
        client=slow,
        scheduler=DebounceScheduler(timer_factory=clock),
        executor=pool,
        settings=Settings(),
    )
    controller.on_mount()

    controller.on_map_click(12.5, 77.25)
    assert slow.started.wait(5)

    marker_id = controller.synchronizer.marker_id
    assert surface.markers[marker_id].popup == "Location: 12.5000, 77.2500"

    other = threading.Thread(target=controller.on_address_text_change, args=("ab",))
    other.start()
    other.join(0.5)
    assert not other.is_alive()
    assert controller.location == EMPTY

    slow.release.set()
    pool.shutdown(wait=True)

    assert surface.markers == {}
    assert not any(entry[0] == "set_popup" for entry in surface.history)


def test_reverse_label_replaces_coordinate_popup(make_controller, surface, geocoder, deferred_executor):
    geocoder.describe_position = lambda lat, lng: "Mountain View"
    controller = make_controller(executor=deferred_executor)

    controller.on_map_click(12.5, 77.25)
    marker_id = controller.synchronizer.marker_id
    assert surface.markers[marker_id].popup == "Location: 12.5000, 77.2500"

    deferred_executor.run_next()

    assert surface.markers[marker_id].popup == "Mountain View"
