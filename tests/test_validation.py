from company_locator.core.location import EMPTY, LocationSource, LocationState
from company_locator.core.validation import FIELD_ORDER, first_invalid_field, validate_registration
from company_locator.models import EmailStatus, RegistrationForm

PLACED = LocationState(37.422, -122.0841, LocationSource.GEOCODED)


def _valid_form(**overrides):
    values = dict(
        first_name="Ada",
        email="ada@example.com",
        password="secret1",
        company_name="Acme",
        opening_hours="09:00",
        closing_hours="17:00",
        address="1600 Amphitheatre Parkway",
        agree_terms=True,
    )
    values.update(overrides)
    return RegistrationForm(**values)


def test_valid_form_has_no_errors():
    assert validate_registration(_valid_form(), PLACED) == {}


def test_errors_follow_fixed_priority():
    errors = validate_registration(RegistrationForm(opening_hours="", closing_hours=""), EMPTY)

    assert list(errors) == list(FIELD_ORDER)
    assert first_invalid_field(errors) == "first_name"


def test_location_is_required():
    errors = validate_registration(_valid_form(), EMPTY)

    assert errors == {"location": "Please select a valid location on the map"}
    assert first_invalid_field(errors) == "location"


def test_closing_must_follow_opening():
    errors = validate_registration(_valid_form(opening_hours="18:00", closing_hours="09:00"), PLACED)

    assert errors == {"closing_hours": "Closing time must be after opening time"}


def test_malformed_hours():
    errors = validate_registration(_valid_form(opening_hours="9am"), PLACED)

    assert errors == {"opening_hours": "Opening hours must use HH:MM"}


def test_email_rules():
    assert validate_registration(_valid_form(email="not-an-email"), PLACED) == {
        "email": "Please enter a valid email"
    }
    taken = EmailStatus(message="Email is already used", available=False)
    assert validate_registration(_valid_form(), PLACED, taken) == {"email": "Email is already used"}
    unknown = EmailStatus(message="Error checking email", available=None)
    assert validate_registration(_valid_form(), PLACED, unknown) == {}


def test_short_password_and_terms():
    errors = validate_registration(_valid_form(password="123", agree_terms=False), PLACED)

    assert list(errors) == ["password", "agree_terms"]
    assert first_invalid_field(errors) == "password"


def test_first_invalid_field_of_nothing():
    assert first_invalid_field({}) is None
