"""Field-level validation of the registration form.

Errors come back in a fixed priority order so the first key is always the
field that should receive focus.
"""

import re
from datetime import datetime
from typing import Dict, Optional

from company_locator.core.location import LocationState
from company_locator.models import EmailStatus, RegistrationForm

FIELD_ORDER = (
    "first_name",
    "email",
    "password",
    "company_name",
    "opening_hours",
    "closing_hours",
    "address",
    "location",
    "agree_terms",
)

EMAIL_REGEX = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")
MIN_PASSWORD_LENGTH = 6


def _parse_time(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value.strip(), "%H:%M")
    except ValueError:
        return None


def validate_registration(
    form: RegistrationForm,
    location: LocationState,
    email_status: Optional[EmailStatus] = None,
) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if not form.first_name.strip():
        errors["first_name"] = "Please enter your first name"

    email = form.email.strip()
    if not email:
        errors["email"] = "Please enter your email"
    elif not EMAIL_REGEX.match(email):
        errors["email"] = "Please enter a valid email"
    elif email_status is not None and email_status.available is False:
        errors["email"] = "Email is already used"

    if len(form.password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if not form.company_name.strip():
        errors["company_name"] = "Please enter company name"

    opening = _parse_time(form.opening_hours) if form.opening_hours.strip() else None
    closing = _parse_time(form.closing_hours) if form.closing_hours.strip() else None
    if not form.opening_hours.strip():
        errors["opening_hours"] = "Please enter opening hours"
    elif opening is None:
        errors["opening_hours"] = "Opening hours must use HH:MM"
    if not form.closing_hours.strip():
        errors["closing_hours"] = "Please enter closing hours"
    elif closing is None:
        errors["closing_hours"] = "Closing hours must use HH:MM"
    elif opening is not None and closing <= opening:
        errors["closing_hours"] = "Closing time must be after opening time"

    if not form.address.strip():
        errors["address"] = "Please enter business address"

    if not location.has_coordinates:
        errors["location"] = "Please select a valid location on the map"

    if not form.agree_terms:
        errors["agree_terms"] = "You must agree to the terms and conditions"

    return {field: errors[field] for field in FIELD_ORDER if field in errors}


def first_invalid_field(errors: Dict[str, str]) -> Optional[str]:
    for field in FIELD_ORDER:
        if field in errors:
            return field
    return None
