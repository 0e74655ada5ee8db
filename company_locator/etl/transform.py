"""Utilities for transforming directory API payloads into records and back."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from company_locator.core.location import LocationState
from company_locator.models import CompanyRecord, Coordinates, RegistrationForm

logger = logging.getLogger(__name__)


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def parse_position(location: Any) -> Optional[Coordinates]:
    if not isinstance(location, dict):
        return None
    try:
        return Coordinates(float(location["latitude"]), float(location["longitude"]))
    except (KeyError, TypeError, ValueError):
        return None


def to_company_record(result: Dict[str, Any]) -> CompanyRecord:
    record_id = _strip_or_none(result.get("_id") or result.get("id"))
    name = _strip_or_none(result.get("companyName"))
    position = parse_position(result.get("location"))
    if not record_id or not name or position is None:
        raise ValueError("company payload requires an id, companyName and location")

    return CompanyRecord(
        id=record_id,
        name=name,
        address=_strip_or_none(result.get("address")) or "",
        position=position,
        opening_hours=_strip_or_none(result.get("openingHours")),
        closing_hours=_strip_or_none(result.get("closingHours")),
        contact=_strip_or_none(result.get("firstName")),
        email=_strip_or_none(result.get("email")),
        owner_id=_strip_or_none(result.get("userId")),
        raw_snapshot=result,
    )


def to_company_records(results: Iterable[Dict[str, Any]]) -> List[CompanyRecord]:
    records: List[CompanyRecord] = []
    for result in results or []:
        if not isinstance(result, dict):
            continue
        try:
            records.append(to_company_record(result))
        except ValueError as exc:
            logger.debug("Skipping company payload %s: %s", result.get("_id"), exc)
    return records


def to_registration_payload(form: RegistrationForm, location: LocationState) -> Dict[str, Any]:
    if not location.has_coordinates:
        raise ValueError("a location is required to build a registration payload")

    return {
        "firstName": form.first_name.strip(),
        "email": form.email.strip().lower(),
        "password": form.password,
        "companyName": form.company_name.strip(),
        "openingHours": form.opening_hours.strip(),
        "closingHours": form.closing_hours.strip(),
        "address": form.address.strip(),
        "latitude": location.latitude,
        "longitude": location.longitude,
    }
