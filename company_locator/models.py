"""Core data models shared by the locator workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Coordinates:
    latitude: float
    longitude: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(slots=True)
class CompanyRecord:
    """Read-only snapshot of a company returned by the directory API."""

    id: str
    name: str
    address: str
    position: Coordinates
    opening_hours: Optional[str] = None
    closing_hours: Optional[str] = None
    contact: Optional[str] = None
    email: Optional[str] = None
    owner_id: Optional[str] = None
    raw_snapshot: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def hours(self) -> Dict[str, Optional[str]]:
        return {"open": self.opening_hours, "close": self.closing_hours}


@dataclass(slots=True)
class RegistrationForm:
    """Snapshot of the registration form fields (everything except the location)."""

    first_name: str = ""
    email: str = ""
    password: str = ""
    company_name: str = ""
    opening_hours: str = "09:00"
    closing_hours: str = "17:00"
    address: str = ""
    agree_terms: bool = False


@dataclass(frozen=True, slots=True)
class EmailStatus:
    message: str = ""
    available: Optional[bool] = None
