"""Client for the company directory REST API.

Credentials travel in an explicit ``SessionContext`` handed to every call that
needs them; nothing is read from ambient state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from company_locator.core.config import get_settings
from company_locator.etl.transform import to_company_record, to_company_records
from company_locator.models import CompanyRecord, EmailStatus

logger = logging.getLogger(__name__)


def _build_session() -> requests.Session:
    session = requests.Session()
    # Only idempotent reads are retried; registrations must never be replayed.
    retries = Retry(total=3, backoff_factor=1, status_forcelist=(502, 503, 504), allowed_methods=("GET",))
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


class DirectoryApiError(RuntimeError):
    """Raised when the directory API is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ConflictError(DirectoryApiError):
    """The email is already registered."""


class NotFoundError(DirectoryApiError):
    """The requested company does not exist."""


@dataclass(frozen=True)
class SessionContext:
    token: Optional[str] = None
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


ANONYMOUS = SessionContext()


def _error_message(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error"):
            if payload.get(key):
                return str(payload[key])
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict):
                return str(first.get("message") or first.get("msg") or default)
    return default


def _is_email_conflict(status_code: int, payload: Any) -> bool:
    if status_code == 409:
        return True
    if status_code != 400 or not isinstance(payload, dict):
        return False
    for error in payload.get("errors") or []:
        if isinstance(error, dict) and (error.get("field") or error.get("path")) == "email":
            return "exist" in str(error.get("message") or error.get("msg") or "").lower()
    return False


def _request(method: str, path: str, ctx: SessionContext = ANONYMOUS, **kwargs: Any) -> Any:
    settings = get_settings()
    url = f"{settings.directory_api_url}{path}"
    headers = {"Accept": "application/json", **ctx.headers()}
    try:
        response = _SESSION.request(method, url, headers=headers, timeout=settings.directory_api_timeout, **kwargs)
    except requests.RequestException as exc:
        logger.error("Directory API %s %s failed: %s", method, path, exc)
        raise DirectoryApiError(f"directory API unreachable: {exc}") from exc

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if 200 <= response.status_code < 300:
        return payload

    message = _error_message(payload, f"directory API returned {response.status_code}")
    logger.warning("Directory API %s %s -> %s: %s", method, path, response.status_code, message)
    if response.status_code == 404:
        raise NotFoundError(message, response.status_code, payload)
    if _is_email_conflict(response.status_code, payload):
        raise ConflictError(message, response.status_code, payload)
    raise DirectoryApiError(message, response.status_code, payload)


def signup(username: str, email: str, password: str) -> Tuple[SessionContext, Dict[str, Any]]:
    payload = _request("POST", "/users/signup", json={"username": username, "email": email, "password": password})
    if not isinstance(payload, dict) or not payload.get("token"):
        raise DirectoryApiError("signup response did not include a token", payload=payload)
    user = payload.get("user") or {}
    return SessionContext(token=payload["token"], user=user), user


def check_email(email: str, ctx: SessionContext = ANONYMOUS) -> EmailStatus:
    payload = _request("POST", "/companies/check-email", ctx, json={"email": email})
    if not isinstance(payload, dict) or "available" not in payload:
        raise DirectoryApiError("malformed check-email response", payload=payload)
    return EmailStatus(message=str(payload.get("message") or ""), available=bool(payload["available"]))


def register_company(ctx: SessionContext, registration: Dict[str, Any]) -> Dict[str, Any]:
    payload = _request("POST", "/companies/register", ctx, json=registration)
    company = payload.get("company") if isinstance(payload, dict) else None
    logger.info("Registered company %s", registration.get("companyName"))
    return company or {}


def list_companies(search: str = "", ctx: SessionContext = ANONYMOUS) -> List[CompanyRecord]:
    params = {"search": search} if search else None
    payload = _request("GET", "/companies", ctx, params=params)
    if not isinstance(payload, list):
        raise DirectoryApiError("malformed company listing", payload=payload)
    records = to_company_records(payload)
    logger.info("Fetched %d companies (search=%r)", len(records), search)
    return records


def get_company(company_id: str, ctx: SessionContext = ANONYMOUS) -> CompanyRecord:
    payload = _request("GET", f"/companies/{company_id}", ctx)
    if not isinstance(payload, dict):
        raise DirectoryApiError("malformed company payload", payload=payload)
    try:
        return to_company_record(payload)
    except ValueError as exc:
        raise DirectoryApiError(str(exc), payload=payload) from exc


def delete_company(ctx: SessionContext, company_id: str) -> None:
    if not ctx.authenticated:
        raise DirectoryApiError("deleting a company requires an authenticated session")
    _request("DELETE", f"/companies/{company_id}", ctx)
    logger.info("Deleted company %s", company_id)
