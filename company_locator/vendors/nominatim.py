"""Client utilities for a Nominatim-compatible geocoding API."""

import logging
from typing import Any, Dict, List

import requests

from company_locator.core.config import get_settings

logger = logging.getLogger(__name__)
_SESSION = requests.Session()


class NominatimError(RuntimeError):
    """Raised when the geocoder cannot be reached or answers with a non-2xx status."""


def _get(path: str, params: Dict[str, Any]) -> Any:
    settings = get_settings()
    url = f"{settings.geocoder_base_url}/{path}"
    headers = {"User-Agent": settings.geocoder_user_agent, "Accept": "application/json"}
    try:
        response = _SESSION.get(url, params=params, headers=headers, timeout=settings.geocoder_timeout)
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        logger.error("%s request failed: %s", path, exc)
        raise NominatimError(str(exc)) from exc
    except ValueError as exc:
        logger.error("%s returned a non-JSON payload: %s", path, exc)
        raise NominatimError("geocoder returned a non-JSON payload") from exc


def search(address: str) -> List[Dict[str, Any]]:
    """Forward lookup capped to a single candidate."""
    payload = _get("search", {"q": address, "format": "json", "limit": 1})
    if not isinstance(payload, list):
        raise NominatimError(f"unexpected search payload type: {type(payload).__name__}")
    return payload


def reverse(lat: float, lng: float) -> Dict[str, Any]:
    params = {"lat": lat, "lon": lng, "format": "json", "zoom": 18, "addressdetails": 1}
    payload = _get("reverse", params)
    if not isinstance(payload, dict):
        raise NominatimError(f"unexpected reverse payload type: {type(payload).__name__}")
    return payload
