"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

FALLBACK_USER_AGENT = "company-locator/0.1 (contact: admin@example.com)"


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    geocoder_base_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = FALLBACK_USER_AGENT
    geocoder_timeout: float = 10.0
    directory_api_url: str = "http://localhost:5000/api"
    directory_api_timeout: float = 10.0
    address_debounce_ms: int = 1000
    email_debounce_ms: int = 500
    min_address_length: int = 3
    port: int = 8080


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    geocoder_base_url = os.getenv("GEOCODER_BASE_URL", "https://nominatim.openstreetmap.org").rstrip("/")
    geocoder_user_agent = os.getenv("GEOCODER_USER_AGENT", "").strip()
    directory_api_url = os.getenv("DIRECTORY_API_URL", "http://localhost:5000/api").rstrip("/")

    if not geocoder_user_agent:
        logger.warning(
            "GEOCODER_USER_AGENT is not configured; using fallback UA. "
            "This may violate the geocoder usage policy."
        )
        geocoder_user_agent = FALLBACK_USER_AGENT

    min_address_length = _get_int("MIN_ADDRESS_LENGTH", 3)
    if min_address_length < 1:
        raise ConfigError("MIN_ADDRESS_LENGTH must be positive")

    return Settings(
        geocoder_base_url=geocoder_base_url,
        geocoder_user_agent=geocoder_user_agent,
        geocoder_timeout=_get_float("GEOCODER_TIMEOUT", 10.0),
        directory_api_url=directory_api_url,
        directory_api_timeout=_get_float("DIRECTORY_API_TIMEOUT", 10.0),
        address_debounce_ms=_get_int("ADDRESS_DEBOUNCE_MS", 1000),
        email_debounce_ms=_get_int("EMAIL_DEBOUNCE_MS", 500),
        min_address_length=min_address_length,
        port=_get_int("PORT", 8080),
    )
