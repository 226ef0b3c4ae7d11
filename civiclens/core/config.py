"""
Service configuration for the AI and location integrations.

Values come from the environment (a `.env` file next to the package is loaded
first) and are materialised into pydantic models at call time so tests and
`ServiceFactory.restart()` always see the current environment.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env')

logger = logging.getLogger(__name__)

GEMINI_KEY_PLACEHOLDER = "your_gemini_api_key_here"
GEOCODING_KEY_PLACEHOLDER = "your_google_geocoding_api_key_here"

MIN_GEMINI_TIMEOUT_MS = 5000
MIN_LOCATION_TIMEOUT_MS = 3000


class ConfidenceDefaults(BaseModel):
    description: float = 0.0
    category: float = 0.0
    priority: float = 0.0


class FallbackDefaults(BaseModel):
    category: str = "Other"
    priority: str = "Medium"
    department: str = "General"
    confidence: ConfidenceDefaults = Field(default_factory=ConfidenceDefaults)


class GeminiConfig(BaseModel):
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    timeout_ms: int = 30000
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_image_bytes: int = 10 * 1024 * 1024
    supported_formats: List[str] = ["image/jpeg", "image/png", "image/webp"]
    defaults: FallbackDefaults = Field(default_factory=FallbackDefaults)


class LocationConfig(BaseModel):
    geocoding_api_key: Optional[str] = None
    timeout_ms: int = 10000
    max_retries: int = 3
    base_delay_ms: int = 1000
    cache_ttl_s: int = 86400
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    google_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    ip_geolocation_url: str = "http://ip-api.com/json"
    user_agent: str = "CivicLens-App/1.0"


class ServicesConfig(BaseModel):
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    location: LocationConfig = Field(default_factory=LocationConfig)
    # Raw env values that could not be parsed as integers
    invalid_values: List[str] = Field(default_factory=list)


class AppSettings(BaseModel):
    mongo_uri: str = "mongodb://localhost:27017/civiclens"
    mongo_db_name: str = "civiclens"
    redis_url: Optional[str] = None
    log_level: str = "INFO"
    upload_dir: str = "uploads"


class ConfigValidation(BaseModel):
    valid: bool = True
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


def is_placeholder_key(value: Optional[str]) -> bool:
    """Treat empty keys and the documented placeholders as not configured."""
    if not value or not value.strip():
        return True
    return value.strip() in (GEMINI_KEY_PLACEHOLDER, GEOCODING_KEY_PLACEHOLDER)


def _int_env(name: str, default: int, invalid: List[str]) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ {name}={raw!r} is not an integer; keeping default {default}")
        invalid.append(f"{name}={raw!r} is not a valid integer")
        return default


def get_config() -> ServicesConfig:
    """Build the service configuration from the current environment."""
    invalid: List[str] = []
    shared_retries = _int_env("MAX_RETRIES", 3, invalid)

    gemini = GeminiConfig(
        api_key=os.getenv("GEMINI_API_KEY") or None,
        model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        timeout_ms=_int_env("GEMINI_TIMEOUT", 30000, invalid),
        max_retries=shared_retries,
        base_delay_ms=_int_env("GEMINI_BASE_DELAY", 1000, invalid),
        max_image_bytes=_int_env("MAX_IMAGE_BYTES", 10 * 1024 * 1024, invalid),
    )
    location = LocationConfig(
        geocoding_api_key=os.getenv("GEOCODING_API_KEY") or None,
        timeout_ms=_int_env("LOCATION_TIMEOUT", 10000, invalid),
        max_retries=shared_retries,
        base_delay_ms=_int_env("LOCATION_BASE_DELAY", 1000, invalid),
        cache_ttl_s=_int_env("GEOCODE_CACHE_TTL", 86400, invalid),
    )
    return ServicesConfig(gemini=gemini, location=location, invalid_values=invalid)


def get_app_settings() -> AppSettings:
    mongo_uri = (
        os.getenv("MONGODB_URI")
        or os.getenv("MONGO_URI")
        or "mongodb://localhost:27017/civiclens"
    )
    return AppSettings(
        mongo_uri=mongo_uri,
        mongo_db_name=os.getenv("MONGODB_NAME", "civiclens"),
        redis_url=os.getenv("REDIS_URL") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
    )


def validate_config(config: Optional[ServicesConfig] = None) -> ConfigValidation:
    """
    Check a configuration for problems.

    Missing credentials only produce warnings (the services degrade to their
    fallback paths); numeric values that are unusable are errors.
    """
    config = config or get_config()
    validation = ConfigValidation()

    if is_placeholder_key(config.gemini.api_key):
        validation.warnings.append(
            "Gemini API key not configured - AI features will use fallback responses"
        )
    if is_placeholder_key(config.location.geocoding_api_key):
        validation.warnings.append(
            "Google Geocoding API key not configured - will use OpenStreetMap only"
        )

    for problem in config.invalid_values:
        validation.errors.append(problem)

    if config.gemini.timeout_ms < MIN_GEMINI_TIMEOUT_MS:
        validation.errors.append("Gemini timeout too low - minimum 5 seconds recommended")
    if config.location.timeout_ms < MIN_LOCATION_TIMEOUT_MS:
        validation.errors.append("Location service timeout too low - minimum 3 seconds recommended")
    if config.gemini.max_retries < 1 or config.location.max_retries < 1:
        validation.errors.append("MAX_RETRIES must be at least 1")
    if config.gemini.base_delay_ms < 0 or config.location.base_delay_ms < 0:
        validation.errors.append("Retry base delay cannot be negative")

    validation.valid = not validation.errors
    return validation
