import pytest

from civiclens.core.config import (
    GEMINI_KEY_PLACEHOLDER,
    GEOCODING_KEY_PLACEHOLDER,
    get_app_settings,
    get_config,
    is_placeholder_key,
    validate_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "GEMINI_API_KEY",
        "GEMINI_MODEL",
        "GEMINI_TIMEOUT",
        "MAX_RETRIES",
        "GEMINI_BASE_DELAY",
        "MAX_IMAGE_BYTES",
        "GEOCODING_API_KEY",
        "GEOCODE_CACHE_TTL",
        "LOCATION_TIMEOUT",
        "LOCATION_BASE_DELAY",
        "MONGODB_URI",
        "MONGO_URI",
        "REDIS_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = get_config()

    assert config.gemini.model == "gemini-2.5-flash"
    assert config.gemini.timeout_ms == 30000
    assert config.gemini.max_retries == 3
    assert config.location.timeout_ms == 10000
    assert config.location.cache_ttl_s == 86400


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    monkeypatch.setenv("GEMINI_TIMEOUT", "12000")
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("LOCATION_TIMEOUT", "4000")

    config = get_config()

    assert config.gemini.api_key == "abc"
    assert config.gemini.timeout_ms == 12000
    assert config.gemini.max_retries == config.location.max_retries == 5
    assert config.location.timeout_ms == 4000


@pytest.mark.parametrize("value", [None, "", "  ", GEMINI_KEY_PLACEHOLDER, GEOCODING_KEY_PLACEHOLDER])
def test_placeholder_keys_count_as_absent(value):
    assert is_placeholder_key(value) is True


def test_real_key_is_not_placeholder():
    assert is_placeholder_key("AIzaSyExample") is False


def test_missing_keys_are_only_warnings():
    validation = validate_config(get_config())

    assert validation.valid is True
    assert len(validation.warnings) == 2
    assert validation.errors == []


@pytest.mark.parametrize(
    "env, message",
    [
        ({"GEMINI_TIMEOUT": "4999"}, "Gemini timeout too low"),
        ({"LOCATION_TIMEOUT": "2000"}, "Location service timeout too low"),
        ({"MAX_RETRIES": "0"}, "MAX_RETRIES must be at least 1"),
        ({"GEMINI_BASE_DELAY": "-5"}, "base delay cannot be negative"),
        ({"GEMINI_TIMEOUT": "thirty"}, "not a valid integer"),
    ],
)
def test_invalid_numeric_values_are_errors(monkeypatch, env, message):
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    validation = validate_config(get_config())

    assert validation.valid is False
    assert any(message in error for error in validation.errors)


def test_mongo_uri_fallback_order(monkeypatch):
    monkeypatch.setenv("MONGO_URI", "mongodb://legacy:27017/civiclens")
    assert get_app_settings().mongo_uri == "mongodb://legacy:27017/civiclens"

    monkeypatch.setenv("MONGODB_URI", "mongodb://primary:27017/civiclens")
    assert get_app_settings().mongo_uri == "mongodb://primary:27017/civiclens"
