import os
import re
from typing import Any, Dict

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    APP_NAME = os.getenv("APP_NAME", "rentcall")
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON = _as_bool(os.getenv("LOG_JSON", "true"))

    DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "en")
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "RD$")
    ORGANIZATION_NAME = os.getenv("ORGANIZATION_NAME", "MicroRealEstate")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080")

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    RATE_LIMIT_ENABLED = _as_bool(os.getenv("RATE_LIMIT_ENABLED", "true"))
    RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

    SIGNUP_ENABLED = _as_bool(os.getenv("SIGNUP_ENABLED", "false"))

    REFRESH_COOKIE_NAME = "refreshToken"
    REFRESH_COOKIE_PATH = os.getenv("REFRESH_COOKIE_PATH", "/landlord/refreshtoken")
    REFRESH_COOKIE_SECURE = _as_bool(
        os.getenv("REFRESH_COOKIE_SECURE", "true" if ENVIRONMENT == "production" else "false")
    )
    REFRESH_COOKIE_DOMAIN = os.getenv("REFRESH_COOKIE_DOMAIN") or None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()


_SECRET_KEY_PATTERN = re.compile(r"password|token|secret", re.IGNORECASE)
_URL_CREDENTIALS = re.compile(r"(?P<scheme>\w+://)[^/@\s]+@")


def mask_config(values: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a config mapping safe to log: secrets and URL credentials hidden."""
    masked = {}
    for key, value in values.items():
        if value is None:
            masked[key] = None
        elif _SECRET_KEY_PATTERN.search(key):
            masked[key] = "****"
        elif isinstance(value, str):
            masked[key] = _URL_CREDENTIALS.sub(r"\g<scheme>****@", value)
        else:
            masked[key] = value
    return masked
