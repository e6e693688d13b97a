"""
Runtime configuration

Everything is read from the environment once, at import time. Invalid values
fail fast with a RuntimeError naming the offending variable.
"""

import os
from typing import List, Optional

ALLOWED_APP_ENVS = ("development", "test", "production")


def _parse_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in ("true", "1", "yes", "on"):
        return True
    if normalized in ("false", "0", "no", "off"):
        return False
    raise RuntimeError(f"{name} must be a boolean, got {value!r}")


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {value!r}")


def _split_origins(*candidates: Optional[str]) -> List[str]:
    origins: List[str] = []
    for candidate in candidates:
        if not candidate:
            continue
        for origin in candidate.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
    return origins


APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
if APP_ENV not in ALLOWED_APP_ENVS:
    raise RuntimeError(f"APP_ENV must be one of: {', '.join(ALLOWED_APP_ENVS)}")

IS_PRODUCTION = APP_ENV == "production"

# Database
DATABASE_URL = os.getenv("DATABASE_URL") or None
DATABASE_NAME = os.getenv("DATABASE_NAME", "chefbook").strip()
if IS_PRODUCTION and not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is required in production")

# Auth
ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET", "")
REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "")
if IS_PRODUCTION and not (ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET):
    raise RuntimeError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET are required in production")
ACCESS_TOKEN_SECRET = ACCESS_TOKEN_SECRET or "dev-access-secret"
REFRESH_TOKEN_SECRET = REFRESH_TOKEN_SECRET or "dev-refresh-secret"
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = _parse_int("ACCESS_TOKEN_EXPIRE_MINUTES", 15)
REFRESH_TOKEN_EXPIRE_DAYS = _parse_int("REFRESH_TOKEN_EXPIRE_DAYS", 7)

# Bootstrap admin
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "Admin@123")

# HTTP
CORS_ALLOWLIST = _split_origins(
    os.getenv("CORS_ALLOWLIST"),
    os.getenv("USER_WEBSITE_URL"),
    os.getenv("CHEF_WEBSITE_URL"),
)
if IS_PRODUCTION and not CORS_ALLOWLIST:
    raise RuntimeError("At least one CORS origin must be configured in production")
CORS_ALLOW_CREDENTIALS = _parse_bool("CORS_ALLOW_CREDENTIALS", True)

PORT = _parse_int("PORT", 8000)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
