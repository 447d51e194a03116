# journal_backend/config.py
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    client_urls: List[str]
    google_client_id: str
    google_client_secret: str
    google_calendar_id: str = "primary"
    # Seconds before expires_at at which a token is already treated as expired.
    token_expiry_leeway_seconds: int = 0
    auth_attempt_ttl_seconds: int = 600
    auth_wait_seconds: float = 25.0
    http_timeout_seconds: float = 20.0
    log_level: str = "INFO"


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} is not set in .env file!")
    return value


def _int_env(name: str, default: int) -> int:
    raw: Optional[str] = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw: Optional[str] = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@lru_cache
def get_settings() -> Settings:
    client_urls = [u.strip().rstrip("/") for u in _require("CLIENT_URL").split(",") if u.strip()]
    leeway = _int_env("GOOGLE_TOKEN_EXPIRY_LEEWAY_SECONDS", 0)
    if leeway < 0:
        raise ValueError("GOOGLE_TOKEN_EXPIRY_LEEWAY_SECONDS must not be negative")
    return Settings(
        database_url=_require("DATABASE_URL"),
        jwt_secret=_require("JWT_SECRET"),
        client_urls=client_urls,
        google_client_id=_require("GOOGLE_CALENDAR_CLIENT_ID"),
        google_client_secret=_require("GOOGLE_CALENDAR_CLIENT_SECRET"),
        google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        token_expiry_leeway_seconds=leeway,
        auth_attempt_ttl_seconds=_int_env("GOOGLE_AUTH_ATTEMPT_TTL_SECONDS", 600),
        auth_wait_seconds=_float_env("GOOGLE_AUTH_WAIT_SECONDS", 25.0),
        http_timeout_seconds=_float_env("GOOGLE_HTTP_TIMEOUT_SECONDS", 20.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
