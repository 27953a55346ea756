from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

DEFAULT_JWT_SECRET = "your-secret-key"

DEFAULT_TRUSTED_PROXIES = [
    "127.0.0.0/8",
    "::1/128",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
]


class Settings(BaseModel):
    database_url: str = Field(default="sqlite:///./proxyguard.db")
    api_prefix: str = Field(default="/api/v1")
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    allowed_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    trusted_proxies: List[str] = Field(default_factory=lambda: list(DEFAULT_TRUSTED_PROXIES))
    captcha_verify_timeout_seconds: float = Field(default=10.0)
    token_retention_seconds: int = Field(default=86400)
    token_purge_interval_seconds: int = Field(default=3600)
    challenge_stats_window_hours: int = Field(default=24)
    challenge_default_language: str = Field(default="en")
    challenge_verify_rate_limit: str = Field(default="10/minute")
    challenge_assets_dir: Optional[str] = Field(default=None)
    trust_geo_header: bool = Field(default=True)
    cookie_secure: bool = Field(default=False)
    log_file: str = Field(default="challenge.log")
    log_level: str = Field(default="INFO")


def _csv(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "")
    values = [v.strip() for v in raw.split(",") if v.strip()]
    return values or list(default)


def _load_settings() -> Settings:
    env = os.getenv
    database_url = env("DATABASE_URL", "sqlite:///./proxyguard.db") or "sqlite:///./proxyguard.db"
    api_prefix = (env("API_PREFIX", "/api/v1") or "").rstrip("/")
    jwt_secret = env("JWT_SECRET") or DEFAULT_JWT_SECRET
    jwt_algorithm = env("JWT_ALGORITHM", "HS256") or "HS256"
    timeout = float(env("CAPTCHA_VERIFY_TIMEOUT_SECONDS", "10"))
    retention = int(env("TOKEN_RETENTION_SECONDS", "86400"))
    purge_interval = int(env("TOKEN_PURGE_INTERVAL_SECONDS", "3600"))
    stats_window = int(env("CHALLENGE_STATS_WINDOW_HOURS", "24"))
    language = (env("CHALLENGE_DEFAULT_LANGUAGE", "en") or "en").lower()
    rate_limit = env("CHALLENGE_VERIFY_RATE_LIMIT", "10/minute") or "10/minute"
    assets_dir = env("CHALLENGE_ASSETS_DIR") or None
    trust_geo_header = env("TRUST_GEO_HEADER", "1") == "1"
    cookie_secure = env("COOKIE_SECURE", "0") == "1"
    log_file = env("LOG_FILE", "challenge.log") or "challenge.log"
    log_level = (env("LOG_LEVEL", "INFO") or "INFO").upper()
    return Settings(
        database_url=database_url,
        api_prefix=api_prefix,
        jwt_secret=jwt_secret,
        jwt_algorithm=jwt_algorithm,
        allowed_origins=_csv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
        trusted_proxies=_csv("TRUSTED_PROXIES", DEFAULT_TRUSTED_PROXIES),
        captcha_verify_timeout_seconds=timeout,
        token_retention_seconds=retention,
        token_purge_interval_seconds=purge_interval,
        challenge_stats_window_hours=stats_window,
        challenge_default_language=language,
        challenge_verify_rate_limit=rate_limit,
        challenge_assets_dir=assets_dir,
        trust_geo_header=trust_geo_header,
        cookie_secure=cookie_secure,
        log_file=log_file,
        log_level=log_level,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load_settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["DEFAULT_JWT_SECRET", "Settings", "get_settings", "reload_settings"]
