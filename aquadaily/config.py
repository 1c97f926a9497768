"""Configuration management for AquaDaily.

Loads environment variables (and a ``.env`` file when present) into a single
``Settings`` object consumed by :func:`aquadaily.create_app`.

OPTIONAL KEYS:
- GEMINI_API_KEY: From https://aistudio.google.com/app/apikey (can also be
  entered at runtime on the landing page)
- REDIS_URL / UPSTASH_REDIS_URL: Use Redis instead of JSON files
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("filesystem", "database", "memory")


def _resolve_secret_key() -> str:
    """Return a secret key for Flask sessions.

    In production we expect ``FLASK_SECRET_KEY`` (or the legacy ``SECRET_KEY``)
    to be configured. When it is missing we generate a temporary key so the
    app can still boot locally; flashed messages and issued tokens will not
    survive a restart.
    """

    for name in ("FLASK_SECRET_KEY", "SECRET_KEY"):
        value = os.environ.get(name)
        if value:
            return value
    return secrets.token_hex(32)


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown LOCAL_TIMEZONE %r; using the system zone", name)
        return None


@dataclass
class Settings:
    """Runtime configuration for the web app and its services."""
    secret_key: str
    storage_backend: str = "filesystem"
    data_dir: Path = Path("/tmp/aquadaily-data")
    redis_url: Optional[str] = None
    database_uri: Optional[str] = None
    token_secret: str = ""
    session_lifetime: timedelta = timedelta(days=14)
    local_timezone: Optional[tzinfo] = None
    gemini_api_key: Optional[str] = None
    log_level: str = "INFO"
    is_production: bool = False

    def __post_init__(self) -> None:
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}; got {self.storage_backend!r}"
            )
        if not self.token_secret:
            self.token_secret = self.secret_key

    def log_status(self) -> None:
        """Log the configuration status for debugging."""
        logger.info("=== AquaDaily configuration ===")
        logger.info("Storage backend: %s", self.storage_backend)
        if self.storage_backend == "filesystem":
            logger.info("Data directory: %s (redis: %s)", self.data_dir, "yes" if self.redis_url else "no")
        logger.info("Gemini API key: %s", "configured" if self.gemini_api_key else "not set (runtime entry allowed)")
        logger.info("Local timezone: %s", self.local_timezone or "system")


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Build :class:`Settings` from environment variables.

    Args:
        env_path: Optional path to a .env file. Defaults to the current directory.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        load_dotenv()

    flask_env = os.environ.get("FLASK_ENV", "").lower()

    return Settings(
        secret_key=_resolve_secret_key(),
        storage_backend=os.environ.get("STORAGE_BACKEND", "filesystem").lower(),
        data_dir=Path(os.environ.get("STORAGE_DATA_DIR", "/tmp/aquadaily-data")).expanduser(),
        redis_url=os.environ.get("REDIS_URL") or os.environ.get("UPSTASH_REDIS_URL"),
        database_uri=os.environ.get("DATABASE_URL") or os.environ.get("LOCAL_DATABASE_URI"),
        token_secret=os.environ.get("SESSION_TOKEN_SECRET", ""),
        session_lifetime=timedelta(days=int(os.environ.get("SESSION_LIFETIME_DAYS", "14"))),
        local_timezone=_resolve_timezone(os.environ.get("LOCAL_TIMEZONE")),
        gemini_api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        is_production=flask_env in {"production", "prod"} or _bool_from_env("AQUADAILY_PRODUCTION"),
    )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
