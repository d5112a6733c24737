from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tasks.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - JWT_SECRET: signing secret for access tokens (required to issue tokens)
    - JWT_EXPIRY_HOURS: token lifetime in hours (default: 24)
    - BCRYPT_ROUNDS: bcrypt cost factor (default: 12)
    - LOG_LEVEL: console log level (default: INFO)
    """

    persistence_backend: str = "memory"
    sqlite_db_path: str = "./data/tasks.db"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    jwt_secret: str = ""
    jwt_expiry_hours: int = 24
    bcrypt_rounds: int = 12
    log_level: str = "INFO"

    def secret_problem(self) -> str | None:
        """Describe why the signing secret is unfit for production, if it is."""
        if not self.jwt_secret:
            return "JWT_SECRET is not set; issuing tokens will fail"
        if len(self.jwt_secret) < MIN_SECRET_LENGTH:
            return f"JWT_SECRET should be at least {MIN_SECRET_LENGTH} characters long"
        return None


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, lo: int, hi: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    if not (lo <= parsed <= hi):
        return default
    return parsed


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables (and .env if present)."""
    load_dotenv(override=False)

    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        logger.warning("Unsupported PERSISTENCE_BACKEND %r, using memory", backend)
        backend = "memory"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/tasks.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_expiry_hours=_parse_int(_get_env("JWT_EXPIRY_HOURS", "24"), 24, 1, 24 * 365),
        bcrypt_rounds=_parse_int(_get_env("BCRYPT_ROUNDS", "12"), 12, 4, 31),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
    )
