"""
Runtime configuration read from environment variables.

Deployments have used different variable names for the same setting
(MONGODB_URL, MONGODB_URI, ...), so each setting lists its aliases and the
first non-empty one wins. A local .env file is loaded first when present.
"""

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple

from dotenv import load_dotenv

ROUTE_STYLES = ("legacy", "rest")
RETRY_STRATEGIES = ("unbounded", "bounded")

DATABASE_URL_VARS = ("MONGODB_URL", "MONGODB_URI", "MONGO_URL", "MONGO_URI", "DATABASE_URL")
ENVIRONMENT_VARS = ("ENVIRONMENT", "APP_ENV", "NODE_ENV")

_CREDENTIALS_RE = re.compile(r"//([^/@]*):([^/@]*)@")


def _first_env(names: Tuple[str, ...], default: Optional[str] = None) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _choice_env(name: str, choices: Tuple[str, ...], default: str) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _prefix_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    path = raw.strip().strip("/")
    if not path:
        raise ValueError(f"{name} must name a path below the root, got {raw!r}")
    return "/" + path


def redact_url(url: Optional[str]) -> Optional[str]:
    """Hide the user and password of a connection string."""
    if not url:
        return url
    return _CREDENTIALS_RE.sub("//***:***@", url)


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    environment: str = "development"
    database_url: Optional[str] = None
    database_name: str = "students_db"
    students_collection: str = "students"
    students_prefix: str = "/api/students"
    route_style: str = "legacy"
    retry_strategy: str = "unbounded"
    max_connect_attempts: int = 5
    retry_delay_ms: int = 5000
    reconnect_on_disconnect: bool = True
    connect_timeout_ms: int = 10000
    socket_timeout_ms: int = 45000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_env("PORT", 8000),
            environment=_first_env(ENVIRONMENT_VARS, "development").lower(),
            database_url=_first_env(DATABASE_URL_VARS),
            database_name=_first_env(("MONGODB_DB", "MONGO_DB_NAME"), "students_db"),
            students_collection=os.getenv("STUDENTS_COLLECTION", "students"),
            students_prefix=_prefix_env("STUDENTS_PREFIX", "/api/students"),
            route_style=_choice_env("ROUTE_STYLE", ROUTE_STYLES, "legacy"),
            retry_strategy=_choice_env("DB_RETRY_STRATEGY", RETRY_STRATEGIES, "unbounded"),
            max_connect_attempts=_int_env("DB_MAX_RETRIES", 5),
            retry_delay_ms=_int_env("DB_RETRY_DELAY_MS", 5000),
            reconnect_on_disconnect=_bool_env("DB_RECONNECT_ON_DISCONNECT", True),
            connect_timeout_ms=_int_env("DB_CONNECT_TIMEOUT_MS", 10000),
            socket_timeout_ms=_int_env("DB_SOCKET_TIMEOUT_MS", 45000),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def retry_delay(self) -> float:
        """Fixed delay between connection attempts, in seconds."""
        return self.retry_delay_ms / 1000.0

    def redacted_database_url(self) -> Optional[str]:
        return redact_url(self.database_url)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
