"""
Voice Notes - Settings

Process-wide settings loaded once at startup from the environment
(and a .env file, if present).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

DEFAULT_TOKEN_TTL_DAYS = 30
DEFAULT_DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com"
DEFAULT_EXEMPT_PATHS = ("/api/login", "/api/verify")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    admin_password: str = ""
    token_secret: Optional[str] = None  # generated at startup when unset
    token_ttl_days: int = DEFAULT_TOKEN_TTL_DAYS
    exempt_paths: tuple[str, ...] = DEFAULT_EXEMPT_PATHS
    protect_static: bool = False
    login_rate_limit: int = 10
    login_rate_window: int = 60
    dashscope_api_key: Optional[str] = None
    dashscope_base_url: str = DEFAULT_DASHSCOPE_BASE_URL
    database_url: str = "sqlite:///./voice_notes.db"
    static_dir: str = "./public"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    def __post_init__(self):
        if self.token_ttl_days <= 0:
            raise ConfigurationError("TOKEN_TTL_DAYS must be positive")
        if self.login_rate_limit < 0 or self.login_rate_window <= 0:
            raise ConfigurationError("Invalid login rate limit settings")

    @property
    def token_ttl_millis(self) -> int:
        return self.token_ttl_days * 24 * 60 * 60 * 1000

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env_file: Optional path to a .env file. Defaults to ./.env lookup.

        Returns:
            Settings instance.
        """
        load_dotenv(env_file)

        return cls(
            admin_password=os.getenv("ADMIN_PASSWORD", ""),
            token_secret=os.getenv("TOKEN_SECRET") or None,
            token_ttl_days=_env_int("TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS),
            protect_static=_env_bool("PROTECT_STATIC"),
            login_rate_limit=_env_int("LOGIN_RATE_LIMIT", 10),
            login_rate_window=_env_int("LOGIN_RATE_WINDOW", 60),
            dashscope_api_key=os.getenv("DASHSCOPE_API_KEY") or None,
            dashscope_base_url=os.getenv("DASHSCOPE_BASE_URL", DEFAULT_DASHSCOPE_BASE_URL),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./voice_notes.db"),
            static_dir=os.getenv("STATIC_DIR", "./public"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8080),
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )
