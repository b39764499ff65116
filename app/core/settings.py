"""
ORATS MCP Server Unified Settings System

This module provides a validated, typed settings layer that serves as the single
source of truth for server configuration. Environment variables (and a local
`.env` file, if present) are read and validated at startup so misconfigurations
surface before the first request.

The upstream API token (`ORATS_API_TOKEN`) is intentionally NOT held here: the
upstream client reads it at call time so a missing token fails the individual
tool call rather than the process.

Usage:
    from app.core.settings import settings

    if settings.AUTH_TOKEN:
        # bearer auth enabled
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, FrozenSet

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_ORATS_BASE_URL = "https://api.orats.io/datav2"


class SettingsValidationError(Exception):
    """Raised when settings validation fails."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid configuration for {field}={value!r}: {message}")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean from environment variable."""
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int | None = None) -> int | None:
    """Parse an integer from environment variable."""
    if value is None or value.strip() == "":
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(value: str | None, default: float | None = None) -> float | None:
    """Parse a float from environment variable."""
    if value is None or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_csv_set(value: str | None) -> FrozenSet[str]:
    """Parse a comma-separated list into a frozen set of stripped strings."""
    if not value:
        return frozenset()
    return frozenset(v.strip() for v in value.split(",") if v.strip())


def _optional_str(name: str) -> str | None:
    return (os.getenv(name) or "").strip() or None


def _get_version_from_pyproject() -> str:
    """Extract version from pyproject.toml."""
    try:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        version: str = str(data.get("project", {}).get("version", "1.0.0"))
        return version
    except Exception:
        return "1.0.0"


@dataclass
class Settings:
    """
    Unified settings class with validation.

    All configuration is loaded and validated at instantiation time.
    Tests build their own instance, e.g. `Settings(AUTH_TOKEN="secret")`.
    """

    # Project metadata (read from pyproject.toml)
    PROJECT_NAME: str = "orats-mcp-server"
    VERSION: str = field(default_factory=_get_version_from_pyproject)

    # Upstream API
    ORATS_BASE_URL: str = field(default_factory=lambda: (os.getenv("ORATS_BASE_URL") or DEFAULT_ORATS_BASE_URL).strip())
    ORATS_HTTP_TIMEOUT_SEC: float = field(default_factory=lambda: _parse_float(os.getenv("ORATS_HTTP_TIMEOUT_SEC"), 30.0) or 30.0)

    # HTTP transport
    HOST: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0").strip())  # nosec B104 - intentional for container binding
    PORT: int = field(default_factory=lambda: _parse_int(os.getenv("PORT"), 8080) or 8080)
    AUTH_TOKEN: str | None = field(default_factory=lambda: _optional_str("AUTH_TOKEN"))
    MCP_JSON_RESPONSE: bool = field(default_factory=lambda: _parse_bool(os.getenv("MCP_JSON_RESPONSE"), False))

    # CORS settings
    CORS_ORIGINS: FrozenSet[str] = field(default_factory=lambda: _parse_csv_set(os.getenv("CORS_ORIGINS", "*")))

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = field(default_factory=lambda: _parse_bool(os.getenv("RATE_LIMIT_ENABLED"), True))
    RATE_LIMIT_MAX_REQUESTS: int = field(default_factory=lambda: _parse_int(os.getenv("RATE_LIMIT_MAX_REQUESTS"), 60) or 60)
    RATE_LIMIT_WINDOW_SEC: int = field(default_factory=lambda: _parse_int(os.getenv("RATE_LIMIT_WINDOW_SEC"), 60) or 60)

    # Observability
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "info").strip().lower())

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        self._validate()

    def _validate(self) -> None:
        errors: list[str] = []

        if not (1 <= self.PORT <= 65535):
            errors.append(f"PORT must be between 1 and 65535, got {self.PORT}")
        if self.RATE_LIMIT_MAX_REQUESTS < 1:
            errors.append(f"RATE_LIMIT_MAX_REQUESTS must be positive, got {self.RATE_LIMIT_MAX_REQUESTS}")
        if self.RATE_LIMIT_WINDOW_SEC < 1:
            errors.append(f"RATE_LIMIT_WINDOW_SEC must be positive, got {self.RATE_LIMIT_WINDOW_SEC}")
        if self.ORATS_HTTP_TIMEOUT_SEC <= 0:
            errors.append(f"ORATS_HTTP_TIMEOUT_SEC must be positive, got {self.ORATS_HTTP_TIMEOUT_SEC}")
        if not self.ORATS_BASE_URL.startswith(("http://", "https://")):
            errors.append(f"ORATS_BASE_URL must be an http(s) URL, got {self.ORATS_BASE_URL!r}")

        if errors:
            raise SettingsValidationError("MULTIPLE", None, "; ".join(errors))

    @property
    def auth_enabled(self) -> bool:
        return bool(self.AUTH_TOKEN)

    @property
    def cors_allow_all(self) -> bool:
        return not self.CORS_ORIGINS or "*" in self.CORS_ORIGINS

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary (redacting secrets)."""
        result: dict[str, Any] = {}
        for key in dir(self):
            if key.startswith("_") or key.isupper() is False:
                continue
            value = getattr(self, key)
            if any(s in key.upper() for s in ["SECRET", "PASSWORD", "KEY", "TOKEN"]):
                result[key] = "***REDACTED***" if value else None
            elif isinstance(value, frozenset):
                result[key] = sorted(value)
            else:
                result[key] = value
        return result


# Global settings instance
settings = Settings()
