from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests


@dataclass
class AppError(Exception):
    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AppError):
    """Required configuration (e.g. the upstream API token) is missing."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("configuration_error", message, data or {})


class UnknownToolError(AppError):
    def __init__(self, name: str) -> None:
        super().__init__("unknown_tool", f"Unknown tool: {name}", {"tool": name})
        self.name = name


class UpstreamError(AppError):
    """
    The upstream API answered with a non-2xx status, or could not be reached.
    `status` is None for network-level failures.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        status_text: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = dict(data or {})
        if status is not None:
            payload.setdefault("status", status)
            payload.setdefault("status_text", status_text)
        super().__init__("upstream_error", message, payload)
        self.status = status
        self.status_text = status_text


class SessionError(AppError):
    """Client-facing session failure: missing/unknown id or bad initialization."""

    status_code = 400

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("session_error", message, data or {})


class AuthenticationError(AppError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__("unauthorized", message, {})


class RateLimitExceeded(AppError):
    status_code = 429

    def __init__(self, message: str, *, retry_after: int, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("rate_limited", message, data or {})
        self.retry_after = retry_after


class TransportError(AppError):
    status_code = 500

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("transport_error", message, data or {})


def classify_exception(e: BaseException) -> AppError:
    """
    Map upstream / network issues into stable error codes.
    """
    if isinstance(e, AppError):
        return e
    if isinstance(e, requests.RequestException):
        return UpstreamError(f"API request failed: {e}", data={"error_type": type(e).__name__})
    if isinstance(e, ValueError):
        return AppError("invalid_value", str(e), {})

    return AppError("unknown_error", str(e) or type(e).__name__, {})
