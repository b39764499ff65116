from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from errors import RateLimitExceeded


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int
    window_seconds: int


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """
    In-memory fixed-window counter keyed by an arbitrary string (client address, tool name...).

    Each key gets `limit` hits per `window_seconds`; the window starts on the
    first hit and resets once it has elapsed.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, max_keys: int = 10_000) -> None:
        self._clock = clock
        self._max_keys = max(1, int(max_keys))
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}

    def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            w = self._windows.get(key)
            if w is None or now - w.started_at >= window_seconds:
                if w is None and len(self._windows) >= self._max_keys:
                    self._prune(now, window_seconds)
                w = _Window(started_at=now)
                self._windows[key] = w
            w.count += 1
            count = w.count
            started_at = w.started_at

        reset = max(0, math.ceil(started_at + window_seconds - now))
        return RateLimitDecision(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_seconds=reset,
            window_seconds=window_seconds,
        )

    def check(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        decision = self.hit(key, limit=limit, window_seconds=window_seconds)
        if not decision.allowed:
            raise RateLimitExceeded(
                f"Rate limit exceeded for {key}",
                retry_after=decision.reset_seconds,
                data={"limit": limit, "window_seconds": window_seconds},
            )
        return decision

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _prune(self, now: float, window_seconds: int) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started_at >= window_seconds]
        for k in expired:
            del self._windows[k]
        if len(self._windows) >= self._max_keys:
            # Still full: drop the oldest windows.
            oldest = sorted(self._windows.items(), key=lambda kv: kv[1].started_at)
            for k, _ in oldest[: len(self._windows) - self._max_keys + 1]:
                del self._windows[k]
