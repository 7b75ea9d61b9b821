"""
Per-origin request quota.

The configuration string has the form::

    <max requests per period> <period in minutes> [<unlimited host> ...]

Unlimited hosts are matched against the whole origin host (scheme stripped,
ports listed explicitly when relevant). An entry wrapped in slashes is a
regular expression. Examples:

- ``1 5``: any origin may make one request per 5 minutes.
- ``1 5 example.com``: example.com is unlimited, the rest 1 per 5 minutes.
- ``0 1 /(.*\\.)?example\\.com/``: example.com and its subdomains are
  unlimited, everyone else is blocked.
"""

import logging
import re
import threading
import time
from typing import Callable, Dict, Optional, Pattern

logger = logging.getLogger("uvicorn.error")

_CONFIG_RE = re.compile(r"^(\d+) (\d+)(?:\s*$|\s+(.+)$)")
_SCHEME_RE = re.compile(r"^[\w\-]+://", re.IGNORECASE)


def no_rate_limit(_origin: str) -> Optional[str]:
    return None


def _compile_unlimited_hosts(raw: str) -> Pattern:
    parts = []
    for i, host in enumerate(raw.split()):
        starts_with_slash = host.startswith("/")
        ends_with_slash = host.endswith("/")
        if starts_with_slash or ends_with_slash:
            if len(host) == 1 or not (starts_with_slash and ends_with_slash):
                raise ValueError(
                    f"Invalid CORSESCAPE_RATELIMIT. Regex at index {i} must start "
                    f'and end with a slash ("/").'
                )
            host = host[1:-1]
            re.compile(host)
        else:
            host = re.escape(host)
        parts.append(host)
    return re.compile("^(?:" + "|".join(parts) + ")$", re.IGNORECASE)


class RateLimiter:
    """Fixed-window counter keyed by origin host. Safe to call from any task."""

    def __init__(
        self,
        max_requests: int,
        period_minutes: int,
        unlimited: Optional[Pattern] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.period_seconds = period_minutes * 60
        self.unlimited = unlimited
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._accessed: Dict[str, int] = {}
        period = "per minute" if period_minutes == 1 else f"per {period_minutes} minutes"
        self.message = (
            f"The number of requests is limited to {max_requests} {period}. "
            "Please self-host cors-escape if you need more quota."
        )

    def __call__(self, origin: str) -> Optional[str]:
        host = _SCHEME_RE.sub("", origin)
        if self.unlimited is not None and self.unlimited.match(host):
            return None
        with self._lock:
            now = self._clock()
            if now - self._window_start >= self.period_seconds:
                self._window_start = now
                self._accessed = {}
            count = self._accessed.get(host, 0) + 1
            if count > self.max_requests:
                return self.message
            self._accessed[host] = count
        return None


def create_rate_limit_checker(setting: str) -> Callable[[str], Optional[str]]:
    match = _CONFIG_RE.match(setting or "")
    if not match:
        return no_rate_limit
    period_minutes = int(match.group(2))
    if period_minutes == 0:
        raise ValueError("Invalid CORSESCAPE_RATELIMIT. The period cannot be zero.")
    unlimited = _compile_unlimited_hosts(match.group(3)) if match.group(3) else None
    limiter = RateLimiter(int(match.group(1)), period_minutes, unlimited)
    logger.info(
        f"[RateLimit] {limiter.max_requests} requests per {period_minutes} minute(s)"
    )
    return limiter
