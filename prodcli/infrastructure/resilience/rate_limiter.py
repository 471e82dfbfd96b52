"""Implementation of the API rate limiter.

Controls the frequency of outgoing requests to stay under the remote
service's published limits. Uses two independent sliding windows (standard
traffic and report endpoints) for proactive throttling, and exponential
backoff with jitter for retries after a 429 response.
"""

import asyncio
import logging
import random
import re
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Deque, Optional

from prodcli.domain.models.common import BackoffState

logger = logging.getLogger(__name__)

STANDARD_WINDOW_SECONDS = 10.0
REPORTS_WINDOW_SECONDS = 30.0
REPORTS_ENDPOINT_MARKER = "/reports/"
# Added to every computed wait so the oldest timestamp has left the window on wake-up
WAIT_PADDING_SECONDS = 0.001
JITTER_RATIO = 0.5
DELTA_SECONDS_PATTERN = re.compile(r"[0-9]+")


@dataclass
class RateLimitConfig:
    """Recognized rate limiter options."""
    enabled: bool = True
    max_retries: int = 3
    max_requests_per_10s: int = 100
    reports_max_per_30s: int = 10
    initial_backoff_ms: int = 1000
    max_backoff_ms: int = 30000


class SlidingWindow:
    """Ordered timestamps of recent requests, bounded to a rolling duration."""

    def __init__(self, name: str, max_requests: int, window_seconds: float):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("Max requests and window duration must be positive.")
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timestamps: Deque[float] = deque()

    def __len__(self) -> int:
        return len(self.timestamps)

    def evict(self, now: float) -> None:
        """Removes timestamps older than the window."""
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] < cutoff:
            self.timestamps.popleft()

    def wait_time(self, now: float) -> float:
        """Seconds until a slot frees up; 0 when under capacity. Evicts first."""
        self.evict(now)
        if len(self.timestamps) < self.max_requests:
            return 0.0
        oldest_timestamp = self.timestamps[0]
        wait = oldest_timestamp + self.window_seconds - now + WAIT_PADDING_SECONDS
        return max(0.0, wait)

    def record(self, timestamp: float) -> None:
        self.timestamps.append(timestamp)


class RateLimiter:
    """Sliding window rate limiter with retry backoff policy."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the rate limiter.

        Args:
            config: Limits and backoff settings (defaults when None).
            clock: Monotonic time source in seconds.
            sleep: Coroutine used to suspend the calling task.
            rng: Random source for jitter.
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.standard_window = SlidingWindow(
            "standard", self.config.max_requests_per_10s, STANDARD_WINDOW_SECONDS
        )
        self.reports_window = SlidingWindow(
            "reports", self.config.reports_max_per_30s, REPORTS_WINDOW_SECONDS
        )
        self._lock = asyncio.Lock()
        logger.info(
            f"RateLimiter initialized: enabled={self.config.enabled}, "
            f"{self.config.max_requests_per_10s} requests / {STANDARD_WINDOW_SECONDS:.0f}s, "
            f"reports {self.config.reports_max_per_30s} / {REPORTS_WINDOW_SECONDS:.0f}s, "
            f"max_retries={self.config.max_retries}"
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @staticmethod
    def is_report_endpoint(endpoint: Optional[str]) -> bool:
        return bool(endpoint) and REPORTS_ENDPOINT_MARKER in endpoint

    def _window_for(self, endpoint: Optional[str]) -> SlidingWindow:
        if self.is_report_endpoint(endpoint):
            return self.reports_window
        return self.standard_window

    async def acquire(self, endpoint: Optional[str] = None) -> None:
        """Waits until a request to ``endpoint`` is permitted, then records it.

        Callers are served one at a time: a caller that has to wait holds the
        slot until it has recorded its request, and the next caller computes
        its own wait against the updated window.
        """
        if not self.config.enabled:
            return

        window = self._window_for(endpoint)
        async with self._lock:
            wait_time = window.wait_time(self._clock())
            if wait_time > 0:
                logger.info(
                    f"Rate limit reached for {window.name} window. "
                    f"Waiting {wait_time:.3f}s before calling {endpoint or 'API'}."
                )
                await self._sleep(wait_time)

            timestamp = self._clock()
            if window is not self.standard_window:
                window.record(timestamp)
            # Every request counts against the standard window
            self.standard_window.record(timestamp)
            logger.debug(
                f"Rate limit permission granted for {endpoint or 'API'} "
                f"(standard={len(self.standard_window)}, reports={len(self.reports_window)})"
            )

    def get_wait_time(self, endpoint: Optional[str] = None) -> float:
        """Estimates the seconds needed before a request to ``endpoint`` can be made."""
        if not self.config.enabled:
            return 0.0
        return self._window_for(endpoint).wait_time(self._clock())

    def record_response(self, status: int, retry_after: Optional[str] = None) -> None:
        """Records a response status. Reserved for adaptive rate limiting."""
        pass

    def should_retry(self, attempt: int) -> bool:
        """Whether a throttled request should be retried.

        Args:
            attempt: Zero-based index of the attempt that was throttled.
        """
        if not self.config.enabled:
            return False
        return attempt < self.config.max_retries

    def new_backoff(self) -> BackoffState:
        """Creates the retry bookkeeping for one logical request."""
        return BackoffState(
            base_delay_ms=self.config.initial_backoff_ms,
            max_delay_ms=self.config.max_backoff_ms,
            max_attempts=self.config.max_retries,
            jitter_ratio=JITTER_RATIO,
        )

    def get_retry_delay(self, attempt: int, retry_after: Optional[str] = None) -> int:
        """Calculates the delay in milliseconds before the next retry.

        A parseable Retry-After header wins. Otherwise:
        ``floor(min(max_backoff, initial_backoff * 2**attempt) * uniform[0.5, 1.0))``.

        Args:
            attempt: Zero-based attempt index.
            retry_after: Raw Retry-After header value (seconds or HTTP-date).
        """
        if retry_after:
            parsed = parse_retry_after(retry_after)
            if parsed is not None:
                return parsed

        exponential_delay = self.config.initial_backoff_ms * (2 ** attempt)
        capped_delay = min(self.config.max_backoff_ms, exponential_delay)
        jitter = (1.0 - JITTER_RATIO) + self._rng.random() * JITTER_RATIO
        return int(capped_delay * jitter)


def parse_retry_after(
    value: str, now: Optional[Callable[[], datetime]] = None
) -> Optional[int]:
    """Parses a Retry-After header into milliseconds.

    Supports both delta-seconds and HTTP-date forms. Returns None when the
    value is neither.
    """
    value = value.strip()
    if DELTA_SECONDS_PATTERN.fullmatch(value):
        return int(value) * 1000

    try:
        target = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Ignoring malformed Retry-After header: {value!r}")
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)

    current = now() if now else datetime.now(timezone.utc)
    delay_ms = (target - current).total_seconds() * 1000
    return max(0, int(delay_ms))
