"""Per-user rate limiting with a burst window and a daily budget window."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional, Union

from basketllm.types import SubscriptionTier

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60
DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class PlanLimits:
    """Rate-limit thresholds for one user or tier."""

    max_calls_per_minute: int
    max_calls_per_day: int
    max_tokens_per_day: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PlanLimits":
        return cls(
            max_calls_per_minute=int(data["max_calls_per_minute"]),
            max_calls_per_day=int(data["max_calls_per_day"]),
            max_tokens_per_day=int(data["max_tokens_per_day"]),
        )


TIER_LIMITS: dict[SubscriptionTier, PlanLimits] = {
    SubscriptionTier.FREE: PlanLimits(
        max_calls_per_minute=3,
        max_calls_per_day=10,
        max_tokens_per_day=50_000,
    ),
    SubscriptionTier.PREMIUM: PlanLimits(
        max_calls_per_minute=10,
        max_calls_per_day=100,
        max_tokens_per_day=500_000,
    ),
    SubscriptionTier.ENTERPRISE: PlanLimits(
        max_calls_per_minute=60,
        max_calls_per_day=10_000,
        max_tokens_per_day=5_000_000,
    ),
}

# async (user_id) -> PlanLimits
PlanLookup = Callable[[str], Awaitable[Union[PlanLimits, Mapping[str, Any]]]]


@dataclass
class WindowCounter:
    """Calls and tokens recorded in one window."""

    calls: int
    tokens: int
    window_start: float

    def is_active(self, now: float, window: int) -> bool:
        return now - self.window_start < window


@dataclass
class RateLimitResult:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    reset_at: datetime
    reason: Optional[str] = None
    window: Optional[Literal["minute", "day"]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
            "reason": self.reason,
            "window": self.window,
        }


@dataclass
class UsageSnapshot:
    """Current usage of a user in the active windows."""

    daily_calls: int = 0
    daily_tokens: int = 0
    minute_calls: int = 0


def _as_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RateLimiter:
    """Two-window rate limiter.

    The minute window only counts calls and catches bursts; the day window
    counts calls and tokens. Counters only grow inside a window; once a
    window has elapsed the next ``record`` replaces it with a fresh one.
    ``check`` never mutates state.
    """

    def __init__(
        self,
        plan_lookup: Optional[PlanLookup] = None,
        minute_window: int = MINUTE_SECONDS,
        day_window: int = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            plan_lookup: Optional async per-user limits lookup
            minute_window: Burst window length in seconds
            day_window: Budget window length in seconds
            clock: Returns the current Unix time
        """
        self.plan_lookup = plan_lookup
        self.minute_window = minute_window
        self.day_window = day_window
        self._clock = clock
        self._minute: dict[str, WindowCounter] = {}
        self._day: dict[str, WindowCounter] = {}
        self._lock = asyncio.Lock()

    def check(self, user_id: str, limits: PlanLimits) -> RateLimitResult:
        """Check whether ``user_id`` may make another call under ``limits``."""
        now = self._clock()

        minute = self._minute.get(user_id)
        if minute and minute.is_active(now, self.minute_window):
            if minute.calls >= limits.max_calls_per_minute:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=_as_datetime(minute.window_start + self.minute_window),
                    reason=f"Rate limit exceeded: {limits.max_calls_per_minute} calls per minute",
                    window="minute",
                )

        day = self._day.get(user_id)
        if day and day.is_active(now, self.day_window):
            reset_at = _as_datetime(day.window_start + self.day_window)

            if day.calls >= limits.max_calls_per_day:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    reason=f"Daily limit exceeded: {limits.max_calls_per_day} calls per day",
                    window="day",
                )

            if day.tokens >= limits.max_tokens_per_day:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    reason=f"Daily token limit exceeded: {limits.max_tokens_per_day} tokens per day",
                    window="day",
                )

            return RateLimitResult(
                allowed=True,
                remaining=limits.max_calls_per_day - day.calls,
                reset_at=reset_at,
            )

        return RateLimitResult(
            allowed=True,
            remaining=limits.max_calls_per_day,
            reset_at=_as_datetime(now + self.day_window),
        )

    async def record(self, user_id: str, tokens_used: int) -> None:
        """Record one call and its tokens in both windows."""
        async with self._lock:
            now = self._clock()
            self._increment(self._minute, user_id, tokens_used, now, self.minute_window)
            self._increment(self._day, user_id, tokens_used, now, self.day_window)

    @staticmethod
    def _increment(
        counters: dict[str, WindowCounter],
        user_id: str,
        tokens_used: int,
        now: float,
        window: int,
    ) -> None:
        counter = counters.get(user_id)
        if counter and counter.is_active(now, window):
            counter.calls += 1
            counter.tokens += tokens_used
        else:
            counters[user_id] = WindowCounter(calls=1, tokens=tokens_used, window_start=now)

    def get_usage(self, user_id: str) -> UsageSnapshot:
        now = self._clock()
        day = self._day.get(user_id)
        minute = self._minute.get(user_id)
        day_active = bool(day and day.is_active(now, self.day_window))

        return UsageSnapshot(
            daily_calls=day.calls if day_active else 0,
            daily_tokens=day.tokens if day_active else 0,
            minute_calls=minute.calls if minute and minute.is_active(now, self.minute_window) else 0,
        )

    async def resolve_limits(
        self,
        user_id: str,
        tier: Optional[Union[SubscriptionTier, str]] = None,
    ) -> PlanLimits:
        """Limits for ``user_id``; falls back to tier defaults, never raises."""
        try:
            fallback = TIER_LIMITS[SubscriptionTier(tier or SubscriptionTier.FREE)]
        except ValueError:
            logger.warning("Unknown subscription tier %r, using free tier limits", tier)
            fallback = TIER_LIMITS[SubscriptionTier.FREE]

        if self.plan_lookup is None:
            return fallback

        try:
            limits = await self.plan_lookup(user_id)
            if isinstance(limits, PlanLimits):
                return limits
            return PlanLimits.from_mapping(limits)
        except Exception:
            logger.warning("Plan lookup failed for user %s, using tier defaults", user_id, exc_info=True)
            return fallback

    async def check_user(
        self,
        user_id: str,
        tier: Optional[Union[SubscriptionTier, str]] = None,
    ) -> RateLimitResult:
        limits = await self.resolve_limits(user_id, tier)
        return self.check(user_id, limits)

    async def sweep_expired(self) -> int:
        """Drop counters whose window has elapsed."""
        async with self._lock:
            now = self._clock()
            removed = 0
            for counters, window in ((self._minute, self.minute_window), (self._day, self.day_window)):
                expired = [uid for uid, counter in counters.items() if not counter.is_active(now, window)]
                for uid in expired:
                    del counters[uid]
                removed += len(expired)
            return removed

    async def reset(self, user_id: Optional[str] = None) -> None:
        """Forget counters for one user, or for everyone."""
        async with self._lock:
            if user_id is None:
                self._minute.clear()
                self._day.clear()
            else:
                self._minute.pop(user_id, None)
                self._day.pop(user_id, None)
