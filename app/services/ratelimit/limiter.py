import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from redis.exceptions import RedisError

from app.core.clock import Clock, SystemClock
from app.services.ratelimit.types import (
    RateLimitBackendError,
    RateLimitConfig,
    RateLimitDecision,
    RateWindow,
)

logger = logging.getLogger("app.ratelimit")


class RateLimiter(Protocol):
    name: str

    async def check(self, user_id: str) -> RateLimitDecision:
        ...


def retry_after(reset_at: float, now: float) -> int:
    return max(1, math.ceil(reset_at - now))


@dataclass
class _Counter:
    count: int = 0
    reset_at: Optional[float] = None

    def refresh(self, now: float) -> None:
        if self.reset_at is not None and now >= self.reset_at:
            self.count = 0
            self.reset_at = None

    def hit(self, now: float, window_s: int) -> None:
        if self.reset_at is None:
            self.reset_at = now + window_s
        self.count += 1


@dataclass
class _UserState:
    burst: _Counter
    hourly: _Counter


class InMemoryRateLimiter:
    """Fixed windows anchored at the first request of each window.

    Counters live in this process only: they reset on restart and are not shared
    between workers. One lock covers the global and per-user counters, so a
    check reads and bumps all three windows atomically.
    """

    name = "memory"

    def __init__(self, config: RateLimitConfig, clock: Optional[Clock] = None):
        self.config = config
        self.clock = clock or SystemClock()
        self._global = _Counter()
        self._lock = asyncio.Lock()
        self._users: dict[str, _UserState] = {}

    def _user(self, user_id: str) -> _UserState:
        state = self._users.get(user_id)
        if state is None:
            state = _UserState(burst=_Counter(), hourly=_Counter())
            self._users[user_id] = state
        return state

    async def check(self, user_id: str) -> RateLimitDecision:
        cfg = self.config
        async with self._lock:
            user = self._user(user_id)
            now = self.clock.now()
            pairs: list[tuple[RateWindow, _Counter]] = [
                (cfg.global_window, self._global),
                (cfg.burst, user.burst),
                (cfg.hourly, user.hourly),
            ]
            for window, counter in pairs:
                counter.refresh(now)
            for window, counter in pairs:
                if counter.count >= window.limit:
                    wait = retry_after(counter.reset_at if counter.reset_at is not None else now, now)
                    logger.info("ratelimit:reject scope=%s retry_after=%s", window.scope, wait)
                    return RateLimitDecision(
                        allowed=False, scope=window.scope, retry_after_seconds=wait, limit=window.limit, remaining=0
                    )
            for window, counter in pairs:
                counter.hit(now, window.window_s)
            tightest = min(pairs, key=lambda p: p[0].limit - p[1].count)
            return RateLimitDecision(
                allowed=True,
                scope=None,
                limit=tightest[0].limit,
                remaining=tightest[0].limit - tightest[1].count,
            )


# KEYS: global, burst, hourly. ARGV: limit, window_ms per key in the same order.
# Returns {allowed, window index (1-based), ttl_ms, remaining}.
_CHECK_SCRIPT = """
for i = 1, 3 do
  local count = tonumber(redis.call('GET', KEYS[i]) or '0')
  if count >= tonumber(ARGV[i * 2 - 1]) then
    local ttl = redis.call('PTTL', KEYS[i])
    if ttl < 0 then ttl = tonumber(ARGV[i * 2]) end
    return {0, i, ttl, 0}
  end
end
local best = -1
local best_i = 1
for i = 1, 3 do
  local count = redis.call('INCR', KEYS[i])
  if count == 1 then redis.call('PEXPIRE', KEYS[i], ARGV[i * 2]) end
  local left = tonumber(ARGV[i * 2 - 1]) - count
  if best < 0 or left < best then
    best = left
    best_i = i
  end
end
return {1, best_i, 0, best}
"""


class RedisRateLimiter:
    """Same windows as InMemoryRateLimiter, evaluated atomically in a Lua script.

    Shared by every process pointing at the same Redis.
    """

    name = "redis"

    def __init__(self, config: RateLimitConfig, redis: Any, prefix: str = "ratelimit"):
        self.config = config
        self.redis = redis
        self.prefix = prefix

    def _keys(self, user_id: str) -> list[str]:
        return [
            f"{self.prefix}:global",
            f"{self.prefix}:burst:{user_id}",
            f"{self.prefix}:hourly:{user_id}",
        ]

    async def check(self, user_id: str) -> RateLimitDecision:
        args: list[int] = []
        for window in self.config.windows:
            args.extend([window.limit, window.window_s * 1000])
        try:
            reply = await self.redis.eval(_CHECK_SCRIPT, 3, *self._keys(user_id), *args)
        except RedisError as exc:
            logger.error("ratelimit:redis eval failed err=%s", exc.__class__.__name__)
            raise RateLimitBackendError("rate limit backend unavailable") from exc

        allowed, index, ttl_ms, remaining = (int(v) for v in reply)
        window = self.config.windows[index - 1]
        if allowed:
            return RateLimitDecision(allowed=True, limit=window.limit, remaining=remaining)
        wait = max(1, math.ceil(ttl_ms / 1000.0))
        logger.info("ratelimit:reject scope=%s retry_after=%s", window.scope, wait)
        return RateLimitDecision(
            allowed=False, scope=window.scope, retry_after_seconds=wait, limit=window.limit, remaining=0
        )


def build_rate_limiter(config: RateLimitConfig, backend: str, *, clock: Optional[Clock] = None, redis_url: str = "") -> RateLimiter:
    if backend == "redis":
        from redis.asyncio import Redis

        return RedisRateLimiter(config, Redis.from_url(redis_url, decode_responses=True))
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend: {backend}")
    return InMemoryRateLimiter(config, clock)
