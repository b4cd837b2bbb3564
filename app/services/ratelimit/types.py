from dataclasses import dataclass
from typing import Literal, Optional

RateLimitScope = Literal["global", "burst", "hourly"]


@dataclass(frozen=True)
class RateWindow:
    scope: RateLimitScope
    limit: int
    window_s: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    scope: Optional[RateLimitScope] = None
    retry_after_seconds: int = 0
    limit: int = 0
    remaining: int = 0


@dataclass(frozen=True)
class RateLimitConfig:
    global_window: RateWindow
    burst: RateWindow
    hourly: RateWindow

    @classmethod
    def from_settings(cls, s) -> "RateLimitConfig":
        return cls(
            global_window=RateWindow("global", s.RATE_LIMIT_GLOBAL_LIMIT, s.RATE_LIMIT_GLOBAL_WINDOW_S),
            burst=RateWindow("burst", s.RATE_LIMIT_BURST_LIMIT, s.RATE_LIMIT_BURST_WINDOW_S),
            hourly=RateWindow("hourly", s.RATE_LIMIT_HOURLY_LIMIT, s.RATE_LIMIT_HOURLY_WINDOW_S),
        )

    @property
    def windows(self) -> tuple[RateWindow, RateWindow, RateWindow]:
        return (self.global_window, self.burst, self.hourly)


class RateLimitBackendError(Exception):
    pass
