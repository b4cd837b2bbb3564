import logging
from dataclasses import dataclass
from typing import Optional

from app.core.clock import Clock, SystemClock
from app.core.config import Settings
from app.llm.base import ProviderRegistry, VisionProvider
from app.services.quota.gate import QuotaGate
from app.services.quota.store import InMemoryQuotaStore, QuotaStore, SqlQuotaStore
from app.services.quota.types import QuotaLimits
from app.services.ratelimit.limiter import RateLimiter, build_rate_limiter
from app.services.ratelimit.types import RateLimitConfig
from app.services.scan.cache import ResultCache
from app.services.scan.invoker import AnalysisInvoker
from app.services.scan.sizer import ImageSizer

logger = logging.getLogger("uvicorn.error")


@dataclass
class ScanServices:
    provider_name: str
    cache: ResultCache
    quota_store: QuotaStore
    limiter: RateLimiter
    invoker: AnalysisInvoker


def build_quota_store(s: Settings, clock: Clock) -> QuotaStore:
    if s.QUOTA_BACKEND == "postgres":
        from app.core.db import get_sessionmaker

        return SqlQuotaStore(get_sessionmaker(), QuotaLimits.from_settings(s))
    if s.QUOTA_BACKEND != "memory":
        raise ValueError(f"Unknown quota backend: {s.QUOTA_BACKEND}")
    return InMemoryQuotaStore(QuotaLimits.from_settings(s), clock)


def build_services(
    s: Settings,
    *,
    clock: Optional[Clock] = None,
    provider: Optional[VisionProvider] = None,
) -> ScanServices:
    """Wire the scan pipeline for one application lifetime."""
    clock = clock or SystemClock()
    provider = provider or ProviderRegistry.get(s.VISION_PROVIDER)
    cache = ResultCache(clock, ttl_s=s.SCAN_CACHE_TTL_S, max_entries=s.SCAN_CACHE_MAX_ENTRIES)
    sizer = ImageSizer(
        pass1_max_side=s.SCAN_PASS1_MAX_SIDE,
        pass1_quality=s.SCAN_PASS1_QUALITY,
        pass2_max_side=s.SCAN_PASS2_MAX_SIDE,
        pass2_quality=s.SCAN_PASS2_QUALITY,
        second_pass_threshold=s.SCAN_SECOND_PASS_THRESHOLD_BYTES,
        max_payload=s.SCAN_MAX_PAYLOAD_BYTES,
    )
    quota_store = build_quota_store(s, clock)
    limiter = build_rate_limiter(
        RateLimitConfig.from_settings(s), s.RATE_LIMIT_BACKEND, clock=clock, redis_url=s.REDIS_URL
    )
    invoker = AnalysisInvoker(
        provider,
        cache,
        sizer,
        QuotaGate(quota_store),
        limiter,
        cache_version=s.SCAN_CACHE_VERSION,
        prompt_version=s.PROMPT_VERSION,
        max_output_tokens=s.VISION_MAX_OUTPUT_TOKENS,
        timeout_s=s.SCAN_PROVIDER_TIMEOUT_S,
        provider_retry_after_s=s.SCAN_PROVIDER_RETRY_AFTER_DEFAULT_S,
    )
    logger.info(
        "scan:services provider=%s quota=%s ratelimit=%s", s.VISION_PROVIDER, quota_store.name, limiter.name
    )
    return ScanServices(
        provider_name=s.VISION_PROVIDER,
        cache=cache,
        quota_store=quota_store,
        limiter=limiter,
        invoker=invoker,
    )
