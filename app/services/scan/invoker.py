import asyncio
import base64
import logging
from typing import Optional

from app.core.config import settings
from app.llm.base import ProviderError, VisionProvider
from app.llm.parsing import SignalParseError, parse_signal_content
from app.llm.types import OperationType, VisionRequest
from app.services.quota.gate import QuotaGate, new_idempotency_key
from app.services.quota.types import QuotaStoreError
from app.services.ratelimit.limiter import RateLimiter
from app.services.ratelimit.types import RateLimitBackendError
from app.services.scan.cache import ResultCache
from app.services.scan.sizer import PAYLOAD_TOO_LARGE, ImageSizer
from app.services.scan.types import AnalysisError, AnalysisResult, ScanImage, fingerprint

logger = logging.getLogger("app.scan")


class AnalysisInvoker:
    """Runs one scan through cache, sizing, rate limit, quota and the provider.

    A cache hit returns before any of the later stages run. Only successful
    signals are written back to the cache. Nothing is retried here.
    """

    def __init__(
        self,
        provider: VisionProvider,
        cache: ResultCache,
        sizer: ImageSizer,
        quota: QuotaGate,
        limiter: RateLimiter,
        *,
        cache_version: str = settings.SCAN_CACHE_VERSION,
        prompt_version: str = settings.PROMPT_VERSION,
        max_output_tokens: int = settings.VISION_MAX_OUTPUT_TOKENS,
        timeout_s: float = settings.SCAN_PROVIDER_TIMEOUT_S,
        provider_retry_after_s: int = settings.SCAN_PROVIDER_RETRY_AFTER_DEFAULT_S,
    ):
        self.provider = provider
        self.cache = cache
        self.sizer = sizer
        self.quota = quota
        self.limiter = limiter
        self.cache_version = cache_version
        self.prompt_version = prompt_version
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.provider_retry_after_s = provider_retry_after_s

    def fingerprint(self, image: ScanImage, user_id: str) -> str:
        return fingerprint(
            image,
            user_id,
            cache_version=self.cache_version,
            model=self.provider.model,
            prompt_version=self.prompt_version,
        )

    async def analyze(
        self,
        image: ScanImage,
        user_id: str,
        *,
        operation_type: OperationType = "scan",
        idempotency_key: Optional[str] = None,
    ) -> AnalysisResult:
        fp = self.fingerprint(image, user_id)
        cached = self.cache.get(fp)
        if cached is not None:
            logger.info("scan:cache hit fp=%s", fp[:8])
            return AnalysisResult(fingerprint=fp, idempotency_key=idempotency_key, signal=cached, cache_hit=True)

        key = idempotency_key or new_idempotency_key()
        try:
            return await self._run(image, user_id, fp, key, operation_type)
        except Exception:
            logger.exception("scan:unexpected failure fp=%s op=%s", fp[:8], operation_type)
            return AnalysisResult(fingerprint=fp, idempotency_key=key, error=AnalysisError("unknown"))

    async def _run(
        self, image: ScanImage, user_id: str, fp: str, key: str, operation_type: OperationType
    ) -> AnalysisResult:
        def fail(error: AnalysisError, quota=None) -> AnalysisResult:
            logger.info("scan:fail fp=%s kind=%s scope=%s", fp[:8], error.kind, error.scope)
            return AnalysisResult(fingerprint=fp, idempotency_key=key, error=error, quota=quota)

        sized = await asyncio.to_thread(self.sizer.fit, image.raw)
        if not sized.ok:
            kind = "payload_too_large" if sized.reason == PAYLOAD_TOO_LARGE else "bad_request"
            return fail(AnalysisError(kind, detail=sized.reason or ""))
        logger.info("scan:sized fp=%s bytes=%s passes=%s", fp[:8], sized.size_bytes, len(sized.passes))

        # A request the limiter turns away must not spend a credit.
        try:
            limit = await self.limiter.check(user_id)
        except RateLimitBackendError as exc:
            logger.error("scan:rate limiter error fp=%s err=%s", fp[:8], exc)
            return fail(AnalysisError("server_error", detail="rate_limiter"))
        if not limit.allowed:
            return fail(
                AnalysisError("rate_limited", scope=limit.scope, retry_after_seconds=limit.retry_after_seconds)
            )

        try:
            decision = await self.quota.consume(user_id, key, operation_type)
        except QuotaStoreError as exc:
            logger.error("scan:quota store error fp=%s err=%s", fp[:8], exc)
            return fail(AnalysisError("server_error", detail="quota_store"))
        if not decision.allowed:
            scope = "monthly" if decision.reason == "monthly_quota_exceeded" else "other"
            return fail(AnalysisError("quota_exceeded", scope=scope, detail=decision.detail), decision)

        req = VisionRequest(
            image_data_url="data:image/jpeg;base64," + base64.b64encode(sized.payload).decode("ascii"),
            prompt_version=self.prompt_version,
            max_output_tokens=self.max_output_tokens,
        )
        try:
            resp = await asyncio.wait_for(self.provider.analyze(req), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("scan:provider timeout fp=%s timeout_s=%s", fp[:8], self.timeout_s)
            return fail(AnalysisError("server_error", detail="timeout"), decision)
        except ProviderError as exc:
            if exc.rate_limited:
                wait = exc.retry_after or self.provider_retry_after_s
                return fail(AnalysisError("rate_limited", scope="provider", retry_after_seconds=wait), decision)
            return fail(AnalysisError("server_error", detail=str(exc)), decision)

        try:
            signal = parse_signal_content(resp.content)
        except SignalParseError as exc:
            logger.warning("scan:parse error fp=%s err=%s", fp[:8], exc)
            return fail(AnalysisError("parse_error", detail=str(exc)), decision)

        try:
            self.cache.put(fp, signal)
        except Exception as exc:
            logger.warning("scan:cache write failed fp=%s err=%s", fp[:8], exc)

        logger.info(
            "scan:ok fp=%s model=%s latency_ms=%s tokens_in=%s tokens_out=%s",
            fp[:8],
            resp.model,
            resp.latency_ms,
            resp.tokens_in,
            resp.tokens_out,
        )
        return AnalysisResult(fingerprint=fp, idempotency_key=key, signal=signal, quota=decision)
