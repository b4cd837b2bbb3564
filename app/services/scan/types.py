import hashlib
from dataclasses import dataclass
from typing import Literal, Optional

from app.llm.types import StyleSignal
from app.services.quota.types import QuotaDecision

AnalysisErrorKind = Literal[
    "unauthorized",
    "bad_request",
    "payload_too_large",
    "rate_limited",
    "quota_exceeded",
    "parse_error",
    "server_error",
    "unknown",
]

GENERIC_MESSAGE = "Something went wrong. Please try again."


@dataclass(frozen=True)
class ScanImage:
    raw: bytes
    image_id: Optional[str] = None

    @property
    def identity(self) -> str:
        return self.image_id or hashlib.sha256(self.raw).hexdigest()


@dataclass(frozen=True)
class AnalysisError:
    kind: AnalysisErrorKind
    scope: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    detail: str = ""

    def user_message(self, operation_type: str = "scan") -> str:
        label = "wardrobe add" if operation_type == "wardrobe_add" else "scan"
        if self.kind == "quota_exceeded":
            if self.scope == "monthly":
                return f"You've reached your monthly {label} limit. Resets next month."
            return f"You've used all your free {label}s. Upgrade to Pro for more."
        if self.kind == "rate_limited":
            wait = self.retry_after_seconds or 0
            if wait >= 60:
                minutes = -(-wait // 60)
                return f"Too many requests. Please try again in {minutes} minute{'s' if minutes != 1 else ''}."
            return f"Too many requests. Please try again in {wait} second{'s' if wait != 1 else ''}."
        return GENERIC_MESSAGE


@dataclass(frozen=True)
class AnalysisResult:
    fingerprint: str
    idempotency_key: Optional[str] = None
    signal: Optional[StyleSignal] = None
    error: Optional[AnalysisError] = None
    cache_hit: bool = False
    quota: Optional[QuotaDecision] = None

    @property
    def ok(self) -> bool:
        return self.signal is not None and self.error is None


def fingerprint(image: ScanImage, user_id: str, *, cache_version: str, model: str, prompt_version: str) -> str:
    key = f"{cache_version}:{model}:{prompt_version}:{user_id}:{image.identity}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()
