from dataclasses import dataclass, field, replace
from typing import Literal

QuotaReason = Literal["none", "monthly_quota_exceeded", "other"]

DETAIL_CONSUMED = "consumed"
DETAIL_PRO = "pro"
DETAIL_MONTHLY = "monthly_quota_exceeded"
DETAIL_LIFETIME = "lifetime_quota_exceeded"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: QuotaReason
    monthly_used: int
    monthly_limit: int
    monthly_remaining: int
    detail: str = ""
    replayed: bool = field(default=False, compare=False)

    def as_replay(self) -> "QuotaDecision":
        return replace(self, replayed=True)


@dataclass(frozen=True)
class QuotaLimits:
    free_monthly: dict[str, int]
    pro_monthly: dict[str, int]
    free_lifetime: dict[str, int]

    @classmethod
    def from_settings(cls, s) -> "QuotaLimits":
        return cls(
            free_monthly={"scan": s.QUOTA_FREE_SCAN_MONTHLY, "wardrobe_add": s.QUOTA_FREE_WARDROBE_ADD_MONTHLY},
            pro_monthly={"scan": s.QUOTA_PRO_SCAN_MONTHLY, "wardrobe_add": s.QUOTA_PRO_WARDROBE_ADD_MONTHLY},
            free_lifetime={"scan": s.QUOTA_FREE_SCAN_LIFETIME, "wardrobe_add": s.QUOTA_FREE_WARDROBE_ADD_LIFETIME},
        )

    def monthly_limit(self, operation_type: str, is_pro: bool) -> int:
        return (self.pro_monthly if is_pro else self.free_monthly)[operation_type]


def reason_for_detail(detail: str) -> QuotaReason:
    if detail in (DETAIL_CONSUMED, DETAIL_PRO):
        return "none"
    if detail == DETAIL_MONTHLY:
        return "monthly_quota_exceeded"
    return "other"


class QuotaStoreError(Exception):
    pass
