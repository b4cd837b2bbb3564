import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, SystemClock, utc_datetime
from app.services.quota.types import (
    DETAIL_CONSUMED,
    DETAIL_LIFETIME,
    DETAIL_MONTHLY,
    DETAIL_PRO,
    QuotaDecision,
    QuotaLimits,
    QuotaStoreError,
    reason_for_detail,
)

logger = logging.getLogger("app.quota")

OPERATION_TYPES = ("scan", "wardrobe_add")


class QuotaStore(Protocol):
    name: str

    async def consume(self, user_id: str, idempotency_key: str, operation_type: str) -> QuotaDecision:
        """Atomically consume one credit, or replay the decision stored for the key."""
        ...


@dataclass
class _Account:
    is_pro: bool
    month: str
    monthly_used: dict[str, int]
    lifetime_used: dict[str, int]


class InMemoryQuotaStore:
    """Process-local store for development and tests.

    One asyncio lock serializes every consume, which makes the check-and-update
    atomic within a single event loop.
    """

    name = "memory"

    def __init__(self, limits: QuotaLimits, clock: Optional[Clock] = None, pro_users: Iterable[str] = ()):
        self.limits = limits
        self.clock = clock or SystemClock()
        self.pro_users = set(pro_users)
        self._accounts: dict[str, _Account] = {}
        self._consumptions: dict[tuple[str, str, str], QuotaDecision] = {}
        self._lock = asyncio.Lock()

    def _account(self, user_id: str) -> _Account:
        month = utc_datetime(self.clock).strftime("%Y-%m")
        acct = self._accounts.get(user_id)
        if acct is None:
            acct = _Account(
                is_pro=user_id in self.pro_users,
                month=month,
                monthly_used={op: 0 for op in OPERATION_TYPES},
                lifetime_used={op: 0 for op in OPERATION_TYPES},
            )
            self._accounts[user_id] = acct
        elif acct.month != month:
            acct.month = month
            acct.monthly_used = {op: 0 for op in OPERATION_TYPES}
        return acct

    async def consume(self, user_id: str, idempotency_key: str, operation_type: str) -> QuotaDecision:
        if operation_type not in OPERATION_TYPES:
            raise QuotaStoreError(f"unknown operation type: {operation_type}")
        key = (user_id, idempotency_key, operation_type)
        async with self._lock:
            stored = self._consumptions.get(key)
            if stored is not None:
                return stored.as_replay()

            acct = self._account(user_id)
            limit = self.limits.monthly_limit(operation_type, acct.is_pro)
            used = acct.monthly_used[operation_type]
            if used >= limit:
                detail = DETAIL_MONTHLY
            elif not acct.is_pro and acct.lifetime_used[operation_type] >= self.limits.free_lifetime[operation_type]:
                detail = DETAIL_LIFETIME
            else:
                acct.monthly_used[operation_type] = used = used + 1
                acct.lifetime_used[operation_type] += 1
                detail = DETAIL_PRO if acct.is_pro else DETAIL_CONSUMED

            allowed = detail in (DETAIL_CONSUMED, DETAIL_PRO)
            decision = QuotaDecision(
                allowed=allowed,
                reason=reason_for_detail(detail),
                monthly_used=used,
                monthly_limit=limit,
                monthly_remaining=max(0, limit - used),
                detail=detail,
            )
            self._consumptions[key] = decision
            return decision


class SqlQuotaStore:
    """Delegates to the consume_quota_credit() Postgres function.

    The function locks the account row, inserts or replays the idempotency row and
    updates the counters in one transaction; nothing is read back and re-written here.
    Limits are passed on every call, so the database enforces the configured values.
    """

    name = "postgres"

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], limits: QuotaLimits):
        self.sessionmaker = sessionmaker
        self.limits = limits

    async def consume(self, user_id: str, idempotency_key: str, operation_type: str) -> QuotaDecision:
        stmt = text(
            "SELECT allowed, detail, monthly_used, monthly_limit, monthly_remaining, replayed "
            "FROM consume_quota_credit(:user_id, :idempotency_key, :operation_type, "
            ":free_monthly, :pro_monthly, :free_lifetime)"
        )
        params = {
            "user_id": user_id,
            "idempotency_key": idempotency_key,
            "operation_type": operation_type,
            "free_monthly": self.limits.free_monthly[operation_type],
            "pro_monthly": self.limits.pro_monthly[operation_type],
            "free_lifetime": self.limits.free_lifetime[operation_type],
        }
        try:
            async with self.sessionmaker() as session:
                async with session.begin():
                    row = (await session.execute(stmt, params)).mappings().first()
        except SQLAlchemyError as exc:
            logger.error("quota:sql consume failed op=%s err=%s", operation_type, exc.__class__.__name__)
            raise QuotaStoreError("quota store unavailable") from exc
        if row is None:
            raise QuotaStoreError("quota store returned no row")
        return QuotaDecision(
            allowed=bool(row["allowed"]),
            reason=reason_for_detail(row["detail"]),
            monthly_used=int(row["monthly_used"]),
            monthly_limit=int(row["monthly_limit"]),
            monthly_remaining=int(row["monthly_remaining"]),
            detail=row["detail"],
            replayed=bool(row["replayed"]),
        )
