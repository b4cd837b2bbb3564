import logging
import uuid

from app.llm.types import OperationType
from app.services.quota.store import OPERATION_TYPES, QuotaStore
from app.services.quota.types import QuotaDecision

logger = logging.getLogger("app.quota")


def new_idempotency_key() -> str:
    """One key per logical user action; retries of that action reuse it."""
    return uuid.uuid4().hex


class QuotaGate:
    def __init__(self, store: QuotaStore):
        self.store = store

    async def consume(
        self, user_id: str, idempotency_key: str, operation_type: OperationType = "scan"
    ) -> QuotaDecision:
        if operation_type not in OPERATION_TYPES:
            raise ValueError(f"unknown operation type: {operation_type}")
        if not idempotency_key:
            raise ValueError("idempotency_key is required")
        decision = await self.store.consume(user_id, idempotency_key, operation_type)
        logger.info(
            "quota:%s op=%s allowed=%s detail=%s used=%s/%s replayed=%s",
            self.store.name,
            operation_type,
            decision.allowed,
            decision.detail,
            decision.monthly_used,
            decision.monthly_limit,
            decision.replayed,
        )
        return decision
