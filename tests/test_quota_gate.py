import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.services.quota.gate import QuotaGate, new_idempotency_key
from app.services.quota.store import InMemoryQuotaStore, SqlQuotaStore
from app.services.quota.types import QuotaLimits, QuotaStoreError


LIMITS = QuotaLimits.from_settings(settings)


def _gate(clock, **kwargs) -> QuotaGate:
    return QuotaGate(InMemoryQuotaStore(LIMITS, clock, **kwargs))


@pytest.mark.asyncio
async def test_concurrent_same_key_consumes_once(fake_clock):
    gate = _gate(fake_clock)
    a, b = await asyncio.gather(
        gate.consume("u1", "key-1", "scan"),
        gate.consume("u1", "key-1", "scan"),
    )
    assert a == b
    assert a.allowed and a.monthly_used == 1
    assert a.replayed != b.replayed
    nxt = await gate.consume("u1", "key-2", "scan")
    assert nxt.monthly_used == 2


@pytest.mark.asyncio
async def test_free_monthly_limit(fake_clock):
    gate = _gate(fake_clock)
    for i in range(5):
        d = await gate.consume("u1", f"k{i}", "scan")
        assert d.allowed and d.detail == "consumed"
    d = await gate.consume("u1", "k5", "scan")
    assert not d.allowed
    assert d.reason == "monthly_quota_exceeded"
    assert (d.monthly_used, d.monthly_limit, d.monthly_remaining) == (5, 5, 0)


@pytest.mark.asyncio
async def test_lifetime_exhaustion_is_other_after_month_rollover(fake_clock):
    gate = _gate(fake_clock)
    for i in range(5):
        await gate.consume("u1", f"k{i}", "scan")
    fake_clock.advance(32 * 24 * 3600)
    d = await gate.consume("u1", "next-month", "scan")
    assert not d.allowed
    assert d.reason == "other"
    assert d.detail == "lifetime_quota_exceeded"
    assert d.monthly_used == 0


@pytest.mark.asyncio
async def test_pro_users_have_monthly_cap_only(fake_clock):
    gate = _gate(fake_clock, pro_users=["pro"])
    for i in range(6):
        d = await gate.consume("pro", f"k{i}", "scan")
        assert d.allowed
    assert d.detail == "pro"
    assert d.monthly_limit == 200
    assert d.monthly_remaining == 194


@pytest.mark.asyncio
async def test_pools_are_independent(fake_clock):
    gate = _gate(fake_clock)
    for i in range(5):
        await gate.consume("u1", f"s{i}", "scan")
    d = await gate.consume("u1", "w0", "wardrobe_add")
    assert d.allowed
    assert (d.monthly_used, d.monthly_limit) == (1, 15)


@pytest.mark.asyncio
async def test_rejection_replays_identically(fake_clock):
    gate = _gate(fake_clock)
    for i in range(5):
        await gate.consume("u1", f"k{i}", "scan")
    first = await gate.consume("u1", "late", "scan")
    again = await gate.consume("u1", "late", "scan")
    assert not first.allowed
    assert again == first and again.replayed


@pytest.mark.asyncio
async def test_gate_validates_arguments(fake_clock):
    gate = _gate(fake_clock)
    with pytest.raises(ValueError):
        await gate.consume("u1", "k", "outfit")
    with pytest.raises(ValueError):
        await gate.consume("u1", "", "scan")


def test_new_idempotency_key_is_unique_hex():
    keys = {new_idempotency_key() for _ in range(50)}
    assert len(keys) == 50
    assert all(len(k) == 32 and int(k, 16) >= 0 for k in keys)


class _Result:
    def __init__(self, row):
        self.row = row

    def mappings(self):
        return self

    def first(self):
        return self.row


class _Tx:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, row=None, exc=None):
        self.row = row
        self.exc = exc
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def begin(self):
        return _Tx()

    async def execute(self, stmt, params=None):
        self.calls.append((str(stmt), params))
        if self.exc is not None:
            raise self.exc
        return _Result(self.row)


@pytest.mark.asyncio
async def test_sql_store_calls_consume_function_once():
    row = {
        "allowed": False,
        "detail": "monthly_quota_exceeded",
        "monthly_used": 5,
        "monthly_limit": 5,
        "monthly_remaining": 0,
        "replayed": True,
    }
    session = FakeSession(row=row)
    store = SqlQuotaStore(lambda: session, LIMITS)
    d = await store.consume("u1", "k1", "scan")
    assert not d.allowed
    assert d.reason == "monthly_quota_exceeded"
    assert d.replayed
    assert len(session.calls) == 1
    sql, params = session.calls[0]
    assert "consume_quota_credit" in sql
    assert params == {
        "user_id": "u1",
        "idempotency_key": "k1",
        "operation_type": "scan",
        "free_monthly": settings.QUOTA_FREE_SCAN_MONTHLY,
        "pro_monthly": settings.QUOTA_PRO_SCAN_MONTHLY,
        "free_lifetime": settings.QUOTA_FREE_SCAN_LIFETIME,
    }


@pytest.mark.asyncio
async def test_sql_store_sends_configured_limits_for_the_operation():
    limits = QuotaLimits(
        free_monthly={"scan": 7, "wardrobe_add": 21},
        pro_monthly={"scan": 70, "wardrobe_add": 210},
        free_lifetime={"scan": 9, "wardrobe_add": 27},
    )
    row = {
        "allowed": True,
        "detail": "consumed",
        "monthly_used": 1,
        "monthly_limit": 21,
        "monthly_remaining": 20,
        "replayed": False,
    }
    session = FakeSession(row=row)
    d = await SqlQuotaStore(lambda: session, limits).consume("u1", "k2", "wardrobe_add")
    assert d.allowed and d.monthly_limit == 21
    sql, params = session.calls[0]
    assert ":free_monthly, :pro_monthly, :free_lifetime" in sql
    assert (params["free_monthly"], params["pro_monthly"], params["free_lifetime"]) == (21, 210, 27)


@pytest.mark.asyncio
async def test_sql_store_lifetime_maps_to_other():
    row = {
        "allowed": False,
        "detail": "lifetime_quota_exceeded",
        "monthly_used": 0,
        "monthly_limit": 5,
        "monthly_remaining": 5,
        "replayed": False,
    }
    d = await SqlQuotaStore(lambda: FakeSession(row=row), LIMITS).consume("u1", "k1", "scan")
    assert d.reason == "other"


@pytest.mark.asyncio
async def test_sql_store_errors_become_quota_store_error():
    session = FakeSession(exc=OperationalError("SELECT 1", {}, Exception("down")))
    with pytest.raises(QuotaStoreError):
        await SqlQuotaStore(lambda: session, LIMITS).consume("u1", "k1", "scan")
    with pytest.raises(QuotaStoreError):
        await SqlQuotaStore(lambda: FakeSession(row=None), LIMITS).consume("u1", "k1", "scan")


def test_consumption_table_is_keyed_by_user_key_and_type():
    from app.models.models import QuotaAccount, QuotaConsumption

    pk = [c.name for c in QuotaConsumption.__table__.primary_key.columns]
    assert pk == ["user_id", "idempotency_key", "consumption_type"]
    assert "month_started_at" in QuotaAccount.__table__.columns
