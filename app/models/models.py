from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Boolean, DateTime, Integer, PrimaryKeyConstraint, String, Text
from sqlalchemy.sql import func
from datetime import datetime
from app.core.db import Base


class QuotaAccount(Base):
    __tablename__ = "quota_account"
    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    is_pro: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    scans_this_month: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    wardrobe_adds_this_month: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_scans_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_wardrobe_adds_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    month_started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.date_trunc("month", func.now())
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class QuotaConsumption(Base):
    """One row per (user, idempotency key, operation); holds the decision snapshot."""

    __tablename__ = "quota_consumption"
    __table_args__ = (PrimaryKeyConstraint("user_id", "idempotency_key", "consumption_type"),)
    user_id: Mapped[str] = mapped_column(Text)
    idempotency_key: Mapped[str] = mapped_column(Text)
    consumption_type: Mapped[str] = mapped_column(String(32))
    allowed: Mapped[bool] = mapped_column(Boolean)
    detail: Mapped[str] = mapped_column(String(64))
    monthly_used: Mapped[int] = mapped_column(Integer)
    monthly_limit: Mapped[int] = mapped_column(Integer)
    monthly_remaining: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
