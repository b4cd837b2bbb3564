"""scan quota accounts, consumptions and consume_quota_credit()

Revision ID: 0001_scan_quota
Revises:
Create Date: 2026-01-25
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_scan_quota"
down_revision = None
branch_labels = None
depends_on = None


# Limits come from the caller's settings so every backend enforces the same numbers.
# The row lock on the account serializes callers for one user, so a second caller
# with the same key always finds the first caller's consumption row and replays it.
CONSUME_FN = """
CREATE OR REPLACE FUNCTION consume_quota_credit(
  p_user_id text,
  p_idempotency_key text,
  p_type text,
  p_free_monthly integer,
  p_pro_monthly integer,
  p_free_lifetime integer
)
RETURNS TABLE(
  allowed boolean,
  detail text,
  monthly_used integer,
  monthly_limit integer,
  monthly_remaining integer,
  replayed boolean
) AS $$
#variable_conflict use_column
DECLARE
  v_acct quota_account%ROWTYPE;
  v_prev quota_consumption%ROWTYPE;
  v_monthly integer;
  v_lifetime integer;
  v_limit integer;
  v_allowed boolean;
  v_detail text;
BEGIN
  IF p_type NOT IN ('scan', 'wardrobe_add') THEN
    RAISE EXCEPTION 'unknown consumption type %', p_type;
  END IF;

  INSERT INTO quota_account (user_id) VALUES (p_user_id) ON CONFLICT (user_id) DO NOTHING;
  SELECT * INTO v_acct FROM quota_account a WHERE a.user_id = p_user_id FOR UPDATE;

  SELECT * INTO v_prev FROM quota_consumption c
   WHERE c.user_id = p_user_id AND c.idempotency_key = p_idempotency_key AND c.consumption_type = p_type;
  IF FOUND THEN
    RETURN QUERY SELECT v_prev.allowed, v_prev.detail, v_prev.monthly_used,
                        v_prev.monthly_limit, v_prev.monthly_remaining, TRUE;
    RETURN;
  END IF;

  IF v_acct.month_started_at < date_trunc('month', now()) THEN
    UPDATE quota_account a
       SET scans_this_month = 0, wardrobe_adds_this_month = 0, month_started_at = date_trunc('month', now())
     WHERE a.user_id = p_user_id
    RETURNING * INTO v_acct;
  END IF;

  v_limit := CASE WHEN v_acct.is_pro THEN p_pro_monthly ELSE p_free_monthly END;
  IF p_type = 'scan' THEN
    v_monthly := v_acct.scans_this_month;
    v_lifetime := v_acct.total_scans_used;
  ELSE
    v_monthly := v_acct.wardrobe_adds_this_month;
    v_lifetime := v_acct.total_wardrobe_adds_used;
  END IF;

  IF v_monthly >= v_limit THEN
    v_allowed := FALSE;
    v_detail := 'monthly_quota_exceeded';
  ELSIF NOT v_acct.is_pro AND v_lifetime >= p_free_lifetime THEN
    v_allowed := FALSE;
    v_detail := 'lifetime_quota_exceeded';
  ELSE
    v_allowed := TRUE;
    v_detail := CASE WHEN v_acct.is_pro THEN 'pro' ELSE 'consumed' END;
    v_monthly := v_monthly + 1;
    IF p_type = 'scan' THEN
      UPDATE quota_account a
         SET scans_this_month = a.scans_this_month + 1, total_scans_used = a.total_scans_used + 1, updated_at = now()
       WHERE a.user_id = p_user_id;
    ELSE
      UPDATE quota_account a
         SET wardrobe_adds_this_month = a.wardrobe_adds_this_month + 1,
             total_wardrobe_adds_used = a.total_wardrobe_adds_used + 1,
             updated_at = now()
       WHERE a.user_id = p_user_id;
    END IF;
  END IF;

  INSERT INTO quota_consumption
    (user_id, idempotency_key, consumption_type, allowed, detail, monthly_used, monthly_limit, monthly_remaining)
  VALUES
    (p_user_id, p_idempotency_key, p_type, v_allowed, v_detail, v_monthly, v_limit, GREATEST(0, v_limit - v_monthly));

  RETURN QUERY SELECT v_allowed, v_detail, v_monthly, v_limit, GREATEST(0, v_limit - v_monthly), FALSE;
END;
$$ LANGUAGE plpgsql;
"""


def upgrade() -> None:
    op.create_table(
        "quota_account",
        sa.Column("user_id", sa.Text(), primary_key=True),
        sa.Column("is_pro", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("scans_this_month", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("wardrobe_adds_this_month", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_scans_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_wardrobe_adds_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "month_started_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("date_trunc('month', now())"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_table(
        "quota_consumption",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False),
        sa.Column("consumption_type", sa.String(32), nullable=False),
        sa.Column("allowed", sa.Boolean(), nullable=False),
        sa.Column("detail", sa.String(64), nullable=False),
        sa.Column("monthly_used", sa.Integer(), nullable=False),
        sa.Column("monthly_limit", sa.Integer(), nullable=False),
        sa.Column("monthly_remaining", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "idempotency_key", "consumption_type"),
        sa.CheckConstraint("consumption_type IN ('scan', 'wardrobe_add')", name="ck_quota_consumption_type"),
    )
    op.create_index("ix_quota_consumption_user_created", "quota_consumption", ["user_id", "created_at"])

    op.execute(CONSUME_FN)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS consume_quota_credit(text, text, text, integer, integer, integer);")
    op.drop_index("ix_quota_consumption_user_created", table_name="quota_consumption")
    op.drop_table("quota_consumption")
    op.drop_table("quota_account")
