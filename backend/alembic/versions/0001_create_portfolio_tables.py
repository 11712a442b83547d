"""create portfolio tables

Revision ID: 0001
Revises: None
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _user_fk(nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(
        "user_id",
        sa.Integer(),
        sa.ForeignKey("users.id", ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("username", name="ux_users_username"),
    )

    op.create_table(
        "holdings",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column("symbol", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("isin", sa.String(length=16), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="Equity"),
        sa.Column("sector", sa.String(length=32), nullable=False, server_default="Other"),
        sa.Column("quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("ltp", sa.Float(), nullable=False, server_default="0"),
        sa.Column("exchange", sa.String(length=16), nullable=False, server_default="NSE"),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("xirr", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_holdings_user_source", "holdings", ["user_id", "source"])
    op.create_index("ix_holdings_user_symbol", "holdings", ["user_id", "symbol"])

    op.create_table(
        "quotes_cache",
        sa.Column("symbol", sa.String(length=64), primary_key=True),
        sa.Column("ltp", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("holdings_count", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_sync_logs_user_source_created",
        "sync_logs",
        ["user_id", "source", "created_at"],
    )

    op.create_table(
        "kite_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(nullable=True),
        sa.Column("broker_user_id", sa.String(length=64), nullable=True),
        sa.Column("access_token_encrypted", sa.String(length=512), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_kite_sessions_user_created",
        "kite_sessions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "oauth_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("nonce", sa.String(length=64), nullable=False, unique=True),
        _user_fk(),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "portfolio_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("total_investment", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_pnl", sa.Float(), nullable=False, server_default="0"),
        sa.Column("pnl_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("holdings_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id",
            "snapshot_date",
            name="ux_portfolio_snapshots_user_date",
        ),
    )

    op.create_table(
        "snapshot_source_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "snapshot_id",
            sa.Integer(),
            sa.ForeignKey("portfolio_snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("asset_type", sa.String(length=32), nullable=False),
        sa.Column("invested_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("pnl", sa.Float(), nullable=False, server_default="0"),
        sa.Column("pnl_percent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("holdings_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_snapshot_source_details_snapshot_id",
        "snapshot_source_details",
        ["snapshot_id"],
    )

    op.create_table(
        "mf_cas_sync",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column("pan", sa.String(length=10), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("otp_method", sa.String(length=8), nullable=False, server_default="phone"),
        sa.Column("otp_reference", sa.String(length=128), nullable=True),
        sa.Column(
            "sync_status",
            sa.String(length=16),
            nullable=False,
            server_default="pending_otp",
        ),
        sa.Column("time_period", sa.String(length=32), nullable=True),
        sa.Column("updated_till", sa.Date(), nullable=True),
        sa.Column("nickname", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_mf_cas_sync_user_pan", "mf_cas_sync", ["user_id", "pan"])

    op.create_table(
        "mf_folios",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column("pan", sa.String(length=10), nullable=False),
        sa.Column("folio_number", sa.String(length=64), nullable=False),
        sa.Column("amc_name", sa.String(length=128), nullable=False),
        sa.Column("amc_code", sa.String(length=32), nullable=True),
        sa.Column("scheme_name", sa.String(length=255), nullable=False),
        sa.Column("scheme_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("isin", sa.String(length=16), nullable=True),
        sa.Column("advisor", sa.String(length=64), nullable=True),
        sa.Column("registrar", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id",
            "folio_number",
            "scheme_code",
            name="ux_mf_folios_user_folio_scheme",
        ),
    )

    op.create_table(
        "mf_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column(
            "folio_id",
            sa.Integer(),
            sa.ForeignKey("mf_folios.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pan", sa.String(length=10), nullable=False),
        sa.Column("folio_number", sa.String(length=64), nullable=False),
        sa.Column("scheme_name", sa.String(length=255), nullable=False),
        sa.Column("scheme_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("isin", sa.String(length=16), nullable=True),
        sa.Column("amc_name", sa.String(length=128), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("transaction_type", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("units", sa.Float(), nullable=True),
        sa.Column("nav", sa.Float(), nullable=True),
        sa.Column("balance_units", sa.Float(), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("dividend_rate", sa.Float(), nullable=True),
    )
    op.create_index("ix_mf_transactions_folio_id", "mf_transactions", ["folio_id"])

    op.create_table(
        "mf_schemes",
        sa.Column("scheme_code", sa.String(length=64), primary_key=True),
        sa.Column("scheme_name", sa.String(length=255), nullable=False),
        sa.Column("isin", sa.String(length=16), nullable=True),
        sa.Column("amc_name", sa.String(length=128), nullable=False),
        sa.Column("amc_code", sa.String(length=32), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("sub_category", sa.String(length=64), nullable=True),
        sa.Column("scheme_type", sa.String(length=32), nullable=True),
        sa.Column("current_nav", sa.Float(), nullable=True),
        sa.Column("nav_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "mf_holdings_summary",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(),
        sa.Column(
            "folio_id",
            sa.Integer(),
            sa.ForeignKey("mf_folios.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pan", sa.String(length=10), nullable=False),
        sa.Column("folio_number", sa.String(length=64), nullable=False),
        sa.Column("scheme_name", sa.String(length=255), nullable=False),
        sa.Column("scheme_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("isin", sa.String(length=16), nullable=True),
        sa.Column("amc_name", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("total_units", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_nav", sa.Float(), nullable=True),
        sa.Column("current_value", sa.Float(), nullable=True),
        sa.Column("invested_value", sa.Float(), nullable=True),
        sa.Column("total_purchase_units", sa.Float(), nullable=True),
        sa.Column("total_redemption_units", sa.Float(), nullable=True),
        sa.Column("total_dividend_amount", sa.Float(), nullable=True),
        sa.Column("avg_nav", sa.Float(), nullable=True),
        sa.Column("xirr", sa.Float(), nullable=True),
        sa.Column("absolute_return", sa.Float(), nullable=True),
        sa.Column("absolute_return_percent", sa.Float(), nullable=True),
        sa.Column("first_investment_date", sa.Date(), nullable=True),
        sa.Column("last_transaction_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id",
            "folio_number",
            "scheme_code",
            name="ux_mf_holdings_summary_user_folio_scheme",
        ),
    )

    op.create_table(
        "system_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        _user_fk(nullable=True, ondelete="SET NULL"),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_system_events_created_at",
        "system_events",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_system_events_created_at", table_name="system_events")
    op.drop_table("system_events")
    op.drop_table("mf_holdings_summary")
    op.drop_table("mf_schemes")
    op.drop_index("ix_mf_transactions_folio_id", table_name="mf_transactions")
    op.drop_table("mf_transactions")
    op.drop_table("mf_folios")
    op.drop_index("ix_mf_cas_sync_user_pan", table_name="mf_cas_sync")
    op.drop_table("mf_cas_sync")
    op.drop_index(
        "ix_snapshot_source_details_snapshot_id",
        table_name="snapshot_source_details",
    )
    op.drop_table("snapshot_source_details")
    op.drop_table("portfolio_snapshots")
    op.drop_table("oauth_states")
    op.drop_index("ix_kite_sessions_user_created", table_name="kite_sessions")
    op.drop_table("kite_sessions")
    op.drop_index("ix_sync_logs_user_source_created", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_table("quotes_cache")
    op.drop_index("ix_holdings_user_symbol", table_name="holdings")
    op.drop_index("ix_holdings_user_source", table_name="holdings")
    op.drop_table("holdings")
    op.drop_table("users")
