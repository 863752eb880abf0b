"""budgets, alerts and adjustment history

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_category_occurred",
        "transactions",
        ["user_id", "category", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("weekly", "monthly", "yearly", "custom", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "auto_adjust", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "adjustment_percentage", sa.Integer(), nullable=False, server_default="20"
        ),
        sa.Column(
            "created_by",
            sa.Enum("user", "ai", name="budgetorigin"),
            nullable=False,
            server_default="user",
        ),
        sa.Column("ai_confidence", sa.Float()),
        sa.Column("ai_reasoning", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint(
            "adjustment_percentage > 0 AND adjustment_percentage <= 100",
            name="ck_budget_adjustment_percentage_range",
        ),
    )
    op.create_index("ix_budgets_user_active", "budgets", ["user_id", "is_active"])
    op.create_index(
        "uq_budget_active_scope",
        "budgets",
        ["user_id", "category", "period", "start_date"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "budget_alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "alert_type",
            sa.Enum(
                "approaching", "exceeded", "predicted_overspend", name="alerttype"
            ),
            nullable=False,
        ),
        sa.Column("threshold_percentage", sa.Float(), nullable=False),
        sa.Column("current_spent_cents", sa.Integer(), nullable=False),
        sa.Column("budget_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "is_predicted", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("predicted_overspend_cents", sa.Integer()),
        sa.Column("predicted_overspend_date", sa.Date()),
        sa.Column("recommendation", sa.Text()),
        sa.Column(
            "notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("notification_channels", sa.JSON(), nullable=False),
        sa.Column("triggered_at", sa.DateTime(), nullable=False),
        sa.Column("alert_date", sa.Date(), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime()),
        sa.Column("dismissed_at", sa.DateTime()),
        sa.UniqueConstraint("budget_id", "alert_date", name="uq_alert_budget_day"),
    )
    op.create_index(
        "ix_alerts_user_triggered", "budget_alerts", ["user_id", "triggered_at"]
    )
    op.create_index(
        "ix_alerts_budget_triggered", "budget_alerts", ["budget_id", "triggered_at"]
    )

    op.create_table(
        "budget_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "change_type",
            sa.Enum("manual", "auto_adjusted", name="changetype"),
            nullable=False,
        ),
        sa.Column("old_amount_cents", sa.Integer(), nullable=False),
        sa.Column("new_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "changed_by",
            postgresql.ENUM("user", "ai", name="budgetorigin", create_type=False),
            nullable=False,
        ),
        sa.Column("reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_history_budget_type_created",
        "budget_history",
        ["budget_id", "change_type", "created_at"],
    )


def downgrade():
    op.drop_index("ix_history_budget_type_created", table_name="budget_history")
    op.drop_table("budget_history")
    op.drop_index("ix_alerts_budget_triggered", table_name="budget_alerts")
    op.drop_index("ix_alerts_user_triggered", table_name="budget_alerts")
    op.drop_table("budget_alerts")
    op.drop_index("uq_budget_active_scope", table_name="budgets")
    op.drop_index("ix_budgets_user_active", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_occurred", table_name="transactions")
    op.drop_table("transactions")
