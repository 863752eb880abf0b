from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class BudgetPeriod(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"
    custom = "custom"


class BudgetOrigin(str, Enum):
    user = "user"
    ai = "ai"


class AlertType(str, Enum):
    approaching = "approaching"
    exceeded = "exceeded"
    predicted_overspend = "predicted_overspend"


class ChangeType(str, Enum):
    manual = "manual"
    auto_adjusted = "auto_adjusted"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index(
            "ix_transactions_user_category_occurred",
            "user_id",
            "category",
            "occurred_at",
        ),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(
        SAEnum(BudgetPeriod), nullable=False, default=BudgetPeriod.monthly
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_adjust: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    adjustment_percentage: Mapped[int] = mapped_column(
        Integer, default=20, nullable=False
    )
    created_by: Mapped[BudgetOrigin] = mapped_column(
        SAEnum(BudgetOrigin), default=BudgetOrigin.user, nullable=False
    )
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float)
    ai_reasoning: Mapped[Optional[str]] = mapped_column(Text)

    alerts: Mapped[list["BudgetAlert"]] = relationship(
        "BudgetAlert",
        back_populates="budget",
        cascade="all, delete-orphan",
    )
    history: Mapped[list["BudgetHistory"]] = relationship(
        "BudgetHistory",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetHistory.created_at",
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        CheckConstraint(
            "adjustment_percentage > 0 AND adjustment_percentage <= 100",
            name="ck_budget_adjustment_percentage_range",
        ),
        Index("ix_budgets_user_active", "user_id", "is_active"),
        # At most one active budget per (user, category, period, start).
        Index(
            "uq_budget_active_scope",
            "user_id",
            "category",
            "period",
            "start_date",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )


class BudgetAlert(Base):
    __tablename__ = "budget_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    alert_type: Mapped[AlertType] = mapped_column(SAEnum(AlertType), nullable=False)
    threshold_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    current_spent_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_predicted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    predicted_overspend_cents: Mapped[Optional[int]] = mapped_column(Integer)
    predicted_overspend_date: Mapped[Optional[date]] = mapped_column(Date)
    recommendation: Mapped[Optional[str]] = mapped_column(Text)
    notification_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notification_channels: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    triggered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    alert_date: Mapped[date] = mapped_column(Date, nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="alerts")

    __table_args__ = (
        UniqueConstraint("budget_id", "alert_date", name="uq_alert_budget_day"),
        Index("ix_alerts_user_triggered", "user_id", "triggered_at"),
        Index("ix_alerts_budget_triggered", "budget_id", "triggered_at"),
    )


class BudgetHistory(Base):
    __tablename__ = "budget_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[ChangeType] = mapped_column(SAEnum(ChangeType), nullable=False)
    old_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    new_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    changed_by: Mapped[BudgetOrigin] = mapped_column(
        SAEnum(BudgetOrigin), nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="history")

    __table_args__ = (
        Index(
            "ix_history_budget_type_created", "budget_id", "change_type", "created_at"
        ),
    )
