from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import Budget, Transaction, TransactionType
from periods import spend_window


logger = logging.getLogger(__name__)


class LedgerReader:
    """Read-only queries over the transaction store."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _expense_filters(
        self, user_id: int, category: str, start: datetime, end: datetime
    ) -> tuple:
        return (
            Transaction.user_id == user_id,
            Transaction.deleted_at.is_(None),
            Transaction.type == TransactionType.expense,
            Transaction.category == category,
            Transaction.occurred_at >= start,
            Transaction.occurred_at <= end,
        )

    def sum_expenses(
        self, user_id: int, category: str, start: datetime, end: datetime
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            *self._expense_filters(user_id, category, start, end)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def list_transactions(
        self, user_id: int, category: str, start: datetime, end: datetime
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(*self._expense_filters(user_id, category, start, end))
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def category_keys(self, user_id: int) -> list[str]:
        stmt = (
            select(Transaction.category)
            .where(
                Transaction.user_id == user_id,
                Transaction.deleted_at.is_(None),
                Transaction.type == TransactionType.expense,
            )
            .distinct()
            .order_by(Transaction.category)
        )
        return list(self.session.scalars(stmt).all())


class SpendingAggregator:
    def __init__(self, session: Session) -> None:
        self.ledger = LedgerReader(session)

    def current_spend(self, budget: Budget, now: datetime) -> int:
        window = spend_window(budget, now)
        if window is None:
            logger.warning(
                f"aggregate_skipped: budget_id={budget.id} reason=invalid_dates "
                f"start={budget.start_date!r} end={budget.end_date!r}"
            )
            return 0
        return self.ledger.sum_expenses(
            budget.user_id, budget.category, window.start, window.end
        )
