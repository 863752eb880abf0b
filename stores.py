from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Budget, BudgetHistory, BudgetOrigin, ChangeType
from principal import Principal


class BudgetNotFound(ValueError):
    pass


class BudgetStore:
    def __init__(self, session: Session, principal: Principal) -> None:
        self.session = session
        self.principal = principal

    def list_active_budgets(self, user_id: Optional[int] = None) -> list[Budget]:
        stmt = select(Budget).where(Budget.is_active.is_(True))
        stmt = self.principal.scope(stmt, Budget.user_id)
        if user_id is not None:
            stmt = stmt.where(Budget.user_id == user_id)
        stmt = stmt.order_by(Budget.user_id, Budget.category, Budget.id)
        return list(self.session.scalars(stmt).all())

    def get_budget(self, budget_id: int, *, lock: bool = False) -> Budget:
        stmt = select(Budget).where(Budget.id == budget_id)
        stmt = self.principal.scope(stmt, Budget.user_id)
        if lock:
            stmt = stmt.with_for_update()
        budget = self.session.scalar(stmt)
        if budget is None:
            raise BudgetNotFound("Budget not found")
        return budget

    def update_amount(self, budget: Budget, new_amount_cents: int) -> Budget:
        if not self.principal.owns(budget.user_id):
            raise BudgetNotFound("Budget not found")
        budget.amount_cents = new_amount_cents
        self.session.flush()
        return budget


class HistoryStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists_history_since(
        self, budget_id: int, change_type: ChangeType, since: datetime
    ) -> bool:
        stmt = (
            select(BudgetHistory.id)
            .where(
                BudgetHistory.budget_id == budget_id,
                BudgetHistory.change_type == change_type,
                BudgetHistory.created_at >= since,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def append_history(
        self,
        budget: Budget,
        *,
        change_type: ChangeType,
        old_amount_cents: int,
        new_amount_cents: int,
        changed_by: BudgetOrigin,
        reason: Optional[str],
        created_at: datetime,
    ) -> BudgetHistory:
        entry = BudgetHistory(
            budget_id=budget.id,
            user_id=budget.user_id,
            change_type=change_type,
            old_amount_cents=old_amount_cents,
            new_amount_cents=new_amount_cents,
            changed_by=changed_by,
            reason=reason,
            created_at=created_at,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_budget(self, budget_id: int) -> list[BudgetHistory]:
        stmt = (
            select(BudgetHistory)
            .where(BudgetHistory.budget_id == budget_id)
            .order_by(BudgetHistory.created_at.desc(), BudgetHistory.id.desc())
        )
        return list(self.session.scalars(stmt).all())
