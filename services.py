from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from classifier import classify
from ledger import LedgerReader, SpendingAggregator
from models import (
    AlertType,
    Budget,
    BudgetAlert,
    BudgetHistory,
    BudgetOrigin,
    BudgetPeriod,
    ChangeType,
    Transaction,
)
from periods import current_cycle, days_remaining, local_now
from principal import Principal, current_principal
from schemas import BudgetIn, BudgetUpdateIn, TransactionIn
from stores import BudgetNotFound, BudgetStore, HistoryStore


MIN_BUDGET_AMOUNT_CENTS = 10_000
MAX_ACTIVE_BUDGETS = 20
ALERT_LIST_LIMIT = 50


class BudgetValidationError(ValueError):
    pass


class BudgetLimitReached(ValueError):
    pass


class DuplicateBudget(ValueError):
    pass


class AlertNotFound(ValueError):
    pass


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or current_principal().user_id

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            occurred_at=data.occurred_at,
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category.strip(),
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn


@dataclass(frozen=True)
class BudgetStatusView:
    budget: Budget
    spent_cents: int
    remaining_cents: int
    percentage: float
    status: str
    days_remaining: Optional[int]
    alert_type: Optional[str]
    threshold: Optional[int]

    def as_dict(self) -> dict[str, object]:
        return {
            **budget_to_dict(self.budget),
            "spent_cents": self.spent_cents,
            "remaining_cents": self.remaining_cents,
            "percentage": round(self.percentage, 2),
            "status": self.status,
            "days_remaining": self.days_remaining,
            "alert_type": self.alert_type,
            "threshold": self.threshold,
        }


class BudgetService:
    def __init__(self, session: Session, principal: Optional[Principal] = None) -> None:
        self.session = session
        self.principal = principal or current_principal()
        self.store = BudgetStore(session, self.principal)

    def _owner_id(self) -> int:
        if self.principal.user_id is None:
            raise BudgetValidationError("Budgets are created on behalf of a user")
        return self.principal.user_id

    def list(
        self,
        *,
        active: Optional[bool] = None,
        period: Optional[BudgetPeriod] = None,
        category: Optional[str] = None,
    ) -> list[Budget]:
        stmt = self.principal.scope(select(Budget), Budget.user_id)
        if active is not None:
            stmt = stmt.where(Budget.is_active.is_(active))
        if period is not None:
            stmt = stmt.where(Budget.period == period)
        if category:
            stmt = stmt.where(Budget.category == category)
        stmt = stmt.order_by(Budget.category.asc(), Budget.id.asc())
        return list(self.session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        return self.store.get_budget(budget_id)

    def _active_count(self, user_id: int) -> int:
        return int(
            self.session.execute(
                select(func.count(Budget.id)).where(
                    Budget.user_id == user_id, Budget.is_active.is_(True)
                )
            ).scalar_one()
        )

    def _has_active_duplicate(
        self,
        user_id: int,
        category: str,
        period: BudgetPeriod,
        start_date,
        *,
        exclude_id: Optional[int] = None,
    ) -> bool:
        stmt = select(Budget.id).where(
            Budget.user_id == user_id,
            Budget.category == category,
            Budget.period == period,
            Budget.start_date == start_date,
            Budget.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none() is not None

    def resolve_category(self, user_id: int, raw: str) -> str:
        """Snap a typed category onto an existing ledger category when it is
        the same word modulo case or a single typo."""
        name = raw.strip()
        known = LedgerReader(self.session).category_keys(user_id)
        lowered = name.lower()
        for candidate in known:
            if candidate.lower() == lowered:
                return candidate

        best_distance: Optional[int] = None
        best: list[str] = []
        for candidate in known:
            dist = int(Levenshtein.distance(lowered, candidate.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [candidate]
            elif dist == best_distance:
                best.append(candidate)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            return best[0]
        return name

    @staticmethod
    def _validate_amount(amount_cents: int) -> None:
        if amount_cents < MIN_BUDGET_AMOUNT_CENTS:
            raise BudgetValidationError(
                f"The minimum budget amount is {MIN_BUDGET_AMOUNT_CENTS // 100}"
            )

    @staticmethod
    def _validate_dates(period, start_date, end_date) -> None:
        if end_date is not None and end_date < start_date:
            raise BudgetValidationError("End date must be on or after start date")
        if period == BudgetPeriod.custom and end_date is None:
            raise BudgetValidationError("Custom budgets need an end date")

    def create(self, data: BudgetIn) -> Budget:
        user_id = self._owner_id()
        self._validate_amount(data.amount_cents)
        self._validate_dates(data.period, data.start_date, data.end_date)

        if self._active_count(user_id) >= MAX_ACTIVE_BUDGETS:
            raise BudgetLimitReached(
                f"You have reached the limit of {MAX_ACTIVE_BUDGETS} active budgets. "
                "Deactivate or delete some to create new ones."
            )

        category = self.resolve_category(user_id, data.category)
        if self._has_active_duplicate(user_id, category, data.period, data.start_date):
            raise DuplicateBudget("A budget already exists for this category and period")

        budget = Budget(
            user_id=user_id,
            category=category,
            amount_cents=data.amount_cents,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
            is_active=True,
            auto_adjust=data.auto_adjust,
            adjustment_percentage=data.adjustment_percentage,
            created_by=BudgetOrigin.ai if data.ai_suggested else BudgetOrigin.user,
            ai_confidence=data.ai_confidence,
            ai_reasoning=data.ai_reasoning,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(
        self, budget_id: int, data: BudgetUpdateIn, *, now: Optional[datetime] = None
    ) -> Budget:
        budget = self.store.get_budget(budget_id)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("amount_cents") is not None:
            self._validate_amount(changes["amount_cents"])
        start_date = changes.get("start_date") or budget.start_date
        end_date = changes["end_date"] if "end_date" in changes else budget.end_date
        period = changes.get("period") or budget.period
        self._validate_dates(period, start_date, end_date)

        if changes.get("is_active") and not budget.is_active:
            if self._active_count(budget.user_id) >= MAX_ACTIVE_BUDGETS:
                raise BudgetLimitReached(
                    f"You have reached the limit of {MAX_ACTIVE_BUDGETS} active budgets."
                )

        category = budget.category
        if changes.get("category"):
            category = self.resolve_category(budget.user_id, changes["category"])
        will_be_active = changes.get("is_active", budget.is_active)
        if will_be_active and self._has_active_duplicate(
            budget.user_id, category, period, start_date, exclude_id=budget.id
        ):
            raise DuplicateBudget("A budget already exists for this category and period")

        old_amount = budget.amount_cents
        for key, value in changes.items():
            if value is None and key not in ("end_date",):
                continue
            setattr(budget, key, value)
        budget.category = category

        if budget.amount_cents != old_amount:
            HistoryStore(self.session).append_history(
                budget,
                change_type=ChangeType.manual,
                old_amount_cents=old_amount,
                new_amount_cents=budget.amount_cents,
                changed_by=BudgetOrigin.user,
                reason="Manual update",
                created_at=now or local_now(),
            )
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.store.get_budget(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def history(self, budget_id: int) -> list[BudgetHistory]:
        budget = self.store.get_budget(budget_id)
        return HistoryStore(self.session).list_for_budget(budget.id)

    def status(self, budget: Budget, now: Optional[datetime] = None) -> BudgetStatusView:
        now = now or local_now()
        spent = SpendingAggregator(self.session).current_spend(budget, now)
        result = classify(spent, budget.amount_cents)
        remaining_days = None
        cycle = current_cycle(budget, now)
        if cycle is not None:
            remaining_days = days_remaining(cycle.end, now)
        return BudgetStatusView(
            budget=budget,
            spent_cents=spent,
            remaining_cents=result.remaining_cents,
            percentage=result.percentage,
            status=result.status.value,
            days_remaining=remaining_days,
            alert_type=result.alert_type.value if result.alert_type else None,
            threshold=result.threshold,
        )

    def current(self, now: Optional[datetime] = None) -> list[BudgetStatusView]:
        now = now or local_now()
        return [self.status(budget, now) for budget in self.list(active=True)]


class AlertService:
    def __init__(self, session: Session, principal: Optional[Principal] = None) -> None:
        self.session = session
        self.principal = principal or current_principal()

    def list(
        self,
        *,
        acknowledged: Optional[bool] = None,
        alert_type: Optional[AlertType] = None,
        limit: int = ALERT_LIST_LIMIT,
    ) -> list[BudgetAlert]:
        stmt = self.principal.scope(select(BudgetAlert), BudgetAlert.user_id)
        if acknowledged is True:
            stmt = stmt.where(BudgetAlert.acknowledged_at.is_not(None))
        elif acknowledged is False:
            stmt = stmt.where(BudgetAlert.acknowledged_at.is_(None))
        if alert_type is not None:
            stmt = stmt.where(BudgetAlert.alert_type == alert_type)
        stmt = stmt.order_by(BudgetAlert.triggered_at.desc(), BudgetAlert.id.desc())
        return list(self.session.scalars(stmt.limit(limit)).all())

    def get(self, alert_id: int) -> BudgetAlert:
        alert = self.session.get(BudgetAlert, alert_id)
        if not alert or not self.principal.owns(alert.user_id):
            raise AlertNotFound("Alert not found")
        return alert

    def acknowledge(self, alert_id: int, now: Optional[datetime] = None) -> BudgetAlert:
        alert = self.get(alert_id)
        alert.acknowledged_at = now or local_now()
        self.session.commit()
        self.session.refresh(alert)
        return alert

    def dismiss(self, alert_id: int, now: Optional[datetime] = None) -> BudgetAlert:
        alert = self.get(alert_id)
        alert.dismissed_at = now or local_now()
        self.session.commit()
        self.session.refresh(alert)
        return alert

    def delete(self, alert_id: int) -> None:
        alert = self.get(alert_id)
        self.session.delete(alert)
        self.session.commit()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def budget_to_dict(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category,
        "amount_cents": budget.amount_cents,
        "period": budget.period.value,
        "start_date": _iso(budget.start_date),
        "end_date": _iso(budget.end_date),
        "is_active": budget.is_active,
        "auto_adjust": budget.auto_adjust,
        "adjustment_percentage": budget.adjustment_percentage,
        "created_by": budget.created_by.value,
        "ai_confidence": budget.ai_confidence,
        "ai_reasoning": budget.ai_reasoning,
    }


def alert_to_dict(alert: BudgetAlert) -> dict[str, object]:
    return {
        "id": alert.id,
        "budget_id": alert.budget_id,
        "alert_type": alert.alert_type.value,
        "threshold_percentage": alert.threshold_percentage,
        "current_spent_cents": alert.current_spent_cents,
        "budget_amount_cents": alert.budget_amount_cents,
        "is_predicted": alert.is_predicted,
        "predicted_overspend_cents": alert.predicted_overspend_cents,
        "predicted_overspend_date": _iso(alert.predicted_overspend_date),
        "recommendation": alert.recommendation,
        "notification_sent": alert.notification_sent,
        "notification_channels": list(alert.notification_channels or []),
        "triggered_at": _iso(alert.triggered_at),
        "acknowledged_at": _iso(alert.acknowledged_at),
        "dismissed_at": _iso(alert.dismissed_at),
    }


def history_to_dict(entry: BudgetHistory) -> dict[str, object]:
    return {
        "id": entry.id,
        "budget_id": entry.budget_id,
        "change_type": entry.change_type.value,
        "old_amount_cents": entry.old_amount_cents,
        "new_amount_cents": entry.new_amount_cents,
        "changed_by": entry.changed_by.value,
        "reason": entry.reason,
        "created_at": _iso(entry.created_at),
    }


__all__ = [
    "AlertNotFound",
    "AlertService",
    "BudgetLimitReached",
    "BudgetNotFound",
    "BudgetService",
    "BudgetValidationError",
    "DuplicateBudget",
    "TransactionService",
]
