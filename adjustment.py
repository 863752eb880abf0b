from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from alerts import format_amount
from database import SessionFactory, session_scope
from ledger import LedgerReader
from models import Budget, BudgetOrigin, ChangeType
from periods import current_cycle, local_now, period_days, trailing_windows
from principal import Principal
from stores import BudgetStore, HistoryStore


logger = logging.getLogger(__name__)

NUM_PERIODS = 3
MIN_TRANSACTIONS = 10
APPROVAL_THRESHOLD_PCT = Decimal("10")
DEFAULT_BOUND_PCT = 20
ROUNDING_UNIT_CENTS = Decimal("10000")
DEFAULT_REASON = "seasonal_change"
SCHEDULED_REASON = "scheduled_review"

REASON_FACTORS = {
    "seasonal_change": Decimal("1.05"),
    "income_change": Decimal("1.10"),
    "lifestyle_change": Decimal("1.15"),
}


class AutoAdjustDisabled(ValueError):
    pass


class InsufficientHistory(ValueError):
    def __init__(self, message: str, *, transaction_count: int, periods_with_data: int):
        super().__init__(message)
        self.transaction_count = transaction_count
        self.periods_with_data = periods_with_data


class AlreadyAdjusted(ValueError):
    pass


@dataclass(frozen=True)
class AdjustmentDecision:
    budget_id: int
    reason: str
    current_amount_cents: int
    suggested_amount_cents: int
    adjustment_percentage: float
    average_spending_cents: int
    requires_approval: bool
    applied: bool
    message: str

    def as_dict(self) -> dict[str, object]:
        return {
            "budget_id": self.budget_id,
            "reason": self.reason,
            "current_amount_cents": self.current_amount_cents,
            "suggested_amount_cents": self.suggested_amount_cents,
            "adjustment_percentage": self.adjustment_percentage,
            "average_spending_cents": self.average_spending_cents,
            "requires_approval": self.requires_approval,
            "applied": self.applied,
            "message": self.message,
        }


def reason_factor(reason: str) -> Decimal:
    return REASON_FACTORS.get(reason, Decimal("1.00"))


def bounded_amount(
    average_cents: Decimal, current_cents: int, bound_pct: int, reason: str
) -> int:
    """Apply the reason factor, clamp to +/- bound of the current amount and
    round to the nearest 100 currency units."""
    suggested = average_cents * reason_factor(reason)
    current = Decimal(current_cents)
    bound = Decimal(bound_pct or DEFAULT_BOUND_PCT) / Decimal("100")
    upper = current * (1 + bound)
    lower = current * (1 - bound)
    clamped = min(max(suggested, lower), upper)
    units = (clamped / ROUNDING_UNIT_CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(max(units, Decimal("1")) * ROUNDING_UNIT_CENTS)


def percentage_change(old_cents: int, new_cents: int) -> Decimal:
    if old_cents <= 0:
        return Decimal("0")
    return (Decimal(new_cents - old_cents) / Decimal(old_cents)) * 100


class AutoAdjustmentEngine:
    def __init__(self, session: Session, principal: Principal) -> None:
        self.session = session
        self.principal = principal
        self.budgets = BudgetStore(session, principal)
        self.history = HistoryStore(session)
        self.ledger = LedgerReader(session)

    def historical_average(self, budget: Budget, now: datetime) -> Decimal:
        length = period_days(budget.period)
        windows = trailing_windows(now, length, NUM_PERIODS)
        transactions = self.ledger.list_transactions(
            budget.user_id, budget.category, windows[-1].start, now
        )
        sums = [0] * NUM_PERIODS
        counts = [0] * NUM_PERIODS
        for txn in transactions:
            for index, window in enumerate(windows):
                if window.start <= txn.occurred_at < window.end:
                    sums[index] += txn.amount_cents
                    counts[index] += 1
                    break

        total = sum(counts)
        periods_with_data = sum(1 for count in counts if count > 0)
        if total < MIN_TRANSACTIONS or periods_with_data < NUM_PERIODS:
            raise InsufficientHistory(
                f"At least {NUM_PERIODS} full periods and {MIN_TRANSACTIONS} "
                f"transactions of history are needed to auto-adjust "
                f"(found {total} transactions across {periods_with_data} periods)",
                transaction_count=total,
                periods_with_data=periods_with_data,
            )
        return Decimal(sum(sums)) / NUM_PERIODS

    def adjust(
        self,
        budget_id: int,
        reason: str = DEFAULT_REASON,
        *,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> AdjustmentDecision:
        now = now or local_now()
        reason = (reason or DEFAULT_REASON).strip()
        budget = self.budgets.get_budget(budget_id, lock=True)

        if not budget.auto_adjust and not force:
            raise AutoAdjustDisabled(
                "Auto-adjust is not enabled for this budget. Enable it or force the adjustment."
            )

        average = self.historical_average(budget, now)
        current = budget.amount_cents
        new_amount = bounded_amount(
            average, current, budget.adjustment_percentage, reason
        )
        change = percentage_change(current, new_amount)
        change_pct = float(change.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
        average_cents = int(average.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        if abs(change) > APPROVAL_THRESHOLD_PCT and not force:
            return AdjustmentDecision(
                budget_id=budget.id,
                reason=reason,
                current_amount_cents=current,
                suggested_amount_cents=new_amount,
                adjustment_percentage=change_pct,
                average_spending_cents=average_cents,
                requires_approval=True,
                applied=False,
                message=(
                    f"This adjustment changes the budget by more than "
                    f"{APPROVAL_THRESHOLD_PCT}% and needs your approval."
                ),
            )

        cycle = current_cycle(budget, now)
        # Before the first cycle starts, all of the lead-up counts as one period.
        since = cycle.start if cycle and cycle.start <= now else datetime.min
        if self.history.exists_history_since(
            budget.id, ChangeType.auto_adjusted, since
        ):
            raise AlreadyAdjusted(
                "This budget was already auto-adjusted in the current period. "
                "Only one adjustment per period is allowed."
            )

        self.budgets.update_amount(budget, new_amount)
        self.history.append_history(
            budget,
            change_type=ChangeType.auto_adjusted,
            old_amount_cents=current,
            new_amount_cents=new_amount,
            changed_by=BudgetOrigin.ai,
            reason=(
                f"Auto-adjusted for {reason}. "
                f"Historical average: {format_amount(average_cents)}"
            ),
            created_at=now,
        )
        self.session.commit()
        logger.info(
            f"auto_adjust_applied: budget_id={budget.id} old={current} "
            f"new={new_amount} change_pct={change_pct} reason={reason}"
        )
        return AdjustmentDecision(
            budget_id=budget.id,
            reason=reason,
            current_amount_cents=current,
            suggested_amount_cents=new_amount,
            adjustment_percentage=change_pct,
            average_spending_cents=average_cents,
            requires_approval=False,
            applied=True,
            message="Budget adjusted.",
        )


def run_scheduled_adjustments(
    session_factory: Optional[SessionFactory] = None, now: Optional[datetime] = None
) -> dict[str, int]:
    """Review every auto-adjust budget with the system principal; never forced."""
    now = now or local_now()
    principal = Principal.system()
    with session_scope(session_factory) as session:
        budget_ids = [
            budget.id
            for budget in BudgetStore(session, principal).list_active_budgets()
            if budget.auto_adjust
        ]

    summary = {"reviewed": 0, "applied": 0, "pending_approval": 0, "skipped": 0, "failed": 0}
    for budget_id in budget_ids:
        summary["reviewed"] += 1
        try:
            with session_scope(session_factory) as session:
                decision = AutoAdjustmentEngine(session, principal).adjust(
                    budget_id, SCHEDULED_REASON, now=now
                )
        except ValueError as exc:
            summary["skipped"] += 1
            logger.info(f"auto_adjust_skipped: budget_id={budget_id} reason={exc}")
            continue
        except Exception:
            summary["failed"] += 1
            logger.exception(f"auto_adjust_failed: budget_id={budget_id}")
            continue
        if decision.applied:
            summary["applied"] += 1
        else:
            summary["pending_approval"] += 1
    logger.info(
        "auto_adjust_run: "
        + " ".join(f"{key}={value}" for key, value in summary.items())
    )
    return summary
