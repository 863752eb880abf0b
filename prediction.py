from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

from models import Budget, Transaction


LOOKBACK_DAYS = 7
FULL_COVERAGE_DAYS = 5
CONFIDENCE_GATE = 0.7


@dataclass(frozen=True)
class OverspendPrediction:
    budget_id: int
    likely_to_exceed: bool
    confidence_level: float
    predicted_amount_cents: int
    days_until_exceed: Optional[int]
    recommendation: str
    budget_amount_cents: int

    @property
    def predicted_overspend_cents(self) -> int:
        return max(0, self.predicted_amount_cents - self.budget_amount_cents)

    def should_alert(self) -> bool:
        return self.likely_to_exceed and self.confidence_level > CONFIDENCE_GATE


class Predictor(Protocol):
    def predict(
        self,
        budget: Budget,
        spent_cents: int,
        days_remaining: int,
        recent: Sequence[Transaction],
        now: datetime,
    ) -> OverspendPrediction: ...


class VelocityPredictor:
    """Extrapolates the trailing week's daily spend to the end of the period.

    Confidence grows with how many distinct days in the lookback carried
    spending and with how far the projection lands from the budget line.
    """

    def __init__(self, lookback_days: int = LOOKBACK_DAYS) -> None:
        self.lookback_days = lookback_days

    def predict(
        self,
        budget: Budget,
        spent_cents: int,
        days_remaining: int,
        recent: Sequence[Transaction],
        now: datetime,
    ) -> OverspendPrediction:
        amount = budget.amount_cents
        recent_total = sum(txn.amount_cents for txn in recent)
        if not recent or recent_total <= 0:
            return OverspendPrediction(
                budget_id=budget.id,
                likely_to_exceed=spent_cents > amount,
                confidence_level=0.0,
                predicted_amount_cents=spent_cents,
                days_until_exceed=None,
                recommendation="Not enough recent activity to forecast this budget.",
                budget_amount_cents=amount,
            )

        velocity = recent_total / self.lookback_days
        predicted = spent_cents + velocity * max(days_remaining, 0)
        likely = predicted > amount

        active_days = len({txn.occurred_at.date() for txn in recent})
        coverage = min(1.0, active_days / FULL_COVERAGE_DAYS)
        margin = min(1.0, abs(predicted - amount) / (0.2 * amount)) if amount > 0 else 0.0
        confidence = round(0.4 + 0.4 * coverage + 0.2 * margin, 2)

        days_until = None
        if likely:
            days_until = max(0, math.ceil((amount - spent_cents) / velocity))

        return OverspendPrediction(
            budget_id=budget.id,
            likely_to_exceed=likely,
            confidence_level=confidence,
            predicted_amount_cents=int(round(predicted)),
            days_until_exceed=days_until,
            recommendation=_recommendation(likely, velocity, amount, spent_cents, days_remaining),
            budget_amount_cents=amount,
        )


def _recommendation(
    likely: bool, velocity: float, amount: int, spent: int, days_remaining: int
) -> str:
    if not likely:
        return "You are on track. Keep your current pace to stay within this budget."
    if days_remaining <= 0:
        return "Reduce daily spending to stay within this budget."
    safe_daily = max(0, amount - spent) / days_remaining
    return (
        f"At {velocity / 100:,.2f} per day this budget runs out early. "
        f"Keep daily spending under {safe_daily / 100:,.2f} to stay within it."
    )
