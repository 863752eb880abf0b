from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classifier import Classification
from models import AlertType, Budget, BudgetAlert
from periods import day_start
from prediction import OverspendPrediction


logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = ("push", "email")


def format_amount(cents: int) -> str:
    return f"{cents / 100:,.2f}"


class AlertStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists_alert_since(self, budget_id: int, since: datetime) -> bool:
        stmt = (
            select(BudgetAlert.id)
            .where(BudgetAlert.budget_id == budget_id, BudgetAlert.triggered_at >= since)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def insert_alert(self, alert: BudgetAlert) -> Optional[BudgetAlert]:
        """Insert unless the budget already has an alert for ``alert.alert_date``.

        The unique (budget_id, alert_date) constraint makes this a single
        conditional insert; a losing concurrent writer gets ``None``.
        """
        try:
            with self.session.begin_nested():
                self.session.add(alert)
                self.session.flush()
        except IntegrityError:
            logger.info(
                f"alert_duplicate: budget_id={alert.budget_id} date={alert.alert_date}"
            )
            return None
        return alert


class AlertDeduplicator:
    """At most one alert per budget per local calendar day."""

    def __init__(self, session: Session) -> None:
        self.store = AlertStore(session)

    def already_alerted(self, budget_id: int, now: datetime) -> bool:
        return self.store.exists_alert_since(budget_id, day_start(now))


def threshold_recommendation(budget: Budget, result: Classification) -> str:
    if result.alert_type == AlertType.exceeded:
        over = result.spent_cents - result.amount_cents
        return (
            f"You have exceeded your {budget.category} budget by {format_amount(over)}. "
            "Cut back in this category or adjust the budget for the next period."
        )
    if result.threshold == 90:
        return (
            f"You are close to your {budget.category} budget limit. Only "
            f"{format_amount(result.remaining_cents)} left. "
            "Consider cutting non-essential spending."
        )
    return (
        f"You have spent {result.percentage:.0f}% of your {budget.category} budget. "
        "Keep an eye on spending to stay within the limit."
    )


class AlertRecorder:
    def __init__(
        self, session: Session, channels: Sequence[str] = DEFAULT_CHANNELS
    ) -> None:
        self.session = session
        self.store = AlertStore(session)
        self.channels = list(channels)

    def _base(self, budget: Budget, result: Classification, now: datetime) -> BudgetAlert:
        return BudgetAlert(
            budget_id=budget.id,
            user_id=budget.user_id,
            current_spent_cents=result.spent_cents,
            budget_amount_cents=result.amount_cents,
            notification_sent=False,
            notification_channels=list(self.channels),
            triggered_at=now,
            alert_date=now.date(),
        )

    def record_threshold(
        self, budget: Budget, result: Classification, now: datetime
    ) -> Optional[BudgetAlert]:
        if result.alert_type is None or result.threshold is None:
            raise ValueError("Classification did not cross an alert threshold")
        alert = self._base(budget, result, now)
        alert.alert_type = result.alert_type
        alert.threshold_percentage = float(result.threshold)
        alert.is_predicted = False
        alert.recommendation = threshold_recommendation(budget, result)
        return self.store.insert_alert(alert)

    def record_prediction(
        self,
        budget: Budget,
        result: Classification,
        prediction: OverspendPrediction,
        now: datetime,
    ) -> Optional[BudgetAlert]:
        alert = self._base(budget, result, now)
        alert.alert_type = AlertType.predicted_overspend
        alert.threshold_percentage = round(result.percentage, 2)
        alert.is_predicted = True
        alert.predicted_overspend_cents = prediction.predicted_overspend_cents
        if prediction.days_until_exceed is not None:
            alert.predicted_overspend_date = (
                now + timedelta(days=prediction.days_until_exceed)
            ).date()
        alert.recommendation = prediction.recommendation
        return self.store.insert_alert(alert)


def notification_payload(alert: BudgetAlert, budget: Budget) -> dict[str, object]:
    return {
        "alert_id": alert.id,
        "budget_id": budget.id,
        "category": budget.category,
        "alert_type": alert.alert_type.value,
        "threshold_percentage": alert.threshold_percentage,
        "current_spent_cents": alert.current_spent_cents,
        "budget_amount_cents": alert.budget_amount_cents,
        "is_predicted": alert.is_predicted,
        "predicted_overspend_cents": alert.predicted_overspend_cents,
        "predicted_overspend_date": (
            alert.predicted_overspend_date.isoformat()
            if alert.predicted_overspend_date
            else None
        ),
        "recommendation": alert.recommendation,
    }
