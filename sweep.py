from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from alerts import AlertDeduplicator, AlertRecorder, notification_payload
from classifier import Classification, classify
from config import get_settings
from database import SessionFactory, session_scope
from ledger import LedgerReader, SpendingAggregator
from models import Budget
from notifications import NotificationQueue, build_dispatcher
from periods import current_cycle, days_remaining, local_now
from prediction import LOOKBACK_DAYS, OverspendPrediction, Predictor, VelocityPredictor
from principal import Principal
from stores import BudgetStore


logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    budgets_checked: int = 0
    alerts_created: int = 0
    skipped_duplicates: int = 0
    no_alert: int = 0
    failed: int = 0
    deferred: int = 0
    alerts: list[dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "budgets_checked": self.budgets_checked,
            "alerts_created": self.alerts_created,
            "skipped_duplicates": self.skipped_duplicates,
            "no_alert": self.no_alert,
            "failed": self.failed,
            "deferred": self.deferred,
            "alerts": self.alerts,
        }


class BudgetSweep:
    """Checks every active budget once: aggregate, classify, predict,
    deduplicate, record, notify.

    Each budget is evaluated in its own transaction so one failure never
    touches another budget's state.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        *,
        queue: Optional[NotificationQueue] = None,
        predictor: Optional[Predictor] = None,
        channels: Optional[Sequence[str]] = None,
        deadline_secs: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.queue = queue or NotificationQueue(build_dispatcher(settings), session_factory)
        self.predictor = predictor or VelocityPredictor()
        self.channels = list(channels if channels is not None else settings.notify_channels)
        self.deadline_secs = (
            settings.sweep_deadline_secs if deadline_secs is None else deadline_secs
        )
        self.clock = clock

    def run(
        self,
        principal: Principal,
        *,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
        source: str = "manual",
    ) -> SweepReport:
        now = now or local_now()
        report = SweepReport()
        with session_scope(self.session_factory) as session:
            budget_ids = [
                budget.id
                for budget in BudgetStore(session, principal).list_active_budgets(user_id)
            ]

        started = self.clock()
        for index, budget_id in enumerate(budget_ids):
            if self.deadline_secs and self.clock() - started > self.deadline_secs:
                report.deferred = len(budget_ids) - index
                logger.warning(
                    f"sweep_deadline: source={source} deferred={report.deferred}"
                )
                break
            report.budgets_checked += 1
            try:
                outcome, payload = self._check_budget(budget_id, principal, now)
            except Exception:
                report.failed += 1
                logger.exception(f"sweep_budget_failed: budget_id={budget_id}")
                continue

            if outcome == "created" and payload is not None:
                report.alerts_created += 1
                report.alerts.append(payload)
            elif outcome == "duplicate":
                report.skipped_duplicates += 1
            else:
                report.no_alert += 1

        logger.info(
            f"sweep_run: source={source} budgets_checked={report.budgets_checked} "
            f"alerts_created={report.alerts_created} "
            f"skipped_duplicates={report.skipped_duplicates} failed={report.failed} "
            f"deferred={report.deferred}"
        )
        return report

    def _check_budget(
        self, budget_id: int, principal: Principal, now: datetime
    ) -> tuple[str, Optional[dict[str, object]]]:
        with session_scope(self.session_factory) as session:
            budget = BudgetStore(session, principal).get_budget(budget_id)
            if not budget.is_active:
                return "inactive", None

            spent = SpendingAggregator(session).current_spend(budget, now)
            result = classify(spent, budget.amount_cents)

            prediction: Optional[OverspendPrediction] = None
            if not result.should_alert:
                prediction = self._predict(session, budget, result, now)
                if prediction is None:
                    return "no_alert", None

            if AlertDeduplicator(session).already_alerted(budget.id, now):
                logger.info(f"sweep_skip_duplicate: budget_id={budget.id}")
                return "duplicate", None

            recorder = AlertRecorder(session, self.channels)
            if prediction is not None:
                alert = recorder.record_prediction(budget, result, prediction, now)
            else:
                alert = recorder.record_threshold(budget, result, now)
            if alert is None:
                return "duplicate", None

            payload = notification_payload(alert, budget)
            alert_id = alert.id
            owner_id = budget.user_id
            logger.info(
                f"alert_created: budget_id={budget.id} type={alert.alert_type.value} "
                f"threshold={alert.threshold_percentage} pct={result.percentage:.1f}"
            )

        try:
            self.queue.submit(alert_id, owner_id, self.channels, payload)
        except Exception:
            logger.exception(f"notification_enqueue_failed: alert_id={alert_id}")
        return "created", payload

    def _predict(
        self,
        session: Session,
        budget: Budget,
        result: Classification,
        now: datetime,
    ) -> Optional[OverspendPrediction]:
        if not result.in_prediction_band:
            return None
        cycle = current_cycle(budget, now)
        if cycle is None:
            return None
        remaining = days_remaining(cycle.end, now)
        if remaining <= 0:
            return None

        recent = LedgerReader(session).list_transactions(
            budget.user_id, budget.category, now - timedelta(days=LOOKBACK_DAYS), now
        )
        try:
            prediction = self.predictor.predict(
                budget, result.spent_cents, remaining, recent, now
            )
        except Exception:
            logger.exception(f"prediction_failed: budget_id={budget.id}")
            return None
        if not prediction.should_alert():
            logger.debug(
                f"prediction_discarded: budget_id={budget.id} "
                f"likely={prediction.likely_to_exceed} "
                f"confidence={prediction.confidence_level}"
            )
            return None
        return prediction


def sweep_all(
    session_factory: Optional[SessionFactory] = None,
    *,
    now: Optional[datetime] = None,
    source: str = "scheduled",
    **options,
) -> SweepReport:
    return BudgetSweep(session_factory, **options).run(
        Principal.system(), now=now, source=source
    )


def check_user(
    user_id: int,
    session_factory: Optional[SessionFactory] = None,
    *,
    now: Optional[datetime] = None,
    **options,
) -> SweepReport:
    return BudgetSweep(session_factory, **options).run(
        Principal.user(user_id), user_id=user_id, now=now, source="manual"
    )
