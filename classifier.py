from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import AlertType


class BudgetStatus(str, Enum):
    on_track = "on_track"
    warning = "warning"
    critical = "critical"
    exceeded = "exceeded"


# Highest first; the first crossed threshold wins.
ALERT_THRESHOLDS: tuple[tuple[int, AlertType], ...] = (
    (100, AlertType.exceeded),
    (90, AlertType.approaching),
    (70, AlertType.approaching),
)

STATUS_THRESHOLDS: tuple[tuple[int, BudgetStatus], ...] = (
    (100, BudgetStatus.exceeded),
    (90, BudgetStatus.critical),
    (70, BudgetStatus.warning),
)

PREDICTION_FLOOR = 50


@dataclass(frozen=True)
class Classification:
    spent_cents: int
    amount_cents: int
    percentage: float
    status: BudgetStatus
    alert_type: Optional[AlertType]
    threshold: Optional[int]

    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.spent_cents

    @property
    def should_alert(self) -> bool:
        return self.alert_type is not None

    @property
    def in_prediction_band(self) -> bool:
        return self.alert_type is None and self.percentage > PREDICTION_FLOOR


def spend_percentage(spent_cents: int, amount_cents: int) -> float:
    if amount_cents <= 0:
        return 0.0
    return spent_cents / amount_cents * 100


def classify(spent_cents: int, amount_cents: int) -> Classification:
    percentage = spend_percentage(spent_cents, amount_cents)

    alert_type: Optional[AlertType] = None
    threshold: Optional[int] = None
    for limit, candidate in ALERT_THRESHOLDS:
        if percentage >= limit:
            alert_type = candidate
            threshold = limit
            break

    status = BudgetStatus.on_track
    for limit, candidate in STATUS_THRESHOLDS:
        if percentage >= limit:
            status = candidate
            break

    return Classification(
        spent_cents=spent_cents,
        amount_cents=amount_cents,
        percentage=percentage,
        status=status,
        alert_type=alert_type,
        threshold=threshold,
    )
