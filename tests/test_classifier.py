from classifier import BudgetStatus, classify, spend_percentage
from models import AlertType


def test_under_seventy_percent_is_on_track_without_alert() -> None:
    for spent in (0, 10_000, 69_999):
        result = classify(spent, 100_000)
        assert result.status == BudgetStatus.on_track
        assert result.alert_type is None
        assert result.threshold is None
        assert not result.should_alert


def test_seventy_five_percent_is_approaching_at_seventy() -> None:
    result = classify(75_000, 100_000)
    assert result.status == BudgetStatus.warning
    assert result.alert_type == AlertType.approaching
    assert result.threshold == 70
    assert result.remaining_cents == 25_000


def test_ninety_percent_tier_reports_ninety() -> None:
    result = classify(95_000, 100_000)
    assert result.status == BudgetStatus.critical
    assert result.alert_type == AlertType.approaching
    assert result.threshold == 90


def test_over_budget_is_exceeded_only() -> None:
    result = classify(105_000, 100_000)
    assert result.status == BudgetStatus.exceeded
    assert result.alert_type == AlertType.exceeded
    assert result.threshold == 100
    assert result.remaining_cents == -5_000


def test_exact_boundaries_pick_the_highest_tier() -> None:
    assert classify(70_000, 100_000).threshold == 70
    assert classify(90_000, 100_000).threshold == 90
    assert classify(100_000, 100_000).threshold == 100


def test_prediction_band_sits_between_fifty_and_seventy() -> None:
    assert not classify(50_000, 100_000).in_prediction_band
    assert classify(60_000, 100_000).in_prediction_band
    assert not classify(80_000, 100_000).in_prediction_band


def test_spend_percentage_of_zero_amount_is_zero() -> None:
    assert spend_percentage(5_000, 0) == 0.0
