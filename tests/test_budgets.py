from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from alerts import AlertRecorder
from classifier import classify
from database import Base
from models import (
    AlertType,
    BudgetAlert,
    BudgetHistory,
    BudgetOrigin,
    BudgetPeriod,
    ChangeType,
    TransactionType,
)
from principal import Principal
from schemas import BudgetIn, BudgetUpdateIn, TransactionIn
from services import (
    AlertNotFound,
    AlertService,
    BudgetLimitReached,
    BudgetNotFound,
    BudgetService,
    BudgetValidationError,
    DuplicateBudget,
    TransactionService,
)


NOW = datetime(2025, 6, 20, 12, 0)
OWNER = Principal.user(1)


def _budget_in(category: str = "Groceries", **overrides) -> BudgetIn:
    values = {
        "category": category,
        "amount_cents": 50_000,
        "period": BudgetPeriod.monthly,
        "start_date": date(2025, 6, 1),
    }
    values.update(overrides)
    return BudgetIn(**values)


def _expense(session: Session, category: str, amount_cents: int, moment: datetime) -> None:
    TransactionService(session, user_id=1).create(
        TransactionIn(
            date=moment.date(),
            occurred_at=moment,
            type=TransactionType.expense,
            amount_cents=amount_cents,
            category=category,
        )
    )


def test_create_and_read_back_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        budget = service.create(_budget_in(auto_adjust=True))

        assert budget.id is not None
        assert budget.user_id == 1
        assert budget.is_active is True
        assert budget.adjustment_percentage == 20
        assert budget.created_by == BudgetOrigin.user
        assert service.get(budget.id).category == "Groceries"


def test_ai_suggested_budget_keeps_its_reasoning() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, OWNER).create(
            _budget_in(ai_suggested=True, ai_confidence=0.8, ai_reasoning="Based on spring")
        )
        assert budget.created_by == BudgetOrigin.ai
        assert budget.ai_confidence == 0.8
        assert budget.ai_reasoning == "Based on spring"


def test_amount_below_minimum_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(BudgetValidationError, match="minimum budget amount is 100"):
            BudgetService(session, OWNER).create(_budget_in(amount_cents=9_999))


def test_end_before_start_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(BudgetValidationError):
            BudgetService(session, OWNER).create(
                _budget_in(
                    period=BudgetPeriod.custom,
                    start_date=date(2025, 6, 10),
                    end_date=date(2025, 6, 1),
                )
            )


def test_duplicate_active_budget_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        service.create(_budget_in())
        with pytest.raises(DuplicateBudget):
            service.create(_budget_in())

        # Another period for the same category is fine.
        weekly = service.create(_budget_in(period=BudgetPeriod.weekly))
        assert weekly.period == BudgetPeriod.weekly


def test_active_budget_limit() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        for index in range(20):
            service.create(_budget_in(f"Category {index:02d}"))
        with pytest.raises(BudgetLimitReached):
            service.create(_budget_in("One too many"))

        first = service.list(active=True)[0]
        service.update(first.id, BudgetUpdateIn(is_active=False))
        assert service.create(_budget_in("Now it fits")).is_active


def test_category_snaps_to_known_ledger_spelling() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _expense(session, "Groceries", 1_000, NOW)
        _expense(session, "Gifts", 1_000, NOW)
        service = BudgetService(session, OWNER)

        assert service.resolve_category(1, "groceries") == "Groceries"
        assert service.resolve_category(1, "Grocries") == "Groceries"
        assert service.resolve_category(1, "Pets") == "Pets"
        assert service.create(_budget_in("  grocries ")).category == "Groceries"


def test_manual_amount_change_writes_history() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        budget = service.create(_budget_in())

        service.update(budget.id, BudgetUpdateIn(auto_adjust=True), now=NOW)
        assert service.history(budget.id) == []

        updated = service.update(budget.id, BudgetUpdateIn(amount_cents=60_000), now=NOW)
        assert updated.amount_cents == 60_000
        (entry,) = service.history(budget.id)
        assert entry.change_type == ChangeType.manual
        assert entry.changed_by == BudgetOrigin.user
        assert entry.old_amount_cents == 50_000
        assert entry.new_amount_cents == 60_000

        with pytest.raises(BudgetValidationError):
            service.update(budget.id, BudgetUpdateIn(amount_cents=5_000))


def test_delete_removes_alerts_and_history() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        budget = service.create(_budget_in())
        service.update(budget.id, BudgetUpdateIn(amount_cents=70_000), now=NOW)
        AlertRecorder(session).record_threshold(budget, classify(60_000, 70_000), NOW)
        session.commit()

        service.delete(budget.id)

        assert session.execute(select(func.count(BudgetAlert.id))).scalar_one() == 0
        assert session.execute(select(func.count(BudgetHistory.id))).scalar_one() == 0
        with pytest.raises(BudgetNotFound):
            service.get(budget.id)


def test_budgets_are_private_to_their_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, OWNER).create(_budget_in())
        stranger = BudgetService(session, Principal.user(2))

        assert stranger.list() == []
        with pytest.raises(BudgetNotFound):
            stranger.get(budget.id)
        with pytest.raises(BudgetNotFound):
            stranger.delete(budget.id)


def test_status_reports_spend_and_days_left() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _expense(session, "Groceries", 40_000, datetime(2025, 6, 5, 18, 0))
        service = BudgetService(session, OWNER)
        budget = service.create(_budget_in())

        (view,) = service.current(now=NOW)
        assert view.budget.id == budget.id
        assert view.spent_cents == 40_000
        assert view.remaining_cents == 10_000
        assert view.status == "warning"
        assert view.alert_type == "approaching"
        assert view.threshold == 70
        assert view.days_remaining == 11


def test_alerts_can_be_acknowledged_dismissed_and_filtered() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        dining = service.create(_budget_in("Dining"))
        travel = service.create(_budget_in("Travel"))
        recorder = AlertRecorder(session)
        first = recorder.record_threshold(dining, classify(40_000, 50_000), NOW)
        second = recorder.record_threshold(travel, classify(60_000, 50_000), NOW)
        session.commit()

        alerts = AlertService(session, OWNER)
        assert len(alerts.list()) == 2

        acked = alerts.acknowledge(first.id, now=NOW)
        assert acked.acknowledged_at == NOW
        assert [a.id for a in alerts.list(acknowledged=True)] == [first.id]
        assert [a.id for a in alerts.list(acknowledged=False)] == [second.id]
        assert [a.id for a in alerts.list(alert_type=AlertType.exceeded)] == [second.id]

        dismissed = alerts.dismiss(second.id, now=NOW)
        assert dismissed.dismissed_at == NOW

        alerts.delete(second.id)
        assert [a.id for a in alerts.list()] == [first.id]

        with pytest.raises(AlertNotFound):
            AlertService(session, Principal.user(2)).acknowledge(first.id)


def test_custom_budget_keeps_its_end_date_on_update() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = BudgetService(session, OWNER)
        custom = service.create(
            _budget_in("Holiday", period=BudgetPeriod.custom, end_date=date(2025, 8, 31))
        )
        monthly = service.create(_budget_in("Fuel"))

        with pytest.raises(BudgetValidationError, match="Custom budgets need an end date"):
            service.update(custom.id, BudgetUpdateIn(end_date=None))
        with pytest.raises(BudgetValidationError, match="Custom budgets need an end date"):
            service.update(monthly.id, BudgetUpdateIn(period=BudgetPeriod.custom))

        session.rollback()
        assert service.get(custom.id).end_date == date(2025, 8, 31)
        assert service.get(monthly.id).period == BudgetPeriod.monthly

        switched = service.update(
            monthly.id,
            BudgetUpdateIn(period=BudgetPeriod.custom, end_date=date(2025, 6, 30)),
        )
        assert switched.period == BudgetPeriod.custom
