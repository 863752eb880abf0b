from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from alerts import AlertRecorder
from classifier import classify
from database import Base
from models import Budget, BudgetAlert, BudgetPeriod
from notifications import LoggingDispatcher, NotificationDispatcher, NotificationQueue


NOW = datetime(2025, 6, 20, 12, 0)


def _factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def _seed_alert(factory) -> int:
    with factory() as session:
        budget = Budget(
            user_id=1,
            category="Travel",
            amount_cents=100_000,
            period=BudgetPeriod.monthly,
            start_date=date(2025, 6, 1),
        )
        session.add(budget)
        session.commit()
        alert = AlertRecorder(session, []).record_threshold(
            budget, classify(95_000, 100_000), NOW
        )
        session.commit()
        return alert.id


class ExplodingDispatcher(NotificationDispatcher):
    def send(self, user_id, channels, payload):
        raise RuntimeError("push gateway down")


class PartialDispatcher(NotificationDispatcher):
    def send(self, user_id, channels, payload):
        return {channel: channel == "email" for channel in channels}


class FailingDispatcher(NotificationDispatcher):
    def send(self, user_id, channels, payload):
        return {channel: False for channel in channels}


def _reload(factory, alert_id: int) -> BudgetAlert:
    with factory() as session:
        return session.get(BudgetAlert, alert_id)


def test_successful_delivery_marks_alert_sent() -> None:
    factory = _factory()
    alert_id = _seed_alert(factory)
    queue = NotificationQueue(LoggingDispatcher(), factory, synchronous=True)

    outcome = queue.submit(alert_id, 1, ["push", "email"], {"alert_id": alert_id})

    assert outcome is None
    alert = _reload(factory, alert_id)
    assert alert.notification_sent is True
    assert alert.notification_channels == ["push", "email"]


def test_any_channel_success_counts_as_sent() -> None:
    factory = _factory()
    alert_id = _seed_alert(factory)
    queue = NotificationQueue(PartialDispatcher(), factory, synchronous=True)

    queue.submit(alert_id, 1, ["push", "email"], {"alert_id": alert_id})

    assert _reload(factory, alert_id).notification_sent is True


def test_all_channels_failing_keeps_alert_unsent() -> None:
    factory = _factory()
    alert_id = _seed_alert(factory)
    queue = NotificationQueue(FailingDispatcher(), factory, synchronous=True)

    queue.submit(alert_id, 1, ["push"], {"alert_id": alert_id})

    alert = _reload(factory, alert_id)
    assert alert is not None
    assert alert.notification_sent is False
    assert alert.notification_channels == ["push"]


def test_dispatcher_crash_does_not_escape_or_drop_alert() -> None:
    factory = _factory()
    alert_id = _seed_alert(factory)
    queue = NotificationQueue(ExplodingDispatcher(), factory, synchronous=True)

    outcome = queue._deliver(alert_id, 1, ["push", "email"], {"alert_id": alert_id})

    assert outcome == {"push": False, "email": False}
    alert = _reload(factory, alert_id)
    assert alert is not None
    assert alert.notification_sent is False


def test_background_queue_records_outcome_after_shutdown() -> None:
    factory = _factory()
    alert_id = _seed_alert(factory)
    queue = NotificationQueue(LoggingDispatcher(), factory, max_workers=1)

    future = queue.submit(alert_id, 1, ["email"], {"alert_id": alert_id})
    queue.shutdown()

    assert future.result() == {"email": True}
    assert _reload(factory, alert_id).notification_sent is True


def test_dispatcher_base_cannot_be_used_directly() -> None:
    with pytest.raises(TypeError):
        NotificationDispatcher()

    class Silent(NotificationDispatcher):
        pass

    with pytest.raises(TypeError):
        Silent()
