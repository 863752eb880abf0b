from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from csrf import generate_sweep_token
from database import Base
from models import TransactionType
from notifications import LoggingDispatcher, NotificationQueue
from periods import local_now
from schemas import TransactionIn
from services import TransactionService
from sweep import BudgetSweep


@pytest.fixture()
def factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def client(factory):
    def _get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    def _get_sweep():
        queue = NotificationQueue(LoggingDispatcher(), factory, synchronous=True)
        return BudgetSweep(factory, queue=queue, channels=["push"])

    main.app.dependency_overrides[main.get_db] = _get_db
    main.app.dependency_overrides[main.get_sweep] = _get_sweep
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _headers(client: TestClient) -> dict[str, str]:
    token = client.get("/api/csrf-token").json()["csrf_token"]
    return {"X-CSRF-Token": token}


def _budget_payload(**overrides) -> dict:
    payload = {
        "category": "Dining",
        "amount_cents": 100_000,
        "period": "monthly",
        "start_date": (local_now() - timedelta(days=1)).date().isoformat(),
    }
    payload.update(overrides)
    return payload


def test_mutations_require_csrf_header(client) -> None:
    response = client.post("/api/budgets", json=_budget_payload())
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid CSRF token"


def test_budget_crud_round_trip(client) -> None:
    headers = _headers(client)

    created = client.post("/api/budgets", json=_budget_payload(), headers=headers)
    assert created.status_code == 201
    budget_id = created.json()["id"]

    duplicate = client.post("/api/budgets", json=_budget_payload(), headers=headers)
    assert duplicate.status_code == 409

    too_small = client.post(
        "/api/budgets",
        json=_budget_payload(category="Books", amount_cents=5_000),
        headers=headers,
    )
    assert too_small.status_code == 400

    listed = client.get("/api/budgets", params={"active": "true"}).json()["items"]
    assert [item["id"] for item in listed] == [budget_id]
    assert listed[0]["status"] == "on_track"

    updated = client.put(
        f"/api/budgets/{budget_id}", json={"amount_cents": 120_000}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["amount_cents"] == 120_000

    history = client.get(f"/api/budgets/{budget_id}/history").json()["items"]
    assert [(h["change_type"], h["new_amount_cents"]) for h in history] == [
        ("manual", 120_000)
    ]

    deleted = client.delete(f"/api/budgets/{budget_id}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/budgets/{budget_id}").status_code == 404


def test_check_now_creates_alert_and_ack_flow(client, factory) -> None:
    headers = _headers(client)
    budget_id = client.post(
        "/api/budgets", json=_budget_payload(), headers=headers
    ).json()["id"]
    moment = local_now() - timedelta(hours=1)
    with factory() as session:
        TransactionService(session, user_id=1).create(
            TransactionIn(
                date=moment.date(),
                occurred_at=moment,
                type=TransactionType.expense,
                amount_cents=75_000,
                category="Dining",
            )
        )

    report = client.post("/api/budgets/alerts/check", headers=headers).json()
    assert report["alerts_created"] == 1
    again = client.post("/api/budgets/alerts/check", headers=headers).json()
    assert again["alerts_created"] == 0
    assert again["skipped_duplicates"] == 1

    (alert,) = client.get("/api/budgets/alerts").json()["items"]
    assert alert["budget_id"] == budget_id
    assert alert["alert_type"] == "approaching"
    assert alert["threshold_percentage"] == 70.0
    assert alert["notification_sent"] is True

    acked = client.patch(
        f"/api/budgets/alerts/{alert['id']}",
        json={"action": "acknowledge"},
        headers=headers,
    )
    assert acked.status_code == 200
    assert acked.json()["acknowledged_at"] is not None
    assert client.get(
        "/api/budgets/alerts", params={"acknowledged": "false"}
    ).json()["items"] == []

    missing = client.patch(
        "/api/budgets/alerts/999", json={"action": "dismiss"}, headers=headers
    )
    assert missing.status_code == 404


def test_auto_adjust_reports_thin_history(client) -> None:
    headers = _headers(client)
    budget_id = client.post(
        "/api/budgets", json=_budget_payload(auto_adjust=True), headers=headers
    ).json()["id"]

    response = client.post(
        "/api/budgets/auto-adjust",
        json={"budget_id": budget_id, "reason": "income_change"},
        headers=headers,
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["transaction_count"] == 0
    assert detail["periods_with_data"] == 0


def test_internal_sweep_needs_signed_token(client) -> None:
    assert client.post("/internal/sweep").status_code == 403
    response = client.post(
        "/internal/sweep", headers={"X-Sweep-Token": generate_sweep_token()}
    )
    assert response.status_code == 200
    assert response.json()["budgets_checked"] == 0


def test_unknown_budget_is_404(client) -> None:
    assert client.get("/api/budgets/12345").status_code == 404
    assert client.get("/api/budgets/current").json() == {"items": []}
