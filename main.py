import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session

from adjustment import (
    AlreadyAdjusted,
    AutoAdjustDisabled,
    AutoAdjustmentEngine,
    InsufficientHistory,
)
from csrf import generate_csrf_token, validate_csrf_token, validate_sweep_token
from database import SessionLocal
from models import AlertType, BudgetPeriod
from principal import Principal, current_principal, get_current_user_id
from scheduler import SchedulerManager
from schemas import AlertActionIn, AutoAdjustIn, BudgetIn, BudgetUpdateIn
from services import (
    AlertNotFound,
    AlertService,
    BudgetNotFound,
    BudgetService,
    DuplicateBudget,
    alert_to_dict,
    budget_to_dict,
    history_to_dict,
)
from sweep import BudgetSweep

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Monitor")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


def get_sweep() -> BudgetSweep:
    return BudgetSweep(queue=scheduler_manager.queue)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def require_csrf(x_csrf_token: str = Header(default="")) -> None:
    if not validate_csrf_token(x_csrf_token, get_current_user_id()):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, (BudgetNotFound, AlertNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DuplicateBudget):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InsufficientHistory):
        return HTTPException(
            status_code=400,
            detail={
                "message": str(exc),
                "transaction_count": exc.transaction_count,
                "periods_with_data": exc.periods_with_data,
            },
        )
    return HTTPException(status_code=400, detail=str(exc))


def _optional_bool(raw: Optional[str]) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise HTTPException(status_code=400, detail=f"Invalid boolean: {raw}")


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"csrf_token": generate_csrf_token(get_current_user_id())}


@app.get("/api/budgets")
def api_budgets(request: Request, db: Session = Depends(get_db)):
    active = _optional_bool(request.query_params.get("active"))
    period_param = request.query_params.get("period")
    period = None
    if period_param:
        try:
            period = BudgetPeriod(period_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid period") from exc
    category = request.query_params.get("category")
    service = BudgetService(db)
    budgets = service.list(active=active, period=period, category=category)
    return {"items": [service.status(budget).as_dict() for budget in budgets]}


@app.post("/api/budgets", status_code=201, dependencies=[Depends(require_csrf)])
def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    service = BudgetService(db)
    try:
        budget = service.create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    logger.info(f"budget_created: budget_id={budget.id} category={budget.category}")
    return budget_to_dict(budget)


@app.get("/api/budgets/current")
def api_current_budgets(db: Session = Depends(get_db)):
    views = BudgetService(db).current()
    return {"items": [view.as_dict() for view in views]}


@app.get("/api/budgets/alerts")
def api_alerts(request: Request, db: Session = Depends(get_db)):
    acknowledged = _optional_bool(request.query_params.get("acknowledged"))
    type_param = request.query_params.get("type")
    alert_type = None
    if type_param:
        try:
            alert_type = AlertType(type_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid alert type") from exc
    limit = int(request.query_params.get("limit", "50"))
    limit = min(max(limit, 1), 50)
    alerts = AlertService(db).list(
        acknowledged=acknowledged, alert_type=alert_type, limit=limit
    )
    return {"items": [alert_to_dict(alert) for alert in alerts]}


@app.post("/api/budgets/alerts/check", dependencies=[Depends(require_csrf)])
def check_alerts(sweep: BudgetSweep = Depends(get_sweep)):
    principal = current_principal()
    report = sweep.run(principal, user_id=principal.user_id, source="manual")
    return report.as_dict()


@app.patch("/api/budgets/alerts/{alert_id}", dependencies=[Depends(require_csrf)])
def update_alert(alert_id: int, data: AlertActionIn, db: Session = Depends(get_db)):
    service = AlertService(db)
    try:
        if data.action == "acknowledge":
            alert = service.acknowledge(alert_id)
        else:
            alert = service.dismiss(alert_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return alert_to_dict(alert)


@app.delete("/api/budgets/alerts/{alert_id}", dependencies=[Depends(require_csrf)])
def delete_alert(alert_id: int, db: Session = Depends(get_db)):
    try:
        AlertService(db).delete(alert_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": True}


@app.post("/api/budgets/auto-adjust", dependencies=[Depends(require_csrf)])
def auto_adjust(data: AutoAdjustIn, db: Session = Depends(get_db)):
    engine = AutoAdjustmentEngine(db, current_principal())
    try:
        decision = engine.adjust(data.budget_id, data.reason, force=data.force)
    except (AutoAdjustDisabled, InsufficientHistory, AlreadyAdjusted, BudgetNotFound) as exc:
        db.rollback()
        raise http_error(exc) from exc
    return decision.as_dict()


@app.get("/api/budgets/{budget_id}")
def api_budget(budget_id: int, db: Session = Depends(get_db)):
    service = BudgetService(db)
    try:
        budget = service.get(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return service.status(budget).as_dict()


@app.put("/api/budgets/{budget_id}", dependencies=[Depends(require_csrf)])
def update_budget(budget_id: int, data: BudgetUpdateIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).update(budget_id, data)
    except ValueError as exc:
        db.rollback()
        raise http_error(exc) from exc
    return budget_to_dict(budget)


@app.delete("/api/budgets/{budget_id}", dependencies=[Depends(require_csrf)])
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    logger.info(f"budget_deleted: budget_id={budget_id}")
    return {"deleted": True}


@app.get("/api/budgets/{budget_id}/history")
def api_budget_history(budget_id: int, db: Session = Depends(get_db)):
    try:
        entries = BudgetService(db).history(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"items": [history_to_dict(entry) for entry in entries]}


@app.post("/internal/sweep")
def internal_sweep(
    x_sweep_token: str = Header(default=""),
    sweep: BudgetSweep = Depends(get_sweep),
):
    if not validate_sweep_token(x_sweep_token):
        raise HTTPException(status_code=403, detail="Invalid sweep token")
    report = sweep.run(Principal.system(), source="internal")
    return report.as_dict()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
