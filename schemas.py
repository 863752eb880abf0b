from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetPeriod, TransactionType


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: date
    end_date: Optional[date] = None
    auto_adjust: bool = False
    adjustment_percentage: int = Field(default=20, ge=1, le=100)
    ai_suggested: bool = False
    ai_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    ai_reasoning: Optional[str] = Field(default=None, max_length=2000)


class BudgetUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    auto_adjust: Optional[bool] = None
    adjustment_percentage: Optional[int] = Field(default=None, ge=1, le=100)


class AutoAdjustIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    budget_id: int
    reason: str = Field(default="seasonal_change", min_length=1, max_length=50)
    force: bool = False


class AlertActionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["acknowledge", "dismiss"]


class TransactionIn(BaseModel):
    date: date
    occurred_at: datetime
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)
