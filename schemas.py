import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import SplitType

SPLIT_TYPE_ALIASES = {"equal": SplitType.equal.value, "50-50": SplitType.equal.value}


def _normalize_split_type(value: object) -> object:
    if value is None:
        return SplitType.equal
    if isinstance(value, str):
        lowered = value.strip().lower()
        return SPLIT_TYPE_ALIASES.get(lowered, lowered)
    return value


class SplitFields(BaseModel):
    split_type: SplitType = SplitType.equal
    split_ratio_user1: Optional[float] = Field(default=None, ge=0, le=100)
    split_ratio_user2: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator("split_type", mode="before")
    @classmethod
    def _split_type(cls, value: object) -> object:
        return _normalize_split_type(value)

    @model_validator(mode="after")
    def _custom_ratios_sum_to_100(self):
        if self.split_type == SplitType.custom:
            if self.split_ratio_user1 is None and self.split_ratio_user2 is None:
                raise ValueError("Custom split requires split ratios")
            if self.split_ratio_user1 is None:
                self.split_ratio_user1 = 100 - self.split_ratio_user2
            if self.split_ratio_user2 is None:
                self.split_ratio_user2 = 100 - self.split_ratio_user1
            if abs(self.split_ratio_user1 + self.split_ratio_user2 - 100) > 0.01:
                raise ValueError("Custom split ratios must sum to 100")
        elif self.split_type != SplitType.bill:
            self.split_ratio_user1 = None
            self.split_ratio_user2 = None
        return self


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    color: Optional[str] = Field(default=None, max_length=9)


class PartnerLinkIn(BaseModel):
    partner_email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, max_length=9)


class ExpenseIn(SplitFields):
    date: Optional[dt.date] = None
    amount: float = Field(..., gt=0)
    category_id: int
    paid_by_user_id: int
    description: Optional[str] = Field(default=None, max_length=200)


class RecurringExpenseIn(SplitFields):
    description: str = Field(..., min_length=1, max_length=200)
    default_amount: float = Field(..., gt=0)
    category_id: int
    paid_by_user_id: int


class GenerateIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)


class BudgetIn(BaseModel):
    category_id: int
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    amount: float = Field(..., ge=0)


class IncomeIn(BaseModel):
    date: date
    amount: float = Field(..., gt=0)
    source: Optional[str] = Field(default=None, max_length=120)


class SavingsGoalIn(BaseModel):
    goal_name: str = Field(..., min_length=1, max_length=120)
    target_amount: float = Field(..., gt=0)
    target_date: Optional[date] = None
    category: str = Field(default="general", max_length=50)
    is_pinned: bool = False


class ContributionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: float = Field(..., gt=0)
    date: Optional[dt.date] = None
    note: Optional[str] = Field(default=None, max_length=500)
