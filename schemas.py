from datetime import date
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import CategoryType


class AccountIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryType


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    category_id: int
    # Sign, precision and calendar checks live in validation.py so callers
    # get InvalidAmount / InvalidDate instead of a schema error.
    amount: Decimal
    description: Optional[str] = Field(default=None, max_length=255)
    transaction_date: Union[date, str]


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: int
    month: int
    year: int
    limit_amount: Decimal


class OnboardingIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    account_name: Optional[str] = Field(default=None, max_length=100)
    opening_balance: Decimal = Decimal("0")
