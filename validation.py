"""Pure invariant checks run before any write.

Every function either returns the validated value or raises one of the typed
rejections from :mod:`errors`. Nothing here touches the store; callers pass
in the ownership sets and reference counts they already looked up.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Collection, Hashable, Optional

from errors import (
    AccountInUse,
    CategoryInUse,
    InvalidAmount,
    InvalidCategoryType,
    InvalidDate,
    InvalidPeriod,
    InvalidReference,
    LastAccount,
)
from models import CategoryType


CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")
MIN_BUDGET_YEAR = 2000
MIN_YEAR = MINYEAR
MAX_YEAR = MAXYEAR


@dataclass(frozen=True)
class ValidTransaction:
    account_id: int
    category_id: int
    amount: Decimal
    transaction_date: date
    description: Optional[str] = None


@dataclass(frozen=True)
class ValidBudget:
    category_id: int
    month: int
    year: int
    limit_amount: Decimal


def parse_amount(value: Any, *, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidAmount("Amount is required", field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmount("Amount is not a number", field=field) from exc
    if not amount.is_finite():
        raise InvalidAmount("Amount must be a finite number", field=field)
    if amount <= 0:
        raise InvalidAmount("Amount must be positive", field=field)
    if amount > MAX_AMOUNT:
        raise InvalidAmount("Amount is too large", field=field)
    quantized = amount.quantize(CENT)
    if quantized != amount:
        raise InvalidAmount(
            "Amount cannot have more than 2 decimal places", field=field
        )
    return quantized


def parse_calendar_date(value: Any, *, field: str = "transaction_date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError as exc:
            raise InvalidDate(f"Invalid date: {value!r}", field=field) from exc
    raise InvalidDate("Date is required", field=field)


def validate_period(
    month: Any, year: Any, *, min_year: int = MIN_BUDGET_YEAR
) -> tuple[int, int]:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidPeriod("Month must be between 1 and 12", field="month")
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidPeriod("Year must be a whole number", field="year")
    if not min_year <= year <= MAX_YEAR:
        raise InvalidPeriod(
            f"Year must be between {min_year} and {MAX_YEAR}", field="year"
        )
    return month, year


def validate_new_transaction(
    tx: Any,
    owned_account_ids: Collection[Hashable],
    owned_category_ids: Collection[Hashable],
) -> ValidTransaction:
    if tx.account_id not in owned_account_ids:
        raise InvalidReference("Account not found", field="account_id")
    if tx.category_id not in owned_category_ids:
        raise InvalidReference("Category not found", field="category_id")
    amount = parse_amount(tx.amount)
    txn_date = parse_calendar_date(tx.transaction_date)
    description = (getattr(tx, "description", None) or "").strip() or None
    return ValidTransaction(
        account_id=tx.account_id,
        category_id=tx.category_id,
        amount=amount,
        transaction_date=txn_date,
        description=description,
    )


def validate_new_budget(budget: Any, category_type: CategoryType) -> ValidBudget:
    if category_type != CategoryType.expense:
        raise InvalidCategoryType(
            "Budgets can only be set for expense categories", field="category_id"
        )
    limit_amount = parse_amount(budget.limit_amount, field="limit_amount")
    month, year = validate_period(budget.month, budget.year)
    return ValidBudget(
        category_id=budget.category_id,
        month=month,
        year=year,
        limit_amount=limit_amount,
    )


def validate_category_update(
    current_type: CategoryType, requested_type: CategoryType
) -> CategoryType:
    # Changing the type would flip the sign of every historic transaction.
    if current_type != requested_type:
        raise InvalidCategoryType("Category type cannot be changed", field="type")
    return current_type


def validate_account_deletion(
    account_id: Hashable, account_count: int, referencing_tx_count: int
) -> Hashable:
    if account_count <= 1:
        raise LastAccount("Cannot delete the only remaining account", field="id")
    if referencing_tx_count > 0:
        raise AccountInUse(
            f"Account has {referencing_tx_count} transaction(s)", field="id"
        )
    return account_id


def validate_category_deletion(
    category_id: Hashable, referencing_tx_count: int, referencing_budget_count: int
) -> Hashable:
    if referencing_tx_count > 0 or referencing_budget_count > 0:
        raise CategoryInUse(
            f"Category is used by {referencing_tx_count} transaction(s) "
            f"and {referencing_budget_count} budget(s)",
            field="id",
        )
    return category_id
