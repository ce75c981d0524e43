"""Immutable per-user snapshots handed from the store to the aggregators.

The aggregators never see ORM instances, so a computation cannot lazy-load or
mutate session state halfway through.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from models import Account, Budget, Category, CategoryType, Transaction


CENTS_PER_UNIT = Decimal(100)


def to_cents(amount: Decimal) -> int:
    # Validated amounts carry at most two fractional digits.
    return int(amount * CENTS_PER_UNIT)


def from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2)


@dataclass(frozen=True)
class AccountRecord:
    id: int
    name: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, account: Account) -> AccountRecord:
        return cls(id=account.id, name=account.name, created_at=account.created_at)


@dataclass(frozen=True)
class CategoryRecord:
    id: int
    name: str
    type: CategoryType
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, category: Category) -> CategoryRecord:
        return cls(
            id=category.id,
            name=category.name,
            type=category.type,
            created_at=category.created_at,
        )


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    account_id: int
    category_id: int
    amount: Decimal
    transaction_date: date
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, txn: Transaction) -> TransactionRecord:
        return cls(
            id=txn.id,
            account_id=txn.account_id,
            category_id=txn.category_id,
            amount=from_cents(txn.amount_cents),
            transaction_date=txn.transaction_date,
            description=txn.description,
            created_at=txn.created_at,
        )


@dataclass(frozen=True)
class BudgetRecord:
    id: int
    category_id: int
    month: int
    year: int
    limit_amount: Decimal

    @classmethod
    def from_model(cls, budget: Budget) -> BudgetRecord:
        return cls(
            id=budget.id,
            category_id=budget.category_id,
            month=budget.month,
            year=budget.year,
            limit_amount=from_cents(budget.limit_cents),
        )
