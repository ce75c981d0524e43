from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Hashable, Iterable, Mapping, Optional, Sequence

from models import CategoryType
from records import AccountRecord, CategoryRecord, TransactionRecord


ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Summary:
    total_income: Decimal
    total_expense: Decimal
    net_savings: Decimal
    savings_rate: Decimal


@dataclass(frozen=True)
class AccountSummary:
    account_id: Hashable
    name: str
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Hashable
    name: str
    total: Decimal


def round2(value: Decimal) -> Decimal:
    """Round to cents, halves away from zero."""
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def category_type_map(
    categories: Iterable[CategoryRecord],
) -> dict[Hashable, CategoryType]:
    return {c.id: CategoryType(c.type) for c in categories}


def in_window(
    value: date, window_start: Optional[date], window_end: Optional[date]
) -> bool:
    if window_start is not None and value < window_start:
        return False
    if window_end is not None and value > window_end:
        return False
    return True


def _totals(
    transactions: Iterable[TransactionRecord],
    category_type_of: Mapping[Hashable, CategoryType],
) -> tuple[Decimal, Decimal]:
    income = ZERO
    expense = ZERO
    for txn in transactions:
        kind = category_type_of.get(txn.category_id)
        # Orphans (category gone or owned by someone else) do not count.
        if kind == CategoryType.income:
            income += Decimal(txn.amount)
        elif kind == CategoryType.expense:
            expense += Decimal(txn.amount)
    return income, expense


def compute_summary(
    transactions: Iterable[TransactionRecord],
    category_type_of: Mapping[Hashable, CategoryType],
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> Summary:
    income, expense = _totals(
        (
            t
            for t in transactions
            if in_window(t.transaction_date, window_start, window_end)
        ),
        category_type_of,
    )
    net = income - expense
    rate = round2(net / income * HUNDRED) if income > 0 else ZERO
    return Summary(
        total_income=income,
        total_expense=expense,
        net_savings=net,
        savings_rate=rate,
    )


def compute_account_balances(
    transactions: Iterable[TransactionRecord],
    accounts: Sequence[AccountRecord],
    category_type_of: Mapping[Hashable, CategoryType],
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> list[AccountSummary]:
    """One row per account, in the order the accounts were given.

    Transactions pointing at an account outside ``accounts`` are ignored.
    """
    by_account: dict[Hashable, list[TransactionRecord]] = {
        a.id: [] for a in accounts
    }
    for txn in transactions:
        bucket = by_account.get(txn.account_id)
        if bucket is None:
            continue
        if in_window(txn.transaction_date, window_start, window_end):
            bucket.append(txn)

    rows: list[AccountSummary] = []
    for account in accounts:
        income, expense = _totals(by_account[account.id], category_type_of)
        rows.append(
            AccountSummary(
                account_id=account.id,
                name=account.name,
                total_income=income,
                total_expense=expense,
                balance=income - expense,
            )
        )
    return rows


def compute_expense_breakdown(
    transactions: Iterable[TransactionRecord],
    categories: Iterable[CategoryRecord],
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> list[CategoryTotal]:
    expense_categories = {
        c.id: c for c in categories if CategoryType(c.type) == CategoryType.expense
    }
    totals: dict[Hashable, Decimal] = {}
    for txn in transactions:
        if txn.category_id not in expense_categories:
            continue
        if not in_window(txn.transaction_date, window_start, window_end):
            continue
        totals[txn.category_id] = totals.get(txn.category_id, ZERO) + Decimal(
            txn.amount
        )

    rows = [
        CategoryTotal(
            category_id=category_id,
            name=expense_categories[category_id].name,
            total=total,
        )
        for category_id, total in totals.items()
    ]
    rows.sort(key=lambda row: (-row.total, row.name))
    return rows
