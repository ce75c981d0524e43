from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Hashable, Iterable, Optional, Sequence

from ledger import ZERO
from models import CategoryType
from periods import month_period
from records import BudgetRecord, CategoryRecord, TransactionRecord


@dataclass(frozen=True)
class BudgetLine:
    """Budget vs. actual for one expense category in one month.

    ``remaining`` goes negative once spending passes the limit; there is no
    separate over-budget flag.
    """

    category_id: Hashable
    category: Optional[str]
    limit: Decimal
    spent: Decimal
    remaining: Decimal


def expense_spent_by_category(
    transactions: Iterable[TransactionRecord],
    categories: Iterable[CategoryRecord],
    month: int,
    year: int,
) -> dict[Hashable, Decimal]:
    period = month_period(year, month)
    expense_ids = {
        c.id for c in categories if CategoryType(c.type) == CategoryType.expense
    }
    spent: dict[Hashable, Decimal] = {}
    for txn in transactions:
        if txn.category_id not in expense_ids:
            continue
        if not period.contains(txn.transaction_date):
            continue
        spent[txn.category_id] = spent.get(txn.category_id, ZERO) + Decimal(
            txn.amount
        )
    return spent


def compute_budget_overview(
    transactions: Iterable[TransactionRecord],
    budgets: Sequence[BudgetRecord],
    categories: Sequence[CategoryRecord],
    month: int,
    year: int,
) -> list[BudgetLine]:
    names = {c.id: c.name for c in categories}
    spent_by_category = expense_spent_by_category(
        transactions, categories, month, year
    )

    lines: list[BudgetLine] = []
    for budget in budgets:
        if budget.month != month or budget.year != year:
            continue
        limit = Decimal(budget.limit_amount)
        spent = spent_by_category.get(budget.category_id, ZERO)
        lines.append(
            BudgetLine(
                category_id=budget.category_id,
                category=names.get(budget.category_id),
                limit=limit,
                spent=spent,
                remaining=limit - spent,
            )
        )
    return lines
