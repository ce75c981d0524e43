from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from budgets import BudgetLine, compute_budget_overview
from config import get_settings
from errors import (
    AlreadyOnboarded,
    InvalidAmount,
    InvalidReference,
    RejectedMutation,
    Unauthorized,
)
from ledger import (
    AccountSummary,
    CategoryTotal,
    Summary,
    category_type_map,
    compute_account_balances,
    compute_expense_breakdown,
    compute_summary,
)
from models import CategoryType
from periods import Period, local_today, month_period, resolve_month
from records import AccountRecord, BudgetRecord, CategoryRecord, TransactionRecord
from schemas import AccountIn, BudgetIn, CategoryIn, OnboardingIn, TransactionIn
from store import LedgerStore, storage_errors
from validation import (
    MIN_YEAR,
    parse_amount,
    validate_account_deletion,
    validate_category_deletion,
    validate_category_update,
    validate_new_budget,
    validate_new_transaction,
    validate_period,
)


logger = logging.getLogger(__name__)


def require_user(user_id: Optional[str]) -> str:
    if not user_id or not str(user_id).strip():
        raise Unauthorized("No owning user for this request")
    return str(user_id)


@contextmanager
def mutation(session: Session, user_id: str, event: str) -> Iterator[None]:
    """Commit on success, roll back on any rejection or storage failure."""
    try:
        yield
        with storage_errors("commit"):
            session.commit()
    except RejectedMutation as exc:
        session.rollback()
        logger.info(
            f"{event}_rejected: user={user_id} kind={exc.kind} field={exc.field}"
        )
        raise
    except Exception:
        session.rollback()
        raise


class AccountService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def list_all(self) -> list[AccountRecord]:
        return self.store.list_accounts()

    def create(self, data: AccountIn) -> AccountRecord:
        with mutation(self.session, self.user_id, "account_create"):
            account = self.store.insert_account(data.name)
        logger.info(f"account_created: user={self.user_id} id={account.id}")
        return account

    def rename(self, account_id: int, data: AccountIn) -> AccountRecord:
        with mutation(self.session, self.user_id, "account_rename"):
            account = self.store.rename_account(account_id, data.name)
            if account is None:
                raise InvalidReference("Account not found", field="id")
        logger.info(f"account_renamed: user={self.user_id} id={account_id}")
        return account

    def delete(self, account_id: int) -> None:
        with mutation(self.session, self.user_id, "account_delete"):
            if self.store.get_account(account_id) is None:
                raise InvalidReference("Account not found", field="id")
            validate_account_deletion(
                account_id,
                self.store.count_accounts(),
                self.store.count_transactions_referencing_account(account_id),
            )
            self.store.delete_account(account_id)
        logger.info(f"account_deleted: user={self.user_id} id={account_id}")


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def list_all(self, type: Optional[CategoryType] = None) -> list[CategoryRecord]:
        return self.store.list_categories(type)

    def create(self, data: CategoryIn) -> CategoryRecord:
        with mutation(self.session, self.user_id, "category_create"):
            category = self.store.insert_category(data.name, data.type)
        logger.info(
            f"category_created: user={self.user_id} id={category.id} "
            f"type={category.type.value}"
        )
        return category

    def update(self, category_id: int, data: CategoryIn) -> CategoryRecord:
        """Rename a category; its type is fixed at creation."""
        with mutation(self.session, self.user_id, "category_update"):
            current = self.store.get_category(category_id)
            if current is None:
                raise InvalidReference("Category not found", field="id")
            validate_category_update(current.type, data.type)
            category = self.store.rename_category(category_id, data.name)
        logger.info(f"category_updated: user={self.user_id} id={category_id}")
        return category

    def delete(self, category_id: int) -> None:
        with mutation(self.session, self.user_id, "category_delete"):
            if self.store.get_category(category_id) is None:
                raise InvalidReference("Category not found", field="id")
            validate_category_deletion(
                category_id,
                self.store.count_transactions_referencing_category(category_id),
                self.store.count_budgets_referencing_category(category_id),
            )
            self.store.delete_category(category_id)
        logger.info(f"category_deleted: user={self.user_id} id={category_id}")


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def list(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TransactionRecord]:
        return self.store.list_transactions(start, end)

    def get(self, transaction_id: int) -> TransactionRecord:
        txn = self.store.get_transaction(transaction_id)
        if txn is None:
            raise InvalidReference("Transaction not found", field="id")
        return txn

    def _validate(self, data: TransactionIn):
        account_ids = {a.id for a in self.store.list_accounts()}
        category_ids = {c.id for c in self.store.list_categories()}
        return validate_new_transaction(data, account_ids, category_ids)

    def create(self, data: TransactionIn) -> TransactionRecord:
        with mutation(self.session, self.user_id, "transaction_create"):
            valid = self._validate(data)
            txn = self.store.insert_transaction(valid)
        logger.info(
            f"transaction_created: user={self.user_id} id={txn.id} "
            f"date={txn.transaction_date.isoformat()}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> TransactionRecord:
        with mutation(self.session, self.user_id, "transaction_update"):
            if self.store.get_transaction(transaction_id) is None:
                raise InvalidReference("Transaction not found", field="id")
            valid = self._validate(data)
            txn = self.store.update_transaction(transaction_id, valid)
        logger.info(f"transaction_updated: user={self.user_id} id={transaction_id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        with mutation(self.session, self.user_id, "transaction_delete"):
            if not self.store.delete_transaction(transaction_id):
                raise InvalidReference("Transaction not found", field="id")
        logger.info(f"transaction_deleted: user={self.user_id} id={transaction_id}")


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def list_for_month(self, month: int, year: int) -> list[BudgetRecord]:
        month, year = validate_period(month, year)
        return self.store.list_budgets(month, year)

    def save(self, data: BudgetIn) -> BudgetRecord:
        """Set the limit for a category and month, replacing any earlier one."""
        with mutation(self.session, self.user_id, "budget_save"):
            category = self.store.get_category(data.category_id)
            if category is None:
                raise InvalidReference("Category not found", field="category_id")
            valid = validate_new_budget(data, category.type)
            budget = self.store.upsert_budget(valid)
        logger.info(
            f"budget_saved: user={self.user_id} category={budget.category_id} "
            f"period={budget.year:04d}-{budget.month:02d} limit={budget.limit_amount}"
        )
        return budget

    def delete(self, budget_id: int) -> None:
        with mutation(self.session, self.user_id, "budget_delete"):
            if not self.store.delete_budget(budget_id):
                raise InvalidReference("Budget not found", field="id")
        logger.info(f"budget_deleted: user={self.user_id} id={budget_id}")


class SummaryService:
    """Read-side entry points. Each call takes a fresh snapshot from the store
    and runs the pure aggregators over it."""

    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def _period(
        self, month: Optional[int], year: Optional[int]
    ) -> tuple[int, int, Period]:
        month, year = validate_period(*resolve_month(month, year), min_year=MIN_YEAR)
        return month, year, month_period(year, month)

    def get_summary(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> Summary:
        _, _, period = self._period(month, year)
        transactions = self.store.list_transactions(period.start, period.end)
        types = category_type_map(self.store.list_categories())
        return compute_summary(transactions, types, period.start, period.end)

    def get_account_balances(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[AccountSummary]:
        _, _, period = self._period(month, year)
        return compute_account_balances(
            self.store.list_transactions(period.start, period.end),
            self.store.list_accounts(),
            category_type_map(self.store.list_categories()),
            period.start,
            period.end,
        )

    def get_lifetime_balances(self) -> list[AccountSummary]:
        return compute_account_balances(
            self.store.list_transactions(),
            self.store.list_accounts(),
            category_type_map(self.store.list_categories()),
        )

    def get_budget_overview(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[BudgetLine]:
        month, year, period = self._period(month, year)
        return compute_budget_overview(
            self.store.list_transactions(period.start, period.end),
            self.store.list_budgets(month, year),
            self.store.list_categories(),
            month,
            year,
        )

    def get_expense_breakdown(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[CategoryTotal]:
        _, _, period = self._period(month, year)
        return compute_expense_breakdown(
            self.store.list_transactions(period.start, period.end),
            self.store.list_categories(),
            period.start,
            period.end,
        )


@dataclass(frozen=True)
class OnboardingResult:
    account: AccountRecord
    opening_category: CategoryRecord
    opening_transaction: Optional[TransactionRecord]


class OnboardingService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_user(user_id)
        self.store = LedgerStore(session, self.user_id)

    def onboard(
        self, data: OnboardingIn, *, today: Optional[date] = None
    ) -> OnboardingResult:
        """Create the first account and, if given, its opening balance.

        The opening balance is booked as an income transaction against an
        ``Opening Balance`` category, which is reused when it already exists.
        """
        settings = get_settings()
        with mutation(self.session, self.user_id, "onboarding"):
            if data.opening_balance < 0:
                raise InvalidAmount(
                    "Opening balance cannot be negative", field="opening_balance"
                )
            if self.store.count_accounts() > 0:
                raise AlreadyOnboarded("User already has an account", field=None)
            opening = None
            if data.opening_balance > 0:
                opening = parse_amount(data.opening_balance, field="opening_balance")

            account = self.store.insert_account(
                data.account_name or settings.default_account_name
            )
            category = self.store.find_category(
                settings.opening_balance_category, CategoryType.income
            )
            if category is None:
                category = self.store.insert_category(
                    settings.opening_balance_category, CategoryType.income
                )

            txn = None
            if opening is not None:
                valid = validate_new_transaction(
                    TransactionIn(
                        account_id=account.id,
                        category_id=category.id,
                        amount=opening,
                        description="Initial balance",
                        transaction_date=today or local_today(),
                    ),
                    {account.id},
                    {category.id},
                )
                txn = self.store.insert_transaction(valid)

        logger.info(
            f"onboarded: user={self.user_id} account={account.id} "
            f"opening_balance={opening or 0}"
        )
        return OnboardingResult(
            account=account, opening_category=category, opening_transaction=txn
        )
