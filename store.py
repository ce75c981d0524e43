from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import StorageFailure
from models import Account, Budget, Category, CategoryType, Transaction, utcnow
from records import (
    AccountRecord,
    BudgetRecord,
    CategoryRecord,
    TransactionRecord,
    to_cents,
)
from validation import ValidBudget, ValidTransaction


logger = logging.getLogger(__name__)

BUDGET_KEY = ("user_id", "category_id", "month", "year")


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(f"storage_failure: operation={operation}")
        raise StorageFailure(str(exc)) from exc


class LedgerStore:
    """Row-level access to one user's accounts, categories, transactions and
    budgets.

    Writes are flushed but never committed here; the calling service owns the
    unit of work. Every read returns frozen records rather than ORM objects.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    # -- accounts ---------------------------------------------------------

    def list_accounts(self) -> list[AccountRecord]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        with storage_errors("list_accounts"):
            return [AccountRecord.from_model(a) for a in self.session.scalars(stmt)]

    def get_account(self, account_id: int) -> Optional[AccountRecord]:
        account = self._owned(Account, account_id)
        return AccountRecord.from_model(account) if account else None

    def count_accounts(self) -> int:
        stmt = select(func.count(Account.id)).where(Account.user_id == self.user_id)
        with storage_errors("count_accounts"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    def insert_account(self, name: str) -> AccountRecord:
        account = Account(user_id=self.user_id, name=name)
        with storage_errors("insert_account"):
            self.session.add(account)
            self.session.flush()
        return AccountRecord.from_model(account)

    def rename_account(self, account_id: int, name: str) -> Optional[AccountRecord]:
        account = self._owned(Account, account_id)
        if account is None:
            return None
        with storage_errors("rename_account"):
            account.name = name
            self.session.flush()
        return AccountRecord.from_model(account)

    def delete_account(self, account_id: int) -> bool:
        return self._delete_owned(Account, account_id, "delete_account")

    # -- categories -------------------------------------------------------

    def list_categories(
        self, type: Optional[CategoryType] = None
    ) -> list[CategoryRecord]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name.asc(), Category.id.asc())
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        with storage_errors("list_categories"):
            return [CategoryRecord.from_model(c) for c in self.session.scalars(stmt)]

    def get_category(self, category_id: int) -> Optional[CategoryRecord]:
        category = self._owned(Category, category_id)
        return CategoryRecord.from_model(category) if category else None

    def find_category(self, name: str, type: CategoryType) -> Optional[CategoryRecord]:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.type == type,
            Category.name == name,
        )
        with storage_errors("find_category"):
            category = self.session.scalars(stmt).first()
        return CategoryRecord.from_model(category) if category else None

    def insert_category(self, name: str, type: CategoryType) -> CategoryRecord:
        category = Category(user_id=self.user_id, name=name, type=type)
        with storage_errors("insert_category"):
            self.session.add(category)
            self.session.flush()
        return CategoryRecord.from_model(category)

    def rename_category(
        self, category_id: int, name: str
    ) -> Optional[CategoryRecord]:
        category = self._owned(Category, category_id)
        if category is None:
            return None
        with storage_errors("rename_category"):
            category.name = name
            self.session.flush()
        return CategoryRecord.from_model(category)

    def delete_category(self, category_id: int) -> bool:
        return self._delete_owned(Category, category_id, "delete_category")

    # -- transactions -----------------------------------------------------

    def list_transactions(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        if start is not None:
            stmt = stmt.where(Transaction.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.transaction_date <= end)
        with storage_errors("list_transactions"):
            return [
                TransactionRecord.from_model(t) for t in self.session.scalars(stmt)
            ]

    def get_transaction(self, transaction_id: int) -> Optional[TransactionRecord]:
        txn = self._owned(Transaction, transaction_id)
        return TransactionRecord.from_model(txn) if txn else None

    def insert_transaction(self, data: ValidTransaction) -> TransactionRecord:
        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            category_id=data.category_id,
            amount_cents=to_cents(data.amount),
            description=data.description,
            transaction_date=data.transaction_date,
        )
        with storage_errors("insert_transaction"):
            self.session.add(txn)
            self.session.flush()
        return TransactionRecord.from_model(txn)

    def update_transaction(
        self, transaction_id: int, data: ValidTransaction
    ) -> Optional[TransactionRecord]:
        txn = self._owned(Transaction, transaction_id)
        if txn is None:
            return None
        with storage_errors("update_transaction"):
            txn.account_id = data.account_id
            txn.category_id = data.category_id
            txn.amount_cents = to_cents(data.amount)
            txn.description = data.description
            txn.transaction_date = data.transaction_date
            self.session.flush()
        return TransactionRecord.from_model(txn)

    def delete_transaction(self, transaction_id: int) -> bool:
        return self._delete_owned(Transaction, transaction_id, "delete_transaction")

    def count_transactions_referencing_account(self, account_id: int) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.account_id == account_id,
        )
        with storage_errors("count_transactions_referencing_account"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    def count_transactions_referencing_category(self, category_id: int) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.category_id == category_id,
        )
        with storage_errors("count_transactions_referencing_category"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    # -- budgets ----------------------------------------------------------

    def list_budgets(self, month: int, year: int) -> list[BudgetRecord]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == month,
                Budget.year == year,
            )
            .order_by(Budget.id.asc())
        )
        with storage_errors("list_budgets"):
            return [BudgetRecord.from_model(b) for b in self.session.scalars(stmt)]

    def count_budgets_referencing_category(self, category_id: int) -> int:
        stmt = select(func.count(Budget.id)).where(
            Budget.user_id == self.user_id,
            Budget.category_id == category_id,
        )
        with storage_errors("count_budgets_referencing_category"):
            return int(self.session.execute(stmt).scalar_one() or 0)

    def upsert_budget(self, data: ValidBudget) -> BudgetRecord:
        """Insert or replace the limit for ``(user, category, month, year)``.

        This is a single ``INSERT .. ON CONFLICT`` statement keyed on the
        composite unique constraint, so two concurrent saves of the same key
        leave exactly one row holding the last written limit.
        """
        now = utcnow()
        values = {
            "user_id": self.user_id,
            "category_id": data.category_id,
            "month": data.month,
            "year": data.year,
            "limit_cents": to_cents(data.limit_amount),
            "created_at": now,
            "updated_at": now,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite_insert if dialect == "sqlite" else pg_insert
            stmt = insert(Budget).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(BUDGET_KEY),
                set_={
                    "limit_cents": stmt.excluded.limit_cents,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
        elif dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(Budget).values(**values)
            stmt = stmt.on_duplicate_key_update(
                limit_cents=stmt.inserted.limit_cents,
                updated_at=stmt.inserted.updated_at,
            )
        else:
            raise StorageFailure(f"Budget upsert is not supported on {dialect}")

        with storage_errors("upsert_budget"):
            self.session.execute(stmt)
            budget = self.session.scalars(
                select(Budget)
                .where(
                    Budget.user_id == self.user_id,
                    Budget.category_id == data.category_id,
                    Budget.month == data.month,
                    Budget.year == data.year,
                )
                .execution_options(populate_existing=True)
            ).one()
        return BudgetRecord.from_model(budget)

    def delete_budget(self, budget_id: int) -> bool:
        return self._delete_owned(Budget, budget_id, "delete_budget")

    # -- helpers ----------------------------------------------------------

    def _owned(self, model, entity_id: int):
        with storage_errors(f"get_{model.__tablename__}"):
            entity = self.session.get(model, entity_id)
        if entity is None or entity.user_id != self.user_id:
            return None
        return entity

    def _delete_owned(self, model, entity_id: int, operation: str) -> bool:
        with storage_errors(operation):
            result = self.session.execute(
                delete(model).where(
                    model.user_id == self.user_id, model.id == entity_id
                )
            )
            self.session.flush()
        return bool(result.rowcount)
