import logging
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import (
    AccountInUse,
    CategoryInUse,
    InvalidCategoryType,
    InvalidDate,
    InvalidPeriod,
    InvalidReference,
    LastAccount,
    StorageFailure,
    Unauthorized,
)
from models import Budget, CategoryType, Transaction
from schemas import AccountIn, BudgetIn, CategoryIn, TransactionIn
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    SummaryService,
    TransactionService,
)


USER = "9b2c6a0e-user"
OTHER = "1f0d44aa-other"


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _txn(account, category, amount, on, description=None) -> TransactionIn:
    return TransactionIn(
        account_id=account.id,
        category_id=category.id,
        amount=Decimal(amount),
        description=description,
        transaction_date=on,
    )


def test_services_require_an_owner() -> None:
    session = make_session()
    with pytest.raises(Unauthorized):
        AccountService(session, "")
    with pytest.raises(Unauthorized):
        SummaryService(session, None)


def test_deleting_sole_account_fails_even_without_transactions() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    only = accounts.create(AccountIn(name="Checking"))

    with pytest.raises(LastAccount):
        accounts.delete(only.id)

    assert [a.id for a in accounts.list_all()] == [only.id]


def test_account_with_transactions_cannot_be_deleted() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    checking = accounts.create(AccountIn(name="Checking"))
    savings = accounts.create(AccountIn(name="Savings"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    TransactionService(session, USER).create(
        _txn(checking, food, "12.00", "2024-06-01")
    )

    with pytest.raises(AccountInUse):
        accounts.delete(checking.id)

    accounts.delete(savings.id)
    assert [a.name for a in accounts.list_all()] == ["Checking"]

    with pytest.raises(LastAccount):
        accounts.delete(checking.id)


def test_account_rename_and_foreign_access() -> None:
    session = make_session()
    mine = AccountService(session, USER).create(AccountIn(name="Checking"))

    renamed = AccountService(session, USER).rename(mine.id, AccountIn(name=" Main "))
    assert renamed.name == "Main"

    with pytest.raises(InvalidReference):
        AccountService(session, OTHER).rename(mine.id, AccountIn(name="Stolen"))
    with pytest.raises(InvalidReference):
        AccountService(session, OTHER).delete(mine.id)


def test_unused_category_can_be_deleted() -> None:
    session = make_session()
    categories = CategoryService(session, USER)
    hobby = categories.create(CategoryIn(name="Hobby", type=CategoryType.expense))

    categories.delete(hobby.id)

    assert categories.list_all() == []


def test_category_in_use_by_transaction_or_budget() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    categories = CategoryService(session, USER)
    rent = categories.create(CategoryIn(name="Rent", type=CategoryType.expense))
    fuel = categories.create(CategoryIn(name="Fuel", type=CategoryType.expense))
    TransactionService(session, USER).create(_txn(account, rent, "950", "2024-06-01"))
    BudgetService(session, USER).save(
        BudgetIn(category_id=fuel.id, month=6, year=2024, limit_amount=Decimal("80"))
    )

    with pytest.raises(CategoryInUse):
        categories.delete(rent.id)
    with pytest.raises(CategoryInUse):
        categories.delete(fuel.id)

    assert {c.name for c in categories.list_all()} == {"Rent", "Fuel"}


def test_category_listing_filters_by_type() -> None:
    session = make_session()
    categories = CategoryService(session, USER)
    categories.create(CategoryIn(name="Salary", type=CategoryType.income))
    categories.create(CategoryIn(name="Bonus", type=CategoryType.income))
    categories.create(CategoryIn(name="Food", type=CategoryType.expense))
    CategoryService(session, OTHER).create(
        CategoryIn(name="Other income", type=CategoryType.income)
    )

    income = categories.list_all(CategoryType.income)

    assert [c.name for c in income] == ["Bonus", "Salary"]
    assert len(categories.list_all()) == 3


def test_category_type_cannot_change() -> None:
    session = make_session()
    categories = CategoryService(session, USER)
    food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))

    with pytest.raises(InvalidCategoryType):
        categories.update(food.id, CategoryIn(name="Food", type=CategoryType.income))

    renamed = categories.update(
        food.id, CategoryIn(name="Groceries", type=CategoryType.expense)
    )
    assert renamed.name == "Groceries"
    assert renamed.type == CategoryType.expense


def test_transaction_lifecycle() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    cash = AccountService(session, USER).create(AccountIn(name="Cash"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    txns = TransactionService(session, USER)

    created = txns.create(_txn(account, food, "19.99", "2024-06-14", "Lunch"))
    assert created.amount == Decimal("19.99")
    assert created.transaction_date == date(2024, 6, 14)
    assert created.description == "Lunch"

    updated = txns.update(created.id, _txn(cash, food, "21.50", date(2024, 6, 15)))
    assert updated.account_id == cash.id
    assert updated.amount == Decimal("21.50")
    assert updated.description is None
    assert txns.get(created.id).transaction_date == date(2024, 6, 15)

    txns.delete(created.id)
    assert txns.list() == []
    with pytest.raises(InvalidReference):
        txns.delete(created.id)


def test_transactions_are_listed_newest_first_within_range() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    txns = TransactionService(session, USER)
    for on in ["2024-05-31", "2024-06-02", "2024-06-20", "2024-07-01"]:
        txns.create(_txn(account, food, "5", on))

    june = txns.list(date(2024, 6, 1), date(2024, 6, 30))

    assert [t.transaction_date for t in june] == [date(2024, 6, 20), date(2024, 6, 2)]


def test_transaction_cannot_use_another_users_account() -> None:
    session = make_session()
    theirs = AccountService(session, OTHER).create(AccountIn(name="Theirs"))
    AccountService(session, USER).create(AccountIn(name="Mine"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )

    with pytest.raises(InvalidReference) as excinfo:
        TransactionService(session, USER).create(_txn(theirs, food, "5", "2024-06-01"))

    assert excinfo.value.field == "account_id"
    assert session.scalars(select(Transaction)).all() == []


def test_invalid_update_leaves_transaction_untouched() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    txns = TransactionService(session, USER)
    created = txns.create(_txn(account, food, "8", "2024-06-01"))

    with pytest.raises(InvalidDate):
        txns.update(created.id, _txn(account, food, "9", "2024-06-31"))

    assert txns.get(created.id).amount == Decimal("8.00")
    with pytest.raises(InvalidReference):
        TransactionService(session, OTHER).get(created.id)


def test_summary_and_balances_for_month() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    checking = accounts.create(AccountIn(name="Checking"))
    savings = accounts.create(AccountIn(name="Savings"))
    categories = CategoryService(session, USER)
    salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
    rent = categories.create(CategoryIn(name="Rent", type=CategoryType.expense))
    food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
    txns = TransactionService(session, USER)
    txns.create(_txn(checking, salary, "1000", "2024-06-01"))
    txns.create(_txn(checking, rent, "250", "2024-06-02"))
    txns.create(_txn(checking, food, "50", "2024-06-30"))
    txns.create(_txn(checking, food, "70", "2024-07-01"))

    summaries = SummaryService(session, USER)
    summary = summaries.get_summary(6, 2024)
    assert summary.total_income == Decimal("1000")
    assert summary.total_expense == Decimal("300")
    assert summary.net_savings == Decimal("700")
    assert summary.savings_rate == Decimal("70.00")

    balances = summaries.get_account_balances(6, 2024)
    assert [(b.name, b.balance) for b in balances] == [
        ("Checking", Decimal("700")),
        ("Savings", Decimal("0")),
    ]
    assert balances[1].account_id == savings.id

    lifetime = summaries.get_lifetime_balances()
    assert lifetime[0].balance == Decimal("630")

    breakdown = summaries.get_expense_breakdown(6, 2024)
    assert [(row.name, row.total) for row in breakdown] == [
        ("Rent", Decimal("250")),
        ("Food", Decimal("50")),
    ]


def test_summary_rejects_bad_period() -> None:
    session = make_session()
    with pytest.raises(InvalidPeriod):
        SummaryService(session, USER).get_summary(0, 2024)


def test_storage_errors_surface_as_storage_failure() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine, expire_on_commit=False) as session:
        fuel = CategoryService(session, USER).create(
            CategoryIn(name="Fuel", type=CategoryType.expense)
        )
        session.close()
        Budget.__table__.drop(engine)

        with pytest.raises(StorageFailure) as excinfo:
            BudgetService(session, USER).save(
                BudgetIn(
                    category_id=fuel.id, month=6, year=2024, limit_amount=Decimal("60")
                )
            )

        assert isinstance(excinfo.value.__cause__, SQLAlchemyError)
        assert excinfo.value.kind == "StorageFailure"


def test_december_9999_budget_is_readable() -> None:
    session = make_session()
    fuel = CategoryService(session, USER).create(
        CategoryIn(name="Fuel", type=CategoryType.expense)
    )
    BudgetService(session, USER).save(
        BudgetIn(category_id=fuel.id, month=12, year=9999, limit_amount=Decimal("40"))
    )

    summaries = SummaryService(session, USER)
    lines = summaries.get_budget_overview(12, 9999)
    assert [(l.category, l.remaining) for l in lines] == [("Fuel", Decimal("40"))]
    assert summaries.get_summary(12, 9999).total_expense == Decimal("0")

    with pytest.raises(InvalidPeriod) as excinfo:
        summaries.get_summary(1, 10000)
    assert excinfo.value.field == "year"
    with pytest.raises(InvalidPeriod):
        BudgetService(session, USER).save(
            BudgetIn(
                category_id=fuel.id, month=1, year=10000, limit_amount=Decimal("40")
            )
        )


def test_transactions_before_2000_can_be_summarized() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )
    TransactionService(session, USER).create(
        _txn(account, food, "7.25", "1999-05-04")
    )

    summary = SummaryService(session, USER).get_summary(5, 1999)
    assert summary.total_expense == Decimal("7.25")


def test_renames_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", type=CategoryType.expense)
    )

    with caplog.at_level(logging.INFO, logger="services"):
        AccountService(session, USER).rename(account.id, AccountIn(name="Main"))
        CategoryService(session, USER).update(
            food.id, CategoryIn(name="Groceries", type=CategoryType.expense)
        )

    assert f"account_renamed: user={USER} id={account.id}" in caplog.text
    assert f"category_updated: user={USER} id={food.id}" in caplog.text
