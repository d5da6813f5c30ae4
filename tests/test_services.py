from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from analytics import UNCATEGORIZED
from database import Base
from models import Category, Subcategory, Transaction, TransactionType
from periods import Period
from schemas import CategoryIn, ProfileIn, SubcategoryIn, TransactionIn
from services import (
    CategoryService,
    MetricsService,
    ProfileService,
    SubcategoryService,
    TransactionFilters,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _txn(
    txn_type: TransactionType,
    amount: int,
    day: date,
    category_id=None,
    subcategory_id=None,
    description=None,
) -> TransactionIn:
    return TransactionIn(
        type=txn_type,
        amount=Decimal(amount),
        date=day,
        category_id=category_id,
        subcategory_id=subcategory_id,
        description=description,
    )


def test_profile_emails_are_unique_case_insensitive() -> None:
    session = make_session()
    profiles = ProfileService(session)

    profile = profiles.create(ProfileIn(email="Taro@Example.com"))

    assert profile.email == "taro@example.com"
    assert profiles.get(profile.id).created_at is not None
    with pytest.raises(ValueError):
        profiles.create(ProfileIn(email="taro@example.com"))
    with pytest.raises(ValueError):
        profiles.get(999)


def test_category_names_are_validated() -> None:
    session = make_session()
    categories = CategoryService(session, 1)

    created = categories.create(CategoryIn(name=" 交際費 ", type=TransactionType.expense))

    assert created.name == "交際費"
    assert created.is_default is False
    with pytest.raises(ValueError):
        categories.create(CategoryIn(name="交際費", type=TransactionType.expense))
    with pytest.raises(ValidationError):
        CategoryIn(name="   ", type=TransactionType.expense)
    # Same name under the other type is a different category
    categories.create(CategoryIn(name="交際費", type=TransactionType.income))
    assert len(categories.list_all()) == 2
    assert len(categories.list_all(TransactionType.income)) == 1


def test_categories_are_scoped_to_owner() -> None:
    session = make_session()
    mine = CategoryService(session, 1).create(
        CategoryIn(name="食費", type=TransactionType.expense)
    )

    other = CategoryService(session, 2)
    assert other.list_all() == []
    with pytest.raises(ValueError):
        other.rename(mine.id, "盗む")
    with pytest.raises(ValueError):
        other.delete(mine.id)
    with pytest.raises(ValueError):
        TransactionService(session, 2).create(
            _txn(TransactionType.expense, 100, date(2025, 1, 1), mine.id)
        )


def test_deleting_category_uncategorizes_transactions_and_keeps_subcategories() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(
        CategoryIn(name="食費", type=TransactionType.expense)
    )
    lunch = SubcategoryService(session, 1).create(
        SubcategoryIn(category_id=food.id, name="外食")
    )
    txn = TransactionService(session, 1).create(
        _txn(TransactionType.expense, 900, date(2025, 1, 8), food.id, lunch.id)
    )
    assert CategoryService(session, 1).usage_count(food.id) == 1

    deleted = CategoryService(session, 1).delete(food.id)

    assert deleted.name == "食費"
    assert deleted.is_default is False
    session.expire_all()
    assert session.get(Category, food.id) is None
    orphan = session.get(Subcategory, lunch.id)
    assert orphan is not None
    assert orphan.category_id is None
    stored = session.get(Transaction, txn.id)
    assert stored.category_id is None
    assert stored.subcategory_id == lunch.id


def test_transaction_validation() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(
        CategoryIn(name="食費", type=TransactionType.expense)
    )
    transport = CategoryService(session, 1).create(
        CategoryIn(name="交通費", type=TransactionType.expense)
    )
    train = SubcategoryService(session, 1).create(
        SubcategoryIn(category_id=transport.id, name="電車")
    )
    txns = TransactionService(session, 1)

    with pytest.raises(ValidationError):
        _txn(TransactionType.expense, 0, date(2025, 1, 1), food.id)
    with pytest.raises(ValueError):
        txns.create(_txn(TransactionType.expense, 100, date(2025, 1, 1), 999))
    with pytest.raises(ValueError):
        txns.create(
            _txn(TransactionType.expense, 100, date(2025, 1, 1), food.id, train.id)
        )
    with pytest.raises(ValueError):
        txns.create(_txn(TransactionType.expense, 100, date(2025, 1, 1), None, train.id))

    # A type that disagrees with the category is accepted as entered
    txn = txns.create(_txn(TransactionType.income, 100, date(2025, 1, 1), food.id))
    assert txn.type == TransactionType.income


def test_transaction_update_list_and_delete() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(
        CategoryIn(name="食費", type=TransactionType.expense)
    )
    txns = TransactionService(session, 1)
    first = txns.create(
        _txn(TransactionType.expense, 300, date(2025, 2, 1), food.id, description="パン")
    )
    txns.create(
        _txn(TransactionType.expense, 700, date(2025, 2, 3), description="雑費")
    )

    updated = txns.update(
        first.id,
        _txn(TransactionType.expense, 350, date(2025, 2, 2), food.id, description="パン屋"),
    )
    assert updated.amount == Decimal("350")

    february = Period("custom", date(2025, 2, 1), date(2025, 2, 28))
    items = txns.list_for_period(february)
    assert [t.description for t in items] == ["雑費", "パン屋"]
    assert txns.list_for_period(february, TransactionFilters(query="パン"))[0].id == first.id
    assert len(txns.list_for_period(february, TransactionFilters(category_id=food.id))) == 1

    txns.delete(first.id)
    assert len(txns.list_for_period(february)) == 1
    with pytest.raises(ValueError):
        txns.get(first.id)


def test_metrics_service_reads_store() -> None:
    session = make_session()
    food = CategoryService(session, 1).create(
        CategoryIn(name="食費", type=TransactionType.expense)
    )
    salary = CategoryService(session, 1).create(
        CategoryIn(name="給与", type=TransactionType.income)
    )
    txns = TransactionService(session, 1)
    txns.create(_txn(TransactionType.income, 3000, date(2025, 1, 1), salary.id))
    txns.create(_txn(TransactionType.expense, 1000, date(2025, 1, 15), food.id))
    txns.create(_txn(TransactionType.expense, 500, date(2025, 1, 20)))
    txns.create(_txn(TransactionType.income, 2000, date(2024, 1, 10), salary.id))
    txns.create(_txn(TransactionType.expense, 3000, date(2024, 1, 12), food.id))
    # another user's rows never leak into the figures
    TransactionService(session, 2).create(
        _txn(TransactionType.expense, 9999, date(2025, 1, 2))
    )

    metrics = MetricsService(session, 1)
    january = Period("custom", date(2025, 1, 1), date(2025, 1, 31))

    kpis = metrics.kpis(january)
    assert (kpis.income, kpis.expense, kpis.balance) == (3000, 1500, 1500)

    breakdown = metrics.category_breakdown(january, TransactionType.expense)
    assert [(s.name, s.amount) for s in breakdown] == [
        ("食費", 1000),
        (UNCATEGORIZED, 500),
    ]

    comparison = metrics.year_over_year(january)
    assert comparison.previous.income == 2000
    assert comparison.income.delta_percent == 50
    assert comparison.expense.delta_percent == -50
    assert comparison.balance.delta == 2500

    series = metrics.monthly_series(
        Period("custom", date(2024, 12, 1), date(2025, 1, 31))
    )
    assert [(m.month, m.expense) for m in series] == [("2024-12", 0), ("2025-01", 1500)]

    report = metrics.monthly_report(date(2025, 1, 9))
    assert report["month"] == "2025-01"
    assert len(report["trend"]) == 6
    assert report["trend"][0].month == "2024-08"
    assert report["expense_breakdown"][0].name == "食費"
