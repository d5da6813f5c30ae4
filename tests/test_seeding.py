import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from defaults import DEFAULT_CATEGORIES
from models import (
    Category,
    DeletedDefaultCategory,
    Profile,
    Subcategory,
    TransactionType,
)
from schemas import CategoryIn
from seeding import SeedResult, TaxonomySeeder, TombstoneOutcome
from services import CategoryService


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

# Default subcategories whose parent is itself a default category
SEEDABLE_SUBCATEGORIES = 31


def make_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_profile(factory, created_at: datetime, email: str = "hanako@example.com") -> int:
    with factory() as session:
        profile = Profile(email=email, created_at=created_at.replace(tzinfo=None))
        session.add(profile)
        session.commit()
        return profile.id


def make_seeder(factory, now: datetime = NOW) -> TaxonomySeeder:
    return TaxonomySeeder(
        factory, clock=lambda: now, new_user_window=timedelta(minutes=5)
    )


def count(factory, model, user_id: int) -> int:
    with factory() as session:
        return session.scalar(
            select(func.count(model.id)).where(model.user_id == user_id)
        )


def test_fresh_user_gets_default_categories_once() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    seeder = make_seeder(factory)

    assert seeder.ensure_default_categories(user_id) == 12
    assert seeder.ensure_default_categories(user_id) == 0

    with factory() as session:
        categories = session.scalars(
            select(Category).where(Category.user_id == user_id)
        ).all()
    assert len(categories) == 12
    assert all(c.is_default for c in categories)
    by_type = {t: sum(1 for c in categories if c.type == t) for t in TransactionType}
    assert by_type == {TransactionType.expense: 9, TransactionType.income: 3}
    assert {(c.name, c.type) for c in categories} == {
        (d.name, d.type) for d in DEFAULT_CATEGORIES
    }


def test_user_outside_window_is_not_seeded() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW - timedelta(minutes=10))
    seeder = make_seeder(factory)

    result = seeder.ensure_defaults(user_id)

    assert result == SeedResult(categories_created=0, subcategories_created=0)
    assert count(factory, Category, user_id) == 0


def test_window_boundary_is_exclusive() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW - timedelta(minutes=5))

    assert make_seeder(factory).ensure_default_categories(user_id) == 0


def test_missing_profile_is_a_noop() -> None:
    _, factory = make_factory()

    assert make_seeder(factory).ensure_defaults(42) == SeedResult(0, 0)
    assert count(factory, Category, 42) == 0


def test_only_missing_defaults_are_added() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    with factory() as session:
        session.add(
            Category(
                user_id=user_id,
                name="食費",
                type=TransactionType.expense,
                is_default=True,
            )
        )
        session.commit()

    assert make_seeder(factory).ensure_default_categories(user_id) == 11
    assert count(factory, Category, user_id) == 12


def test_user_created_namesake_does_not_block_default() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    with factory() as session:
        CategoryService(session, user_id).create(
            CategoryIn(name="給与", type=TransactionType.income)
        )

    assert make_seeder(factory).ensure_default_categories(user_id) == 12


def test_subcategories_attach_to_existing_parents_once() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    seeder = make_seeder(factory)

    result = seeder.ensure_defaults(user_id)
    assert result == SeedResult(
        categories_created=12, subcategories_created=SEEDABLE_SUBCATEGORIES
    )
    assert seeder.ensure_defaults(user_id) == SeedResult(0, 0)

    with factory() as session:
        food = session.scalar(
            select(Category).where(
                Category.user_id == user_id, Category.name == "食費"
            )
        )
        names = sorted(
            s.name
            for s in session.scalars(
                select(Subcategory).where(Subcategory.category_id == food.id)
            )
        )
    assert names == sorted(["外食", "食材", "お弁当", "お菓子・飲み物"])


def test_subcategories_follow_user_created_parent() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    with factory() as session:
        CategoryService(session, user_id).create(
            CategoryIn(name="通信費", type=TransactionType.expense)
        )

    assert make_seeder(factory).create_default_subcategories(user_id) == 3


def test_subcategories_without_parents_are_skipped() -> None:
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)

    assert make_seeder(factory).create_default_subcategories(user_id) == 0


def test_partial_seed_is_recovered_by_next_run() -> None:
    engine, factory = make_factory()
    user_id = add_profile(factory, NOW)
    seeder = make_seeder(factory)
    Subcategory.__table__.drop(engine)

    first = seeder.ensure_defaults(user_id)

    assert first == SeedResult(categories_created=12, subcategories_created=0)

    Subcategory.__table__.create(engine)
    second = seeder.ensure_defaults(user_id)
    assert second == SeedResult(
        categories_created=0, subcategories_created=SEEDABLE_SUBCATEGORIES
    )


def test_seeding_failure_is_logged_not_raised(caplog) -> None:
    engine, factory = make_factory()
    user_id = add_profile(factory, NOW)
    Category.__table__.drop(engine)

    with caplog.at_level(logging.ERROR, logger="seeding"):
        assert make_seeder(factory).ensure_default_categories(user_id) == 0

    assert "seed_categories_failed" in caplog.text


def test_tombstone_recorded_and_duplicate_is_success() -> None:
    _, factory = make_factory()
    seeder = make_seeder(factory)

    first = seeder.record_deleted_default_category(1, "娯楽費", TransactionType.expense)
    second = seeder.record_deleted_default_category(
        1, "娯楽費", TransactionType.expense
    )

    assert first == TombstoneOutcome.recorded
    assert second == TombstoneOutcome.duplicate
    assert count(factory, DeletedDefaultCategory, 1) == 1


def test_tombstone_missing_table_is_a_warning(caplog) -> None:
    engine, factory = make_factory()
    DeletedDefaultCategory.__table__.drop(engine)

    with caplog.at_level(logging.WARNING, logger="seeding"):
        outcome = make_seeder(factory).record_deleted_default_category(
            1, "娯楽費", TransactionType.expense
        )

    assert outcome == TombstoneOutcome.missing_table
    assert "run the database migrations" in caplog.text


def test_deleted_default_is_recreated_inside_window() -> None:
    # Tombstones are written but not read while seeding.
    _, factory = make_factory()
    user_id = add_profile(factory, NOW)
    seeder = make_seeder(factory)
    seeder.ensure_default_categories(user_id)

    with factory() as session:
        leisure = session.scalar(
            select(Category).where(
                Category.user_id == user_id, Category.name == "娯楽費"
            )
        )
        deleted = CategoryService(session, user_id).delete(leisure.id)
    seeder.record_deleted_default_category(user_id, deleted.name, deleted.type)

    assert seeder.ensure_default_categories(user_id) == 1

    later = make_seeder(factory, now=NOW + timedelta(minutes=30))
    with factory() as session:
        leisure = session.scalar(
            select(Category).where(
                Category.user_id == user_id, Category.name == "娯楽費"
            )
        )
        CategoryService(session, user_id).delete(leisure.id)
    assert later.ensure_default_categories(user_id) == 0
    assert count(factory, Category, user_id) == 11


def test_tombstone_other_integrity_errors_are_failures(caplog) -> None:
    _, factory = make_factory()

    with caplog.at_level(logging.ERROR, logger="seeding"):
        outcome = make_seeder(factory).record_deleted_default_category(
            1, None, TransactionType.expense
        )

    assert outcome == TombstoneOutcome.failed
    assert "tombstone_failed" in caplog.text
    assert count(factory, DeletedDefaultCategory, 1) == 0
