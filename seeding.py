"""Default category/subcategory bootstrapping for newly registered users.

Seeding runs only inside a short window after the profile was created. Both
steps are best-effort: store failures are logged and reported as zero rows
created, never raised, so the page load or sign-up that triggered them is
unaffected. Each step reads what already exists before inserting, so calling
them again (or calling the subcategory step after an interrupted run) only
fills in what is missing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from defaults import DEFAULT_CATEGORIES, DEFAULT_SUBCATEGORIES
from models import (
    Category,
    DeletedDefaultCategory,
    Profile,
    Subcategory,
    TransactionType,
)

logger = logging.getLogger(__name__)

_UNDEFINED_TABLE_SQLSTATE = "42P01"
_UNIQUE_VIOLATION_SQLSTATE = "23505"


@dataclass(frozen=True)
class SeedResult:
    categories_created: int
    subcategories_created: int


class TombstoneOutcome(str, Enum):
    recorded = "recorded"
    duplicate = "duplicate"
    missing_table = "missing_table"
    failed = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _sqlstate(exc: SQLAlchemyError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _is_missing_table(exc: SQLAlchemyError) -> bool:
    if _sqlstate(exc) == _UNDEFINED_TABLE_SQLSTATE:
        return True
    return "no such table" in str(getattr(exc, "orig", None) or exc).lower()


def _is_unique_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "unique constraint failed" in str(exc.orig or exc).lower()


class TaxonomySeeder:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        clock: Optional[Callable[[], datetime]] = None,
        new_user_window: Optional[timedelta] = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock or _utcnow
        if new_user_window is None:
            new_user_window = timedelta(seconds=get_settings().new_user_window_secs)
        self.new_user_window = new_user_window

    def _is_new_user(self, session: Session, user_id: int) -> bool:
        profile = session.get(Profile, user_id)
        if profile is None:
            logger.info(f"seed_skipped: user_id={user_id} reason=no_profile")
            return False
        age = _as_utc(self.clock()) - _as_utc(profile.created_at)
        if age >= self.new_user_window:
            logger.info(
                f"seed_skipped: user_id={user_id} reason=not_new age_secs={int(age.total_seconds())}"
            )
            return False
        return True

    def ensure_default_categories(self, user_id: int) -> int:
        """Insert the default categories this user does not have yet.

        Deletion tombstones are not consulted; outside the new-user window
        nothing is ever recreated anyway.
        """
        try:
            with session_scope(self.session_factory) as session:
                if not self._is_new_user(session, user_id):
                    return 0
                existing = {
                    (row.name, TransactionType(row.type))
                    for row in session.execute(
                        select(Category.name, Category.type).where(
                            Category.user_id == user_id,
                            Category.is_default.is_(True),
                        )
                    )
                }
                missing = [
                    default
                    for default in DEFAULT_CATEGORIES
                    if (default.name, default.type) not in existing
                ]
                if not missing:
                    return 0
                session.add_all(
                    [
                        Category(
                            user_id=user_id,
                            name=default.name,
                            type=default.type,
                            is_default=True,
                        )
                        for default in missing
                    ]
                )
        except SQLAlchemyError:
            logger.exception(f"seed_categories_failed: user_id={user_id}")
            return 0
        logger.info(f"seed_categories: user_id={user_id} created={len(missing)}")
        return len(missing)

    def create_default_subcategories(self, user_id: int) -> int:
        """Attach default subcategories to whichever parents the user has."""
        try:
            with session_scope(self.session_factory) as session:
                if not self._is_new_user(session, user_id):
                    return 0
                category_ids = {
                    (row.name, TransactionType(row.type)): row.id
                    for row in session.execute(
                        select(Category.id, Category.name, Category.type)
                        .where(Category.user_id == user_id)
                        .order_by(Category.id)
                    )
                }
                existing = {
                    (row.category_id, row.name)
                    for row in session.execute(
                        select(Subcategory.category_id, Subcategory.name).where(
                            Subcategory.user_id == user_id
                        )
                    )
                }
                to_create: list[Subcategory] = []
                for default in DEFAULT_SUBCATEGORIES:
                    category_id = category_ids.get(
                        (default.category_name, default.type)
                    )
                    if category_id is None:
                        continue
                    if (category_id, default.name) in existing:
                        continue
                    to_create.append(
                        Subcategory(
                            user_id=user_id,
                            category_id=category_id,
                            name=default.name,
                            is_default=True,
                        )
                    )
                if not to_create:
                    return 0
                session.add_all(to_create)
        except SQLAlchemyError:
            logger.exception(f"seed_subcategories_failed: user_id={user_id}")
            return 0
        logger.info(f"seed_subcategories: user_id={user_id} created={len(to_create)}")
        return len(to_create)

    def ensure_defaults(self, user_id: int) -> SeedResult:
        categories_created = self.ensure_default_categories(user_id)
        subcategories_created = self.create_default_subcategories(user_id)
        return SeedResult(
            categories_created=categories_created,
            subcategories_created=subcategories_created,
        )

    def record_deleted_default_category(
        self, user_id: int, category_name: str, category_type: TransactionType
    ) -> TombstoneOutcome:
        """Remember that a default category was deleted on purpose.

        Runs after the deletion has committed; whatever happens here leaves the
        deletion in place.
        """
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    DeletedDefaultCategory(
                        user_id=user_id,
                        category_name=category_name,
                        category_type=TransactionType(category_type),
                    )
                )
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                logger.info(
                    f"tombstone_exists: user_id={user_id} category={category_name}"
                )
                return TombstoneOutcome.duplicate
            logger.exception(
                f"tombstone_failed: user_id={user_id} category={category_name}"
            )
            return TombstoneOutcome.failed
        except (OperationalError, ProgrammingError) as exc:
            if _is_missing_table(exc):
                logger.warning(
                    "deleted_default_categories table does not exist; run the database migrations"
                )
                return TombstoneOutcome.missing_table
            logger.exception(
                f"tombstone_failed: user_id={user_id} category={category_name}"
            )
            return TombstoneOutcome.failed
        except SQLAlchemyError:
            logger.exception(
                f"tombstone_failed: user_id={user_id} category={category_name}"
            )
            return TombstoneOutcome.failed
        logger.info(f"tombstone_recorded: user_id={user_id} category={category_name}")
        return TombstoneOutcome.recorded
