from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from analytics import (
    CategoryDrilldown,
    CategoryShare,
    MonthlySummary,
    PeriodComparison,
    Totals,
    TransactionRow,
    category_breakdown,
    category_drilldown,
    compare_periods,
    monthly_series,
    monthly_trend,
    period_totals,
    previous_year_period,
)
from models import Category, Profile, Subcategory, Transaction, TransactionType
from periods import Period, add_months, month_end, month_start
from schemas import CategoryIn, ProfileIn, SubcategoryIn, TransactionIn


def get_current_user_id() -> int:
    return 1


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None


@dataclass(frozen=True)
class DeletedCategory:
    id: int
    user_id: int
    name: str
    type: TransactionType
    is_default: bool


class ProfileService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Profile:
        profile = self.session.get(Profile, user_id)
        if not profile:
            raise ValueError("Profile not found")
        return profile

    def create(self, data: ProfileIn) -> Profile:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(Profile).where(Profile.email == email))
        if existing:
            raise ValueError("Profile with this email already exists")
        profile = Profile(email=email, display_name=data.display_name)
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return profile


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def list_all(
        self,
        txn_type: Optional[TransactionType] = None,
        *,
        only_default: bool = False,
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.created_at, Category.id)
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        if only_default:
            stmt = stmt.where(Category.is_default.is_(True))
        return self.session.scalars(stmt).all()

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_default=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        category = self._get_owned(category_id)
        name = name.strip()
        if not name:
            raise ValueError("Category name cannot be empty")
        category.name = name
        self.session.commit()
        return category

    def usage_count(self, category_id: int) -> int:
        category = self._get_owned(category_id)
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.category_id == category.id,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def delete(self, category_id: int) -> DeletedCategory:
        """Delete a category.

        Transactions that used it become uncategorized. Its subcategories are
        kept but lose their parent link.
        """
        category = self._get_owned(category_id)
        deleted = DeletedCategory(
            id=category.id,
            user_id=category.user_id,
            name=category.name,
            type=TransactionType(category.type),
            is_default=category.is_default,
        )
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category_id == category.id,
            )
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()
        return deleted


class SubcategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_for_categories(self, category_ids: list[int]) -> list[Subcategory]:
        if not category_ids:
            return []
        stmt = (
            select(Subcategory)
            .where(
                Subcategory.user_id == self.user_id,
                Subcategory.category_id.in_(category_ids),
            )
            .order_by(Subcategory.category_id, Subcategory.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: SubcategoryIn) -> Subcategory:
        category = self.session.get(Category, data.category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        name = data.name.strip()
        if not name:
            raise ValueError("Subcategory name cannot be empty")
        existing = self.session.scalar(
            select(Subcategory).where(
                Subcategory.user_id == self.user_id,
                Subcategory.category_id == category.id,
                func.lower(Subcategory.name) == name.lower(),
            )
        )
        if existing:
            raise ValueError("Subcategory with this name already exists")
        subcategory = Subcategory(
            user_id=self.user_id,
            category_id=category.id,
            name=name,
            is_default=False,
        )
        self.session.add(subcategory)
        self.session.commit()
        self.session.refresh(subcategory)
        return subcategory

    def delete(self, subcategory_id: int) -> None:
        subcategory = self.session.get(Subcategory, subcategory_id)
        if not subcategory or subcategory.user_id != self.user_id:
            raise ValueError("Subcategory not found")
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.subcategory_id == subcategory.id,
            )
            .values(subcategory_id=None)
        )
        self.session.delete(subcategory)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _check_references(self, data: TransactionIn) -> None:
        if data.category_id is None:
            if data.subcategory_id is not None:
                raise ValueError("Subcategory requires a category")
            return
        category = self.session.get(Category, data.category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        if data.subcategory_id is not None:
            subcategory = self.session.get(Subcategory, data.subcategory_id)
            if (
                not subcategory
                or subcategory.user_id != self.user_id
                or subcategory.category_id != category.id
            ):
                raise ValueError("Subcategory not found")

    def create(self, data: TransactionIn) -> Transaction:
        self._check_references(data)
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount=data.amount,
            date=data.date,
            category_id=data.category_id,
            subcategory_id=data.subcategory_id,
            description=(data.description or "").strip() or None,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_references(data)
        txn.type = data.type
        txn.amount = data.amount
        txn.date = data.date
        txn.category_id = data.category_id
        txn.subcategory_id = data.subcategory_id
        txn.description = (data.description or "").strip() or None
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        self.session.delete(txn)
        self.session.commit()

    def list_for_period(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.subcategory)
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                func.lower(func.coalesce(Transaction.description, "")).like(like)
            )
        return self.session.scalars(stmt).all()


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.transactions = TransactionService(session, self.user_id)

    def _rows(
        self, period: Period, txn_type: Optional[TransactionType] = None
    ) -> list[TransactionRow]:
        txns = self.transactions.list_for_period(
            period, TransactionFilters(type=txn_type)
        )
        return [TransactionRow.from_transaction(txn) for txn in txns]

    def kpis(self, period: Period) -> Totals:
        return period_totals(self._rows(period))

    def monthly_series(self, period: Period) -> list[MonthlySummary]:
        return monthly_series(self._rows(period), period.start, period.end)

    def category_breakdown(
        self, period: Period, txn_type: Optional[TransactionType] = None
    ) -> list[CategoryShare]:
        return category_breakdown(self._rows(period, txn_type), txn_type)

    def category_transactions(
        self, period: Period, txn_type: TransactionType
    ) -> list[CategoryDrilldown]:
        return category_drilldown(self._rows(period, txn_type), txn_type)

    def year_over_year(self, period: Period) -> PeriodComparison:
        previous = previous_year_period(period)
        return compare_periods(self._rows(period), self._rows(previous))

    def monthly_report(
        self, month: date, *, trend_months: int = 6
    ) -> dict[str, object]:
        """Trailing trend up to ``month`` plus that month's expense breakdown."""
        first = month_start(month)
        trend_period = Period(
            "trend", add_months(first, -(trend_months - 1)), month_end(first)
        )
        month_period = Period("month", first, month_end(first))
        return {
            "month": f"{first.year:04d}-{first.month:02d}",
            "trend": monthly_trend(
                self._rows(trend_period), first, months=trend_months
            ),
            "expense_breakdown": self.category_breakdown(
                month_period, TransactionType.expense
            ),
        }
