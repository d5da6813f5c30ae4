"""Aggregations behind the dashboard, analytics and report views.

Everything here is a pure function of the transactions passed in. Amounts are
non-negative; whether a row adds to income or expense is decided by its type.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from models import TransactionType
from periods import Period, add_months, iter_months, month_end, shift_years

UNCATEGORIZED = "未分類"

_ZERO = Decimal("0")


@dataclass(frozen=True)
class TransactionRow:
    type: TransactionType
    amount: Decimal
    date: date
    category_name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_transaction(cls, txn) -> "TransactionRow":
        category = getattr(txn, "category", None)
        return cls(
            type=TransactionType(txn.type),
            amount=_to_decimal(txn.amount),
            date=txn.date,
            category_name=category.name if category is not None else None,
            description=txn.description,
        )


@dataclass(frozen=True)
class Totals:
    income: Decimal
    expense: Decimal
    balance: Decimal


@dataclass(frozen=True)
class MonthlySummary:
    month: str
    income: Decimal
    expense: Decimal
    balance: Decimal


@dataclass(frozen=True)
class CategoryShare:
    type: TransactionType
    name: str
    amount: Decimal
    count: int
    percentage: float


@dataclass(frozen=True)
class CategoryDrilldown:
    name: str
    amount: Decimal
    transactions: list[TransactionRow] = field(default_factory=list)


@dataclass(frozen=True)
class MetricChange:
    current: Decimal
    previous: Decimal
    delta: Decimal
    delta_percent: int


@dataclass(frozen=True)
class PeriodComparison:
    current: Totals
    previous: Totals
    income: MetricChange
    expense: MetricChange
    balance: MetricChange


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _category_label(row: TransactionRow) -> str:
    return row.category_name or UNCATEGORIZED


def period_total(rows: Iterable[TransactionRow], txn_type: TransactionType) -> Decimal:
    return sum(
        (_to_decimal(row.amount) for row in rows if row.type == txn_type), _ZERO
    )


def period_totals(rows: Iterable[TransactionRow]) -> Totals:
    income = _ZERO
    expense = _ZERO
    for row in rows:
        if row.type == TransactionType.income:
            income += _to_decimal(row.amount)
        elif row.type == TransactionType.expense:
            expense += _to_decimal(row.amount)
    return Totals(income=income, expense=expense, balance=income - expense)


def monthly_series(
    rows: Iterable[TransactionRow], start: date, end: date
) -> list[MonthlySummary]:
    """One summary per calendar month touched by ``[start, end]``, zero-filled."""
    if start > end:
        raise ValueError("Start date must be before end date")

    income: dict[tuple[int, int], Decimal] = {}
    expense: dict[tuple[int, int], Decimal] = {}
    for row in rows:
        if row.date < start or row.date > end:
            continue
        key = (row.date.year, row.date.month)
        bucket = income if row.type == TransactionType.income else expense
        bucket[key] = bucket.get(key, _ZERO) + _to_decimal(row.amount)

    out: list[MonthlySummary] = []
    for month in iter_months(start, end):
        key = (month.year, month.month)
        month_income = income.get(key, _ZERO)
        month_expense = expense.get(key, _ZERO)
        out.append(
            MonthlySummary(
                month=f"{month.year:04d}-{month.month:02d}",
                income=month_income,
                expense=month_expense,
                balance=month_income - month_expense,
            )
        )
    return out


def monthly_trend(
    rows: Iterable[TransactionRow], anchor: date, *, months: int = 6
) -> list[MonthlySummary]:
    """Trailing ``months`` calendar months ending with ``anchor``'s month."""
    if months < 1:
        raise ValueError("Trend needs at least one month")
    first = add_months(anchor, -(months - 1))
    return monthly_series(rows, first, month_end(anchor))


def category_breakdown(
    rows: Iterable[TransactionRow],
    txn_type: Optional[TransactionType] = None,
) -> list[CategoryShare]:
    """Group by (type, category name) and rank by amount.

    Rows without a category are reported under ``UNCATEGORIZED``. Each share's
    percentage is relative to the total of its own type.
    """
    amounts: dict[tuple[TransactionType, str], Decimal] = {}
    counts: dict[tuple[TransactionType, str], int] = {}
    type_totals: dict[TransactionType, Decimal] = {}
    for row in rows:
        row_type = TransactionType(row.type)
        if txn_type is not None and row_type != txn_type:
            continue
        key = (row_type, _category_label(row))
        amount = _to_decimal(row.amount)
        amounts[key] = amounts.get(key, _ZERO) + amount
        counts[key] = counts.get(key, 0) + 1
        type_totals[row_type] = type_totals.get(row_type, _ZERO) + amount

    shares: list[CategoryShare] = []
    for (row_type, name), amount in amounts.items():
        total = type_totals[row_type]
        percentage = float(amount / total * 100) if total else 0.0
        shares.append(
            CategoryShare(
                type=row_type,
                name=name,
                amount=amount,
                count=counts[(row_type, name)],
                percentage=percentage,
            )
        )
    shares.sort(key=lambda share: share.amount, reverse=True)
    return shares


def category_drilldown(
    rows: Iterable[TransactionRow], txn_type: TransactionType
) -> list[CategoryDrilldown]:
    grouped: dict[str, list[TransactionRow]] = {}
    for row in rows:
        if row.type != txn_type:
            continue
        grouped.setdefault(_category_label(row), []).append(row)

    out = [
        CategoryDrilldown(
            name=name,
            amount=sum((_to_decimal(r.amount) for r in items), _ZERO),
            transactions=sorted(items, key=lambda r: r.date, reverse=True),
        )
        for name, items in grouped.items()
    ]
    out.sort(key=lambda item: item.amount, reverse=True)
    return out


def previous_year_period(period: Period) -> Period:
    return Period(
        "previous_year",
        shift_years(period.start, -1),
        shift_years(period.end, -1),
    )


def percent_change(current: Decimal, previous: Decimal) -> int:
    if previous == 0:
        return 0
    ratio = (current - previous) / previous * 100
    # half-way values round up, e.g. -2.5 -> -2
    return math.floor(ratio + Decimal("0.5"))


def _change(current: Decimal, previous: Decimal) -> MetricChange:
    return MetricChange(
        current=current,
        previous=previous,
        delta=current - previous,
        delta_percent=percent_change(current, previous),
    )


def compare_periods(
    current_rows: Sequence[TransactionRow], previous_rows: Sequence[TransactionRow]
) -> PeriodComparison:
    current = period_totals(current_rows)
    previous = period_totals(previous_rows)
    return PeriodComparison(
        current=current,
        previous=previous,
        income=_change(current.income, previous.income),
        expense=_change(current.expense, previous.expense),
        balance=_change(current.balance, previous.balance),
    )
