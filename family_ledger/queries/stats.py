"""
Ledger Aggregations

Pure functions over a ledger snapshot, consumed by the listing, statistics
and export views. No I/O and no side effects: callers pass the snapshot
they already hold from a LedgerSubscription.

Supported periods:
- today
- this_week (weeks start on Monday)
- this_month / this_year
- month ("YYYY-MM") / year ("YYYY") selectors
- custom inclusive date range
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from family_ledger.models.entities import Transaction, TransactionType


EXPORT_COLUMNS = ("Date", "Type", "Category", "Account", "Amount", "Note")


class Period(str, Enum):
    """Date windows offered by the listing and statistics views."""
    TODAY = "today"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    THIS_YEAR = "this_year"
    MONTH = "month"
    YEAR = "year"
    CUSTOM = "custom"


class LedgerSummary(BaseModel):
    """Income, expense and balance of a set of transactions. Transfers are excluded."""

    income: Decimal = Field(default=Decimal("0"))
    expense: Decimal = Field(default=Decimal("0"))

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


def period_bounds(
    period: Period,
    today: Optional[date] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    month: Optional[str] = None,
    year: Optional[str] = None,
) -> Optional[tuple[date, date]]:
    """
    Inclusive (first, last) day of a period.

    Returns None when the period is unbounded (a custom range missing
    either end).
    """
    today = today or date.today()

    if period == Period.TODAY:
        return today, today

    if period == Period.THIS_WEEK:
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=6)

    if period == Period.THIS_MONTH:
        return _month_bounds(today.year, today.month)

    if period == Period.THIS_YEAR:
        return date(today.year, 1, 1), date(today.year, 12, 31)

    if period == Period.MONTH:
        selector = month or today.strftime("%Y-%m")
        year_part, month_part = selector.split("-", 1)
        return _month_bounds(int(year_part), int(month_part))

    if period == Period.YEAR:
        selected = int(year or today.year)
        return date(selected, 1, 1), date(selected, 12, 31)

    if start is None or end is None:
        return None
    return start, end


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    next_month = date(year + month // 12, month % 12 + 1, 1)
    return first, next_month - timedelta(days=1)


def filter_period(
    transactions: Sequence[Transaction],
    period: Period,
    today: Optional[date] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    month: Optional[str] = None,
    year: Optional[str] = None,
) -> list[Transaction]:
    """Transactions dated within the period, in input order."""
    bounds = period_bounds(Period(period), today, start, end, month, year)
    if bounds is None:
        return list(transactions)
    first, last = bounds
    return [t for t in transactions if first <= t.date <= last]


def filter_type(transactions: Sequence[Transaction], transaction_type: TransactionType) -> list[Transaction]:
    return [t for t in transactions if t.type == transaction_type]


def group_by_date(transactions: Sequence[Transaction]) -> dict[date, list[Transaction]]:
    """Group by calendar date; keys and members keep input order."""
    groups: dict[date, list[Transaction]] = {}
    for transaction in transactions:
        groups.setdefault(transaction.date, []).append(transaction)
    return groups


def totals_by_category(transactions: Sequence[Transaction]) -> list[tuple[str, Decimal]]:
    """Sum per category, largest first."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for transaction in transactions:
        totals[transaction.category] += transaction.amount
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def summarize(transactions: Sequence[Transaction]) -> LedgerSummary:
    income = sum(
        (t.amount for t in transactions if t.type == TransactionType.INCOME),
        Decimal("0"),
    )
    expense = sum(
        (t.amount for t in transactions if t.type == TransactionType.EXPENSE),
        Decimal("0"),
    )
    return LedgerSummary(income=income, expense=expense)


def export_rows(transactions: Sequence[Transaction]) -> list[dict[str, object]]:
    """
    Rows for spreadsheet/CSV export.

    Column order is fixed; external dashboards read these positionally.
    """
    return [
        dict(zip(EXPORT_COLUMNS, (
            t.date.isoformat(),
            t.type.value,
            t.category,
            t.account,
            t.amount,
            t.note or "",
        )))
        for t in transactions
    ]
