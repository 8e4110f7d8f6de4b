"""Ledger aggregation package."""

from family_ledger.queries.stats import (
    EXPORT_COLUMNS,
    LedgerSummary,
    Period,
    export_rows,
    filter_period,
    filter_type,
    group_by_date,
    period_bounds,
    summarize,
    totals_by_category,
)

__all__ = [
    "EXPORT_COLUMNS",
    "LedgerSummary",
    "Period",
    "export_rows",
    "filter_period",
    "filter_type",
    "group_by_date",
    "period_bounds",
    "summarize",
    "totals_by_category",
]
