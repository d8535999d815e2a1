from __future__ import annotations

import calendar
from collections import Counter
from datetime import date, datetime
from typing import Any, Iterable

from models import Fee
from utils.db_helpers import aggregation_guard


def _money(value: Any) -> float:
    return float(value or 0)


def _unpaid_part(fee: Fee) -> float:
    return max(0.0, _money(fee.amount) - _money(fee.paid_amount))


def financial_summary(fees: list[Fee]) -> dict[str, Any]:
    """Collected / pending / overdue totals plus distributions.

    Every sum accumulates non-negative terms only.
    """
    collected = sum(max(0.0, _money(f.paid_amount)) for f in fees if f.status == "paid")
    pending = sum(_unpaid_part(f) for f in fees if f.status == "pending")
    overdue = sum(_unpaid_part(f) for f in fees if f.status == "overdue")
    partial = sum(_unpaid_part(f) for f in fees if f.status == "partial")
    billed = sum(max(0.0, _money(f.amount)) for f in fees)
    paid = sum(max(0.0, _money(f.paid_amount)) for f in fees)
    return {
        "totalFees": len(fees),
        "totalCollected": round(collected, 2),
        "totalPending": round(pending, 2),
        "totalOverdue": round(overdue, 2),
        "totalPartialOutstanding": round(partial, 2),
        "totalBilled": round(billed, 2),
        "totalPaid": round(paid, 2),
        "collectionRate": round(paid / billed * 100, 2) if billed > 0 else 0.0,
        "statusDistribution": dict(Counter(f.status for f in fees)),
        "typeDistribution": dict(Counter(f.type for f in fees)),
    }


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def monthly_revenue(fees: Iterable[Fee], months: int = 6, today: date | None = None) -> list[dict[str, Any]]:
    """Paid amounts bucketed by ``paid_date`` month, trailing ``months`` months.

    Oldest month first; months without payments report 0.
    """
    today = today or date.today()
    months = max(1, int(months))
    keys = [shift_month(today.year, today.month, -offset) for offset in range(months - 1, -1, -1)]
    totals = {key: 0.0 for key in keys}
    first_year, first_month = keys[0]
    window_start = date(first_year, first_month, 1)
    for fee in fees:
        if fee.paid_date is None:
            continue
        paid_on = fee.paid_date.date() if isinstance(fee.paid_date, datetime) else fee.paid_date
        if paid_on < window_start or paid_on > today:
            continue
        key = (paid_on.year, paid_on.month)
        if key in totals:
            totals[key] += max(0.0, _money(fee.paid_amount))
    return [
        {
            "month": f"{year:04d}-{month:02d}",
            "label": calendar.month_abbr[month],
            "revenue": round(totals[(year, month)], 2),
        }
        for year, month in keys
    ]


def revenue_between(fees: Iterable[Fee], start: date, end: date) -> float:
    """Sum of paid amounts whose ``paid_date`` falls in ``[start, end)``."""
    total = 0.0
    for fee in fees:
        if fee.paid_date is None:
            continue
        paid_on = fee.paid_date.date() if isinstance(fee.paid_date, datetime) else fee.paid_date
        if start <= paid_on < end:
            total += max(0.0, _money(fee.paid_amount))
    return round(total, 2)


def load_fees(
    student_id: int | None = None,
    academic_year: str | None = None,
    term: str | None = None,
    statuses: Iterable[str] | None = None,
    paid_from: date | None = None,
) -> list[Fee]:
    with aggregation_guard("financial statistics"):
        query = Fee.query
        if student_id is not None:
            query = query.filter(Fee.student_id == student_id)
        if academic_year:
            query = query.filter(Fee.academic_year == academic_year)
        if term:
            query = query.filter(Fee.term == term)
        if statuses:
            query = query.filter(Fee.status.in_(list(statuses)))
        if paid_from is not None:
            query = query.filter(Fee.paid_date >= datetime.combine(paid_from, datetime.min.time()))
        return query.order_by(Fee.due_date, Fee.id).all()
