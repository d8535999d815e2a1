from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Iterable

from flask import current_app

from models import Attendance
from utils.db_helpers import aggregation_guard
from utils.errors import ValidationError

LATE_POLICIES = ("absent", "present", "partial")
GRANULARITIES = ("daily", "monthly")


def late_weight(policy: str, partial_weight: float = 0.5) -> float:
    """How much a ``late`` mark counts toward presence."""
    if policy == "absent":
        return 0.0
    if policy == "present":
        return 1.0
    if policy == "partial":
        return max(0.0, min(1.0, float(partial_weight)))
    raise ValidationError(f"late policy must be one of {', '.join(LATE_POLICIES)}", field="latePolicy")


def configured_late_weight(policy: str | None = None) -> float:
    cfg = current_app.config
    return late_weight(policy or cfg.get("ATTENDANCE_LATE_POLICY", "absent"), cfg.get("ATTENDANCE_LATE_WEIGHT", 0.5))


def _presence(records: Iterable[Attendance], weight: float) -> tuple[float, int]:
    present = 0.0
    total = 0
    for record in records:
        total += 1
        if record.status == "present":
            present += 1
        elif record.status == "late":
            present += weight
    return present, total


def attendance_rate(records: Iterable[Attendance], weight: float = 0.0) -> float:
    """``present / total * 100``; late marks count ``weight`` of a presence."""
    present, total = _presence(records, weight)
    if not total:
        return 0.0
    return round(present / total * 100, 2)


def pick_granularity(start: date, end: date, daily_max_days: int = 30) -> str:
    return "daily" if (end - start).days <= daily_max_days else "monthly"


def attendance_series(
    records: Iterable[Attendance],
    start: date,
    end: date,
    granularity: str | None = None,
    weight: float = 0.0,
    daily_max_days: int = 30,
) -> list[dict[str, Any]]:
    """Rate series over ``[start, end)``.

    Daily buckets carry the pooled rate of the day; monthly buckets carry the
    mean of the daily rates inside the month. Buckets without records are
    left out of the series.
    """
    granularity = granularity or pick_granularity(start, end, daily_max_days)
    if granularity not in GRANULARITIES:
        raise ValidationError(f"granularity must be one of {', '.join(GRANULARITIES)}", field="granularity")

    by_day: dict[date, list[Attendance]] = defaultdict(list)
    for record in records:
        if start <= record.date < end:
            by_day[record.date].append(record)

    daily = []
    for day in sorted(by_day):
        present, total = _presence(by_day[day], weight)
        daily.append((day, round(present / total * 100, 2), round(present, 2), total))

    if granularity == "daily":
        return [
            {"date": day.isoformat(), "rate": rate, "present": present, "total": total}
            for day, rate, present, total in daily
        ]

    by_month: dict[tuple[int, int], list[float]] = defaultdict(list)
    for day, rate, _, _ in daily:
        by_month[(day.year, day.month)].append(rate)
    return [
        {
            "month": f"{year:04d}-{month:02d}",
            "label": calendar.month_abbr[month],
            "rate": round(sum(rates) / len(rates), 2),
            "days": len(rates),
        }
        for (year, month), rates in sorted(by_month.items())
    ]


def attendance_summary(records: list[Attendance], weight: float = 0.0) -> dict[str, Any]:
    counts = {"present": 0, "absent": 0, "late": 0}
    for record in records:
        counts[record.status] = counts.get(record.status, 0) + 1
    return {
        "rate": attendance_rate(records, weight),
        "total": len(records),
        **counts,
    }


def load_attendance(
    start: date | None = None,
    end: date | None = None,
    student_id: int | None = None,
    class_id: int | None = None,
) -> list[Attendance]:
    """Records with ``start <= date < end`` (either bound optional)."""
    with aggregation_guard("attendance statistics"):
        query = Attendance.query
        if start is not None:
            query = query.filter(Attendance.date >= start)
        if end is not None:
            query = query.filter(Attendance.date < end)
        if student_id is not None:
            query = query.filter(Attendance.student_id == student_id)
        if class_id is not None:
            query = query.filter(Attendance.class_id == class_id)
        return query.order_by(Attendance.date).all()


def inclusive_end(day: date) -> date:
    return day + timedelta(days=1)
