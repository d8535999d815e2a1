"""Dashboard payload composed from the grade, attendance and finance aggregators."""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any

from flask import current_app

from models import SchoolClass, Student, Teacher
from utils.attendance_stats import attendance_rate, attendance_series, configured_late_weight, load_attendance
from utils.db_helpers import aggregation_guard
from utils.errors import NotFoundError, ValidationError
from utils.finance_stats import load_fees, monthly_revenue, revenue_between, shift_month
from utils.grade_stats import load_grades, student_overall_average, subject_averages

RANGES = {
    "last7days": 7,
    "last30days": 30,
    "last3months": 90,
    "last6months": 180,
    "lastyear": 365,
}
DEFAULT_RANGE = "last6months"
SECTIONS = ("overview", "attendance", "performance", "financial", "enrollment", "trends")


def range_window(range_name: str, today: date | None = None) -> tuple[date, date, date]:
    """``(previous_start, start, end)`` for a named range.

    The current window is ``[start, end)`` and ends after today; the previous
    window ``[previous_start, start)`` has the same length.
    """
    if range_name not in RANGES:
        raise ValidationError(f"range must be one of {', '.join(RANGES)}", field="range")
    today = today or date.today()
    days = RANGES[range_name]
    end = today + timedelta(days=1)
    start = end - timedelta(days=days)
    return start - timedelta(days=days), start, end


def trend_delta(current: float, previous: float) -> float:
    """Percent change from ``previous``; 0 when there is nothing to compare to."""
    if not previous:
        return 0.0
    return round((float(current) - float(previous)) / float(previous) * 100, 2)


def _split(rows, start: date, attr: str = "date"):
    before, current = [], []
    for row in rows:
        (current if getattr(row, attr) >= start else before).append(row)
    return before, current


def _performance(current_grades, previous_grades) -> list[dict[str, Any]]:
    now_avg = subject_averages(current_grades)
    prev_avg = subject_averages(previous_grades)
    students = defaultdict(set)
    for grade in current_grades:
        students[grade.subject_name].add(grade.student_id)
    return [
        {
            "subject": subject,
            "average": average,
            "students": len(students[subject]),
            "trend": trend_delta(average, prev_avg.get(subject, 0.0)),
        }
        for subject, average in now_avg.items()
    ]


def _enrollment() -> list[dict[str, Any]]:
    by_grade: dict[str, dict[str, int]] = defaultdict(lambda: {"students": 0, "capacity": 0, "classes": 0})
    for school_class in SchoolClass.query.filter_by(status="active").order_by(SchoolClass.grade).all():
        bucket = by_grade[school_class.grade]
        bucket["students"] += school_class.student_count
        bucket["capacity"] += school_class.capacity or 0
        bucket["classes"] += 1
    return [
        {
            "grade": grade,
            **counts,
            "utilization": round(counts["students"] / counts["capacity"] * 100, 2) if counts["capacity"] else 0.0,
        }
        for grade, counts in sorted(by_grade.items())
    ]


def build_dashboard(range_name: str = DEFAULT_RANGE, today: date | None = None) -> dict[str, Any]:
    """Assemble every dashboard section for ``range_name``.

    Any store failure raises ``AggregationError``; no partial payload is
    returned.
    """
    today = today or date.today()
    previous_start, start, end = range_window(range_name, today)
    days = RANGES[range_name]
    months = max(1, round(days / 30))
    cfg = current_app.config
    weight = configured_late_weight()

    first_year, first_month = shift_month(today.year, today.month, -(months - 1))
    revenue_from = min(previous_start, date(first_year, first_month, 1))

    with aggregation_guard("analytics dashboard"):
        grades = load_grades(start=previous_start, end=end)
        records = load_attendance(previous_start, end)
        fees = load_fees(paid_from=revenue_from)

        active_students = Student.query.filter_by(status="active")
        total_students = active_students.count()
        students_before = active_students.filter(Student.admission_date < start).count()
        total_teachers = Teacher.query.filter_by(status="active").count()
        total_classes = SchoolClass.query.filter_by(status="active").count()
        enrollment = _enrollment()

    previous_grades, current_grades = _split(grades, start)
    previous_records, current_records = _split(records, start)

    attendance_now = attendance_rate(current_records, weight)
    attendance_before = attendance_rate(previous_records, weight)
    revenue_now = revenue_between(fees, start, end)
    revenue_before = revenue_between(fees, previous_start, start)
    performance_now = student_overall_average(current_grades)
    performance_before = student_overall_average(previous_grades)

    return {
        "overview": {
            "totalStudents": total_students,
            "totalTeachers": total_teachers,
            "totalClasses": total_classes,
            "averageAttendance": attendance_now,
            "totalRevenue": revenue_now,
            "averagePerformance": performance_now,
        },
        "attendance": attendance_series(
            current_records, start, end, weight=weight, daily_max_days=cfg.get("ATTENDANCE_DAILY_MAX_DAYS", 30)
        ),
        "performance": _performance(current_grades, previous_grades),
        "financial": monthly_revenue(fees, months, today),
        "enrollment": enrollment,
        "trends": {
            "studentGrowth": trend_delta(total_students, students_before),
            "attendanceChange": trend_delta(attendance_now, attendance_before),
            "revenueGrowth": trend_delta(revenue_now, revenue_before),
            "performanceImprovement": trend_delta(performance_now, performance_before),
        },
        "range": range_name,
        "window": {"start": start.isoformat(), "end": (end - timedelta(days=1)).isoformat()},
        "generatedAt": datetime.utcnow().isoformat(),
    }


def dashboard_section(section: str, range_name: str = DEFAULT_RANGE, today: date | None = None) -> Any:
    if section not in SECTIONS:
        raise NotFoundError(f"Analytics type '{section}' not found")
    return build_dashboard(range_name, today)[section]
