from datetime import date, datetime
from types import SimpleNamespace

import pytest

from utils.attendance_stats import attendance_rate, attendance_series, late_weight
from utils.errors import ValidationError
from utils.finance_stats import financial_summary, monthly_revenue
from utils.grade_stats import (
    exam_snapshot,
    grade_distribution,
    pooled_average,
    student_overall_average,
    subject_averages,
)


def grade(subject, score, max_score=100, student_id=1, exam_type="midterm"):
    return SimpleNamespace(subject_name=subject, score=score, max_score=max_score, student_id=student_id, exam_type=exam_type)


def mark(day, status):
    return SimpleNamespace(date=day, status=status)


def fee(status, amount, paid_amount=0, paid_date=None, fee_type="tuition"):
    return SimpleNamespace(status=status, amount=amount, paid_amount=paid_amount, paid_date=paid_date, type=fee_type)


def test_empty_sets_report_zero():
    assert subject_averages([]) == {}
    assert pooled_average([]) == 0.0
    assert student_overall_average([]) == 0.0
    assert attendance_rate([]) == 0.0
    summary = financial_summary([])
    assert summary["totalCollected"] == summary["totalPending"] == summary["totalOverdue"] == 0
    assert summary["collectionRate"] == 0.0
    assert exam_snapshot([], 65) == {"completed": False, "averageScore": 0.0, "totalSubjects": 0, "passedSubjects": 0}


def test_subject_average_is_pooled():
    grades = [grade("Math", 10, 20), grade("Math", 90, 100)]
    # (10 + 90) / (20 + 100), not the mean of 50% and 90%.
    assert subject_averages(grades) == {"Math": 83.33}


def test_overall_average_is_mean_of_subject_averages():
    grades = [grade("Math", 60), grade("Math", 80), grade("Science", 90)]
    assert student_overall_average(grades) == 80.0


def test_distribution_lists_every_band():
    counts = grade_distribution([grade("Math", 98), grade("Math", 50), grade("Art", 51)])
    assert counts["A+"] == 1
    assert counts["F"] == 2
    assert counts["B"] == 0
    assert list(counts)[0] == "A+"


def test_exam_snapshot_counts_passed_subjects():
    snap = exam_snapshot([grade("Math", 70), grade("Science", 50), grade("Science", 60)], 65)
    assert snap == {"completed": True, "averageScore": 62.5, "totalSubjects": 2, "passedSubjects": 1}


def test_late_policy_weights():
    records = [mark(date(2024, 10, 1), "present"), mark(date(2024, 10, 1), "late")]
    assert attendance_rate(records, late_weight("absent")) == 50.0
    assert attendance_rate(records, late_weight("present")) == 100.0
    assert attendance_rate(records, late_weight("partial", 0.5)) == 75.0
    with pytest.raises(ValidationError):
        late_weight("sometimes")


def test_daily_series_omits_days_without_records():
    records = [
        mark(date(2024, 10, 1), "present"),
        mark(date(2024, 10, 1), "absent"),
        mark(date(2024, 10, 3), "present"),
    ]
    series = attendance_series(records, date(2024, 10, 1), date(2024, 10, 6), granularity="daily")
    assert [point["date"] for point in series] == ["2024-10-01", "2024-10-03"]
    assert [point["rate"] for point in series] == [50.0, 100.0]


def test_daily_points_carry_weighted_presence():
    records = [
        mark(date(2024, 10, 1), "present"),
        mark(date(2024, 10, 1), "late"),
        mark(date(2024, 10, 1), "absent"),
    ]
    (point,) = attendance_series(records, date(2024, 10, 1), date(2024, 10, 2), "daily", late_weight("partial", 0.5))
    assert point["present"] == 1.5
    assert point["total"] == 3
    assert point["rate"] == round(point["present"] / point["total"] * 100, 2) == 50.0


def test_monthly_series_averages_daily_rates_and_skips_empty_months():
    records = [
        mark(date(2024, 1, 8), "present"),
        mark(date(2024, 1, 9), "present"),
        mark(date(2024, 1, 9), "absent"),
        mark(date(2024, 3, 4), "absent"),
    ]
    series = attendance_series(records, date(2024, 1, 1), date(2024, 4, 1))
    assert [point["month"] for point in series] == ["2024-01", "2024-03"]
    assert series[0]["rate"] == 75.0
    assert series[0]["days"] == 2
    assert series[1]["rate"] == 0.0


def test_granularity_follows_range_length():
    records = [mark(date(2024, 1, 8), "present")]
    assert "date" in attendance_series(records, date(2024, 1, 1), date(2024, 1, 31))[0]
    assert "month" in attendance_series(records, date(2024, 1, 1), date(2024, 3, 1))[0]


def test_financial_summary_totals():
    fees = [
        fee("paid", 100, 100),
        fee("pending", 200, 0),
        fee("overdue", 300, 0),
        fee("partial", 100, 40, fee_type="transport"),
    ]
    summary = financial_summary(fees)
    assert summary["totalCollected"] == 100
    assert summary["totalPending"] == 200
    assert summary["totalOverdue"] == 300
    assert summary["totalPartialOutstanding"] == 60
    assert summary["totalBilled"] == 700
    assert summary["collectionRate"] == 20.0
    assert summary["typeDistribution"] == {"tuition": 3, "transport": 1}


def test_monthly_revenue_is_zero_filled_oldest_first():
    fees = [
        fee("paid", 100, 100, paid_date=datetime(2024, 5, 10, 12)),
        fee("partial", 100, 50, paid_date=datetime(2024, 6, 1, 8)),
        fee("paid", 999, 999, paid_date=datetime(2024, 2, 1, 8)),
        fee("pending", 100, 0),
    ]
    series = monthly_revenue(fees, months=3, today=date(2024, 6, 15))
    assert [point["month"] for point in series] == ["2024-04", "2024-05", "2024-06"]
    assert [point["revenue"] for point in series] == [0.0, 100.0, 50.0]
    assert series[1]["label"] == "May"


def test_monthly_revenue_crosses_year_boundary():
    series = monthly_revenue([], months=3, today=date(2025, 1, 20))
    assert [point["month"] for point in series] == ["2024-11", "2024-12", "2025-01"]
