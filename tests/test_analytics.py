from datetime import date, datetime, time, timedelta

import pytest

from extensions import db
from utils.analytics import RANGES, build_dashboard, dashboard_section, range_window, trend_delta
from utils.errors import NotFoundError, ValidationError


def test_trend_delta():
    assert trend_delta(110, 100) == 10.0
    assert trend_delta(90, 120) == -25.0
    assert trend_delta(5, 0) == 0.0


@pytest.mark.parametrize("name", list(RANGES))
def test_previous_window_has_equal_length_and_touches_current(name):
    previous_start, start, end = range_window(name, date(2024, 6, 15))
    assert (end - start).days == RANGES[name]
    assert (start - previous_start).days == RANGES[name]
    assert end == date(2024, 6, 16)


def test_unknown_range_is_rejected():
    with pytest.raises(ValidationError):
        range_window("forever")


def test_empty_store_yields_zeroes(app):
    data = build_dashboard("last30days")
    assert data["overview"]["totalStudents"] == 0
    assert data["overview"]["averageAttendance"] == 0.0
    assert data["overview"]["totalRevenue"] == 0.0
    assert data["attendance"] == []
    assert data["performance"] == []
    assert [point["revenue"] for point in data["financial"]] == [0.0]
    assert all(value == 0.0 for value in data["trends"].values())


def test_dashboard_compares_against_previous_window(
    app, make_student, make_class, make_grade, make_attendance, make_fee
):
    today = date.today()
    alice = make_student("Alice", admission_date=today - timedelta(days=60))
    bob = make_student("Bob", admission_date=today - timedelta(days=3))
    make_class("Grade 5", "5", students=[alice, bob], capacity=4)

    make_grade(alice, "Math", score=60, date=today - timedelta(days=10))
    make_grade(alice, "Math", score=80, date=today - timedelta(days=2))
    make_grade(bob, "Math", score=100, date=today - timedelta(days=2))

    make_attendance(alice, today - timedelta(days=9), "absent")
    make_attendance(alice, today - timedelta(days=8), "present")
    make_attendance(alice, today - timedelta(days=1), "present")

    noon = datetime.combine(today, time(12))
    make_fee(alice, amount=100, paid_amount=100, paid_date=noon - timedelta(days=10))
    make_fee(bob, amount=150, paid_amount=150, paid_date=noon - timedelta(days=1))

    data = build_dashboard("last7days", today)

    overview = data["overview"]
    assert overview["totalStudents"] == 2
    assert overview["totalClasses"] == 1
    assert overview["averageAttendance"] == 100.0
    assert overview["totalRevenue"] == 150.0
    assert overview["averagePerformance"] == 90.0

    assert data["trends"]["studentGrowth"] == 100.0
    assert data["trends"]["attendanceChange"] == 100.0
    assert data["trends"]["revenueGrowth"] == 50.0
    assert data["trends"]["performanceImprovement"] == 50.0

    assert data["performance"] == [{"subject": "Math", "average": 90.0, "students": 2, "trend": 50.0}]
    assert data["enrollment"] == [
        {"grade": "5", "students": 2, "capacity": 4, "classes": 1, "utilization": 50.0}
    ]
    assert len(data["attendance"]) == 1


def test_dashboard_section(app):
    assert dashboard_section("trends", "lastyear")["revenueGrowth"] == 0.0
    with pytest.raises(NotFoundError):
        dashboard_section("weather")


def test_store_failure_fails_closed(client, login):
    db.session.execute(db.text("DROP TABLE fees"))
    db.session.commit()
    login("admin")

    response = client.get("/api/analytics?range=last30days")
    body = response.get_json()

    assert response.status_code == 500
    assert body["success"] is False
    assert body["error"] == "AggregationError"
    assert "data" not in body
