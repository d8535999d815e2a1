from datetime import date, timedelta

from extensions import db
from models import Announcement, FeeReminder, Promotion, Resource


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"success": True, "status": "ok"}


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.get_json()["success"] is False


def test_listing_requires_login(client):
    assert client.get("/api/students").status_code == 401


def test_students_are_paginated(client, login, make_student):
    for index in range(12):
        make_student(f"Student {index:02d}")
    login("admin")

    body = client.get("/api/students?page=2&limit=5").get_json()

    assert body["success"] is True
    assert len(body["data"]) == 5
    assert body["pagination"] == {
        "currentPage": 2,
        "totalPages": 3,
        "totalStudents": 12,
        "hasNext": True,
        "hasPrev": True,
    }


def test_bad_pagination_is_a_validation_error(client, login):
    login("admin")
    response = client.get("/api/students?page=zero")
    assert response.status_code == 400
    assert response.get_json()["error"] == "ValidationError"


def test_student_cannot_list_students(client, login):
    login("student")
    assert client.get("/api/students").status_code == 403


def test_create_grade_requires_student_id(client, login):
    login("teacher")
    response = client.post("/api/grades", json={"subjectName": "Math", "examType": "quiz", "score": 5, "maxScore": 10, "term": "First Term"})
    body = response.get_json()
    assert response.status_code == 400
    assert body["field"] == "studentId"
    assert body["success"] is False


def test_create_grade_derives_grade_level(client, login, make_student):
    student = make_student()
    login("teacher")
    response = client.post(
        "/api/grades",
        json={"studentId": student.id, "subjectName": "Math", "examType": "quiz", "score": 18, "maxScore": 20, "term": "First Term"},
    )
    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["gradeLevel"] == "A-"
    assert data["className"] == student.class_name

    updated = client.put(f"/api/grades/{data['id']}", json={"score": 12}).get_json()["data"]
    assert updated["gradeLevel"] == "F"


def test_grade_for_missing_student_is_404(client, login):
    login("teacher")
    response = client.post(
        "/api/grades",
        json={"studentId": 404, "subjectName": "Math", "examType": "quiz", "score": 1, "maxScore": 2, "term": "First Term"},
    )
    assert response.status_code == 404


def test_student_sees_only_own_grade_analytics(client, login, make_user, make_student, make_grade):
    user = make_user("student")
    own = make_student("Alice", user=user)
    other = make_student("Bob")
    make_grade(own, "Math", score=90)
    login("student", user_id=user.id)

    assert client.get(f"/api/grades/analytics/student/{other.id}").status_code == 403
    body = client.get(f"/api/grades/analytics/student/{own.id}").get_json()
    assert body["data"]["overallAverage"] == 90.0


def test_class_grade_analytics(client, login, make_student, make_class, make_grade):
    alice = make_student("Alice")
    school_class = make_class(students=[alice])
    make_grade(alice, "Math", score=70, class_id=school_class.id)
    make_grade(alice, "Science", score=90, class_id=school_class.id)
    login("teacher")

    data = client.get(f"/api/grades/analytics/class/{school_class.id}").get_json()["data"]

    assert data["averageScore"] == 80.0
    assert data["gradeDistribution"]["C-"] == 1
    assert data["topStudents"][0]["name"] == "Alice"


def test_mark_class_attendance_and_read_analytics(client, login, make_student, make_class):
    alice = make_student("Alice")
    bob = make_student("Bob")
    school_class = make_class(students=[alice, bob])
    login("teacher")

    response = client.post(
        "/api/attendance",
        json={
            "date": "2024-10-01",
            "classId": school_class.id,
            "records": [{"studentId": alice.id, "status": "present"}, {"studentId": bob.id, "status": "late"}],
        },
    )
    assert response.status_code == 201

    body = client.get(
        f"/api/attendance/analytics?startDate=2024-10-01&endDate=2024-10-05&classId={school_class.id}&latePolicy=partial"
    ).get_json()
    assert body["data"]["summary"]["rate"] == 75.0
    assert [point["date"] for point in body["data"]["series"]] == ["2024-10-01"]


def test_fee_payment_flow(client, login, make_student):
    student = make_student()
    login("accountant")
    fee = client.post(
        "/api/fees",
        json={"studentId": student.id, "type": "tuition", "amount": 400, "dueDate": (date.today() + timedelta(days=30)).isoformat(), "term": "First Term"},
    ).get_json()["data"]
    assert fee["status"] == "pending"

    paid = client.post(f"/api/fees/{fee['id']}/payment", json={"amount": 150, "paymentMethod": "cash"}).get_json()["data"]
    assert paid["status"] == "partial"
    assert len(paid["paymentHistory"]) == 1

    refused = client.post(f"/api/fees/{fee['id']}/payment", json={"amount": -10, "paymentMethod": "cash"})
    assert refused.status_code == 400

    overview = client.get("/api/fees/analytics/overview").get_json()["data"]
    assert overview["totalPartialOutstanding"] == 250.0


def test_promote_non_eligible_returns_409(client, login, make_student):
    student = make_student()
    promotion = Promotion(
        student_id=student.id,
        student_name=student.name,
        current_class="Grade 5",
        current_grade="5",
        next_class="Grade 6",
        next_grade="6",
        academic_year="2024-25",
        term="Third Term",
        promotion_status="under_review",
    )
    db.session.add(promotion)
    db.session.commit()
    login("admin")

    response = client.post(f"/api/promotions/promote/{promotion.id}")

    assert response.status_code == 409
    assert response.get_json()["currentStatus"] == "under_review"


def test_evaluate_endpoint(client, login, make_student, make_class):
    school_class = make_class(students=[make_student()])
    login("admin")
    response = client.post(
        "/api/promotions/evaluate",
        json={"classId": school_class.id, "academicYear": "2024-25", "term": "Third Term", "requirements": {"minimumGrade": 50}},
    )
    body = response.get_json()
    assert response.status_code == 200
    assert body["data"]["evaluated"] == 1
    assert Promotion.query.one().min_grade == 50


def test_reminder_endpoints(client, login, make_student, make_fee):
    make_fee(make_student(), due_date=date.today())
    login("accountant")

    created = client.post("/api/fee-reminders/create", json={"reminderType": "on_due"})
    assert created.status_code == 201
    assert created.get_json()["data"]["count"] == 1

    sent = client.post("/api/fee-reminders/send", json={}).get_json()["data"]
    assert sent["sent"] == 1

    listing = client.get("/api/fee-reminders").get_json()
    assert listing["pagination"]["totalReminders"] == 1
    assert listing["data"][0]["status"] == "sent"


def test_analytics_is_staff_only(client, login):
    login("student")
    assert client.get("/api/analytics").status_code == 403
    login("admin")
    body = client.get("/api/analytics?range=last30days").get_json()
    assert body["success"] is True
    assert body["range"] == "last30days"
    assert set(body["data"]) >= {"overview", "attendance", "performance", "financial", "enrollment", "trends"}
    assert client.get("/api/analytics?range=someday").status_code == 400


def test_resources_and_announcements_are_filtered_by_role(client, login):
    db.session.add_all([
        Resource(name="Syllabus", access_level="public"),
        Resource(name="Worksheet", access_level="students"),
        Resource(name="Marking guide", access_level="teachers"),
        Announcement(title="Sports day", content="Friday", target_audience="all"),
        Announcement(title="Staff meeting", content="Monday", target_audience="teacher"),
    ])
    db.session.commit()

    login("student")
    resources = client.get("/api/resources").get_json()["data"]
    assert sorted(r["name"] for r in resources) == ["Syllabus", "Worksheet"]
    titles = [a["title"] for a in client.get("/api/announcements").get_json()["data"]]
    assert titles == ["Sports day"]

    login("teacher")
    assert len(client.get("/api/resources").get_json()["data"]) == 3


def test_reminder_fee_types_string_is_rejected(client, login, make_student, make_fee):
    make_fee(make_student(), due_date=date.today())
    login("accountant")

    response = client.post("/api/fee-reminders/create", json={"reminderType": "on_due", "feeTypes": "tuition"})

    assert response.status_code == 400
    assert response.get_json()["field"] == "feeTypes"
    assert FeeReminder.query.count() == 0
