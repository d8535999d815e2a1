from datetime import date

import pytest

from app import create_app
from config import TestConfig
from extensions import db
from models import Attendance, Fee, Grade, SchoolClass, Student, User
from utils.fees import apply_fee_status, generate_invoice_number
from utils.grading import letter_grade


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(role="admin", user_id=1, name="Test User"):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["role"] = role
            sess["name"] = name

    return _login


@pytest.fixture
def make_user(app):
    def _make(role="student", email=None, name="User"):
        user = User(name=name, email=email or f"{role}-{User.query.count() + 1}@school.edu", role=role)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_student(app):
    def _make(name="Student", class_name="Grade 5", user=None, **fields):
        count = Student.query.count() + 1
        student = Student(
            student_code=fields.pop("student_code", f"STU{count:04d}"),
            name=name,
            email=fields.pop("email", f"student{count}@school.edu"),
            class_name=class_name,
            academic_year=fields.pop("academic_year", "2024-25"),
            admission_date=fields.pop("admission_date", date(2024, 1, 10)),
            user_id=user.id if user is not None else None,
            **fields,
        )
        db.session.add(student)
        db.session.commit()
        return student

    return _make


@pytest.fixture
def make_class(app):
    def _make(name="Grade 5", grade="5", students=(), capacity=30, **fields):
        school_class = SchoolClass(name=name, grade=grade, capacity=capacity, **fields)
        school_class.students.extend(students)
        db.session.add(school_class)
        db.session.commit()
        return school_class

    return _make


@pytest.fixture
def make_grade(app):
    def _make(student, subject="Mathematics", exam_type="midterm", score=80, max_score=100, **fields):
        grade = Grade(
            student_id=student.id,
            class_name=student.class_name,
            subject_name=subject,
            exam_type=exam_type,
            score=score,
            max_score=max_score,
            grade_level=letter_grade(score, max_score),
            term=fields.pop("term", "Third Term"),
            academic_year=fields.pop("academic_year", "2024-25"),
            date=fields.pop("date", date(2024, 10, 15)),
            **fields,
        )
        db.session.add(grade)
        db.session.commit()
        return grade

    return _make


@pytest.fixture
def make_attendance(app):
    def _make(student, day, status="present", class_id=None):
        record = Attendance(student_id=student.id, date=day, status=status, class_id=class_id)
        db.session.add(record)
        db.session.commit()
        return record

    return _make


@pytest.fixture
def make_fee(app):
    def _make(student, amount=1000, paid_amount=0, due_date=None, fee_type="tuition", paid_date=None, **fields):
        fee = Fee(
            student_id=student.id,
            type=fee_type,
            amount=amount,
            paid_amount=paid_amount,
            discount=fields.pop("discount", 0),
            late_fee=fields.pop("late_fee", 0),
            due_date=due_date or date.today(),
            paid_date=paid_date,
            term=fields.pop("term", "Third Term"),
            academic_year=fields.pop("academic_year", "2024-25"),
            invoice_number=generate_invoice_number(),
            **fields,
        )
        apply_fee_status(fee)
        db.session.add(fee)
        db.session.commit()
        return fee

    return _make
