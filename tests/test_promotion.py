from datetime import date, datetime, timedelta

import pytest

from extensions import db
from models import Promotion, SchoolClass, Student
from utils import Identity
from utils.errors import IneligibleError, ValidationError
from utils.promotion import (
    PromotionRequirements,
    academic_year_window,
    bulk_promote,
    check_eligibility,
    evaluate_class,
    hold_back,
    next_class_name,
    next_grade_label,
    promote,
    promote_by_id,
)

REQS = PromotionRequirements(min_attendance=75, min_grade=65, required_exams=("midterm", "final"))
ADMIN = Identity(user_id=1, role="admin", name="Principal")


def exams(midterm=70, final=80, final_completed=True):
    return {
        "midterm": {"completed": True, "averageScore": midterm},
        "final": {"completed": final_completed, "averageScore": final},
    }


def test_eligible_when_every_check_passes():
    result = check_eligibility(exams(), 80, 75, REQS)
    assert result.status == "eligible"
    assert result.eligible
    assert all(result.checks.values())


def test_low_attendance_goes_under_review():
    result = check_eligibility(exams(), 60, 75, REQS)
    assert result.status == "under_review"
    assert result.checks["attendance"] is False


def test_eligibility_is_deterministic():
    inputs = (exams(midterm=66, final=64), 90, 70, REQS)
    assert check_eligibility(*inputs) == check_eligibility(*inputs)


def test_missing_required_exam_blocks_eligibility():
    assert check_eligibility(exams(final_completed=False), 95, 90, REQS).status == "under_review"


def test_exam_outside_requirements_is_ignored():
    reqs = PromotionRequirements(required_exams=("midterm",))
    assert check_eligibility(exams(final=0, final_completed=False), 95, 90, reqs).status == "eligible"


@pytest.mark.parametrize(
    "current,expected",
    [("Grade 5", "Grade 6"), ("Grade 9-B", "Grade 10-B"), ("Kindergarten", "Kindergarten")],
)
def test_next_class_name(current, expected):
    assert next_class_name(current) == expected


def test_next_grade_label():
    assert next_grade_label("5") == "6"
    assert next_grade_label("Grade 11") == "Grade 12"


def test_academic_year_window():
    assert academic_year_window("2024-25") == (date(2024, 9, 1), date(2025, 9, 1))
    assert academic_year_window("2024-2025", start_month=1) == (date(2024, 1, 1), date(2025, 1, 1))
    with pytest.raises(ValidationError):
        academic_year_window("next year")


@pytest.fixture
def grade5(make_student, make_class, make_grade, make_attendance, make_fee):
    """Grade 5 with Alice (meets every requirement) and Bob (no final exam)."""
    alice = make_student("Alice")
    bob = make_student("Bob")
    school_class = make_class("Grade 5", "5", students=[alice, bob])
    make_class("Grade 6", "6")

    for subject, midterm, final in (("Math", 70, 80), ("Science", 80, 90)):
        make_grade(alice, subject, "midterm", midterm)
        make_grade(alice, subject, "final", final, date=date(2024, 12, 10))
    make_grade(bob, "Math", "midterm", 90)

    for offset in range(10):
        day = date(2024, 10, 1) + timedelta(days=offset)
        make_attendance(alice, day, "absent" if offset == 0 else "present")
        make_attendance(bob, day, "present")
    # Outside the 2024-25 academic year; must not count.
    make_attendance(alice, date(2024, 8, 20), "absent")

    make_fee(alice, amount=500, paid_amount=500, due_date=date(2024, 10, 1))
    make_fee(bob, amount=500, paid_amount=0, due_date=date(2024, 10, 1))
    return school_class, alice, bob


def _promotion(student):
    return Promotion.query.filter_by(student_id=student.id, academic_year="2024-25", term="Third Term").one()


def test_evaluate_class_records_snapshots(app, grade5):
    school_class, alice, bob = grade5
    summary = evaluate_class(school_class.id, "2024-25", "Third Term")

    assert summary["evaluated"] == 2
    assert summary["eligible"] == 1
    assert summary["errors"] == []

    alice_promo = _promotion(alice)
    assert alice_promo.promotion_status == "eligible"
    assert alice_promo.midterm_average == 75.0
    assert alice_promo.final_average == 85.0
    assert alice_promo.midterm_passed_subjects == 2
    assert alice_promo.overall_average == 80.0
    assert alice_promo.attendance_percentage == 90.0
    assert alice_promo.fee_status == "paid"
    assert alice_promo.next_class == "Grade 6"
    assert alice_promo.next_grade == "6"

    bob_promo = _promotion(bob)
    assert bob_promo.promotion_status == "under_review"
    assert bob_promo.final_completed is False
    assert bob_promo.fee_status == "pending"


def test_re_evaluation_updates_in_place(app, grade5, make_grade):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")
    first_id = _promotion(bob).id

    make_grade(bob, "Math", "final", 88)
    evaluate_class(school_class.id, "2024-25", "Third Term")

    assert Promotion.query.count() == 2
    assert _promotion(bob).id == first_id
    assert _promotion(bob).promotion_status == "eligible"


def test_custom_requirements_are_stored(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term", PromotionRequirements(min_attendance=95))
    promo = _promotion(alice)
    assert promo.min_attendance == 95
    assert promo.promotion_status == "under_review"


def test_promote_moves_student_to_next_class(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")

    promotion = promote_by_id(_promotion(alice).id, approver=ADMIN)

    assert promotion.promotion_status == "promoted"
    assert promotion.approved_by_name == "Principal"
    assert promotion.promotion_date is not None
    student = db.session.get(Student, alice.id)
    assert student.class_name == "Grade 6"
    target = SchoolClass.query.filter_by(name="Grade 6").one()
    assert student in target.students
    assert student not in db.session.get(SchoolClass, school_class.id).students


def test_promote_is_guarded(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")
    promotion = _promotion(bob)

    with pytest.raises(IneligibleError) as excinfo:
        promote(promotion, ADMIN)

    assert excinfo.value.details["currentStatus"] == "under_review"
    assert db.session.get(Student, bob.id).class_name == "Grade 5"
    assert promotion.promotion_status == "under_review"


def test_terminal_records_survive_re_evaluation(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")
    hold_back(_promotion(bob).id, ADMIN, remarks="Repeat year")

    summary = evaluate_class(school_class.id, "2024-25", "Third Term")

    assert _promotion(bob).promotion_status == "held_back"
    assert _promotion(bob).remarks == "Repeat year"
    assert summary["skipped"] == 1


def test_hold_back_refuses_promoted_records(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")
    promote_by_id(_promotion(alice).id, ADMIN)
    with pytest.raises(ValidationError):
        hold_back(_promotion(alice).id, ADMIN)


def test_bulk_promote_isolates_failures(app, make_student):
    good = make_student("Carol")
    ghost = make_student("Ghost")
    for student in (good, ghost):
        db.session.add(Promotion(
            student_id=student.id,
            student_name=student.name,
            current_class="Grade 5",
            current_grade="5",
            next_class="Grade 6",
            next_grade="6",
            academic_year="2024-25",
            term="Third Term",
            promotion_status="eligible",
        ))
    db.session.commit()
    # The student row disappears after evaluation.
    db.session.delete(ghost)
    db.session.commit()

    results = bulk_promote("2024-25", approver=ADMIN, now=datetime(2025, 6, 30))

    assert results["promoted"] == 1
    assert results["failed"] == 1
    assert results["promoted"] + results["failed"] == results["total"] == 2
    assert results["errors"][0]["studentName"] == "Ghost"
    assert db.session.get(Student, good.id).class_name == "Grade 6"


def test_bulk_promote_only_selects_eligible(app, grade5):
    school_class, alice, bob = grade5
    evaluate_class(school_class.id, "2024-25", "Third Term")
    results = bulk_promote("2024-25", class_id=school_class.id)
    assert results == {"promoted": 1, "failed": 0, "total": 1, "errors": []}
    assert _promotion(bob).promotion_status == "under_review"
