"""Promotion evaluation and the promotion state transitions.

State machine per Promotion record::

    pending -> eligible | under_review        (evaluate)
    under_review -> eligible | under_review   (re-evaluate)
    eligible -> promoted                      (promote, terminal)
    pending | eligible | under_review -> held_back   (admin override, terminal)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import UNPAID_FEE_STATUSES, Fee, Promotion, SchoolClass, Student
from utils import Identity
from utils.attendance_stats import attendance_rate, configured_late_weight, load_attendance
from utils.db_helpers import aggregation_guard, get_or_404
from utils.errors import IneligibleError, ServiceError, ValidationError
from utils.grade_stats import exam_snapshot, load_grades, student_overall_average

EXAMS = ("midterm", "final")
TERMINAL_STATUSES = ("promoted", "held_back")
HOLDABLE_STATUSES = ("pending", "eligible", "under_review")


@dataclass(frozen=True)
class PromotionRequirements:
    min_attendance: float = 75.0
    min_grade: float = 65.0
    required_exams: tuple[str, ...] = ("midterm", "final")

    @classmethod
    def from_config(cls) -> "PromotionRequirements":
        cfg = current_app.config
        return cls(
            min_attendance=float(cfg.get("PROMOTION_MIN_ATTENDANCE", 75)),
            min_grade=float(cfg.get("PROMOTION_MIN_GRADE", 65)),
            required_exams=tuple(cfg.get("PROMOTION_REQUIRED_EXAMS", EXAMS)),
        )

    @classmethod
    def from_record(cls, promotion: Promotion) -> "PromotionRequirements":
        return cls(
            min_attendance=float(promotion.min_attendance),
            min_grade=float(promotion.min_grade),
            required_exams=tuple(promotion.required_exam_list),
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "PromotionRequirements | None":
        if not payload:
            return None
        base = cls.from_config()
        try:
            min_attendance = float(payload.get("minimumAttendance", base.min_attendance))
            min_grade = float(payload.get("minimumGrade", base.min_grade))
        except (TypeError, ValueError):
            raise ValidationError("requirements thresholds must be numbers", field="requirements")
        exams = tuple(payload.get("requiredExams", base.required_exams))
        unknown = [e for e in exams if e not in EXAMS]
        if unknown:
            raise ValidationError(f"requiredExams may only contain {', '.join(EXAMS)}", field="requiredExams")
        return cls(min_attendance=min_attendance, min_grade=min_grade, required_exams=exams)

    def apply_to(self, promotion: Promotion) -> None:
        promotion.min_attendance = self.min_attendance
        promotion.min_grade = self.min_grade
        promotion.required_exams = ",".join(self.required_exams)


@dataclass(frozen=True)
class EligibilityResult:
    status: str
    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def eligible(self) -> bool:
        return self.status == "eligible"


def check_eligibility(
    exam_results: dict[str, dict[str, Any]],
    attendance_percentage: float,
    overall_average: float,
    requirements: PromotionRequirements,
) -> EligibilityResult:
    """Decide ``eligible`` vs ``under_review`` from snapshotted values only."""
    checks: dict[str, bool] = {}
    for exam in EXAMS:
        if exam not in requirements.required_exams:
            checks[exam] = True
            continue
        result = exam_results.get(exam) or {}
        checks[exam] = bool(result.get("completed")) and float(result.get("averageScore") or 0) >= requirements.min_grade
    checks["attendance"] = float(attendance_percentage or 0) >= requirements.min_attendance
    checks["grade"] = float(overall_average or 0) >= requirements.min_grade
    return EligibilityResult(status="eligible" if all(checks.values()) else "under_review", checks=checks)


def academic_year_window(academic_year: str, start_month: int = 9) -> tuple[date, date]:
    """``[start, end)`` dates covered by an academic year label like ``2024-25``."""
    match = re.match(r"^\s*(\d{4})(?:\s*[-/]\s*(\d{2}|\d{4}))?\s*$", str(academic_year or ""))
    if not match:
        raise ValidationError("academicYear must look like 2024-25", field="academicYear")
    first = int(match.group(1))
    return date(first, start_month, 1), date(first + 1, start_month, 1)


def next_class_name(current_class: str) -> str:
    match = re.search(r"Grade (\d+)", current_class or "")
    if not match:
        return current_class
    return current_class.replace(match.group(0), f"Grade {int(match.group(1)) + 1}", 1)


def next_grade_label(current_grade: str) -> str:
    match = re.search(r"(\d+)(?!.*\d)", current_grade or "")
    if not match:
        return current_grade
    return current_grade[: match.start()] + str(int(match.group(1)) + 1) + current_grade[match.end():]


def _find_or_create(student: Student, school_class: SchoolClass, academic_year: str, term: str) -> Promotion:
    key = {"student_id": student.id, "academic_year": academic_year, "term": term}
    promotion = Promotion.query.filter_by(**key).first()
    if promotion is not None:
        return promotion
    promotion = Promotion(
        student_name=student.name,
        current_class=student.class_name,
        current_grade=school_class.grade,
        next_class=next_class_name(student.class_name),
        next_grade=next_grade_label(school_class.grade),
        promotion_status="pending",
        **key,
    )
    PromotionRequirements.from_config().apply_to(promotion)
    db.session.add(promotion)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent evaluation inserted the same natural key first.
        # Nothing else is pending for this student yet.
        db.session.rollback()
        promotion = Promotion.query.filter_by(**key).one()
    return promotion


def fee_status_for(student_id: int, academic_year: str) -> str:
    unpaid = Fee.query.filter(
        Fee.student_id == student_id,
        Fee.academic_year == academic_year,
        Fee.status.in_(UNPAID_FEE_STATUSES),
    ).count()
    return "paid" if unpaid == 0 else "pending"


def evaluate_student(
    student: Student,
    school_class: SchoolClass,
    academic_year: str,
    term: str,
    requirements: PromotionRequirements | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    promotion = _find_or_create(student, school_class, academic_year, term)
    outcome = {"studentId": student.id, "studentName": student.name}
    if promotion.promotion_status in TERMINAL_STATUSES:
        db.session.flush()
        return {**outcome, "promotionId": promotion.id, "promotionStatus": promotion.promotion_status,
                "eligibility": False, "skipped": True}

    if requirements is not None:
        requirements.apply_to(promotion)
    reqs = PromotionRequirements.from_record(promotion)

    grades = load_grades(student_id=student.id, academic_year=academic_year, term=term)
    for exam in EXAMS:
        snapshot = exam_snapshot([g for g in grades if g.exam_type == exam], reqs.min_grade)
        promotion.set_exam_result(exam, snapshot, now)
    promotion.overall_average = student_overall_average(grades)

    window_start, window_end = academic_year_window(
        academic_year, current_app.config.get("ACADEMIC_YEAR_START_MONTH", 9)
    )
    records = load_attendance(window_start, window_end, student_id=student.id)
    promotion.attendance_percentage = attendance_rate(records, configured_late_weight())
    promotion.fee_status = fee_status_for(student.id, academic_year)

    result = check_eligibility(
        {exam: promotion.exam_result(exam) for exam in EXAMS},
        promotion.attendance_percentage,
        promotion.overall_average,
        reqs,
    )
    promotion.promotion_status = result.status
    db.session.flush()
    return {
        **outcome,
        "promotionId": promotion.id,
        "promotionStatus": result.status,
        "eligibility": result.eligible,
        "requirements": result.checks,
        "skipped": False,
    }


def evaluate_class(
    class_id,
    academic_year: str,
    term: str,
    requirements: PromotionRequirements | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Upsert and evaluate one Promotion per student in the class; safe to re-run."""
    school_class = get_or_404(SchoolClass, class_id, "Class")
    class_name = school_class.name
    roster = [(s.id, s.name) for s in school_class.students]
    results: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []
    for student_id, student_name in roster:
        try:
            student = db.session.get(Student, student_id)
            school_class = db.session.get(SchoolClass, class_id)
            results.append(evaluate_student(student, school_class, academic_year, term, requirements, now))
            db.session.commit()
        except (ServiceError, SQLAlchemyError) as exc:
            db.session.rollback()
            reason = getattr(exc, "message", None) or str(exc)
            current_app.logger.warning("Promotion evaluation failed for student %s: %s", student_id, reason)
            errors.append({"studentId": student_id, "studentName": student_name, "reason": reason})

    eligible = sum(1 for r in results if r.get("eligibility"))
    current_app.logger.info(
        "Evaluated %d students in %s (%s %s): %d eligible, %d failed",
        len(results), class_name, academic_year, term, eligible, len(errors),
    )
    return {
        "classId": int(class_id),
        "className": class_name,
        "totalStudents": len(roster),
        "evaluated": len(results),
        "eligible": eligible,
        "underReview": sum(1 for r in results if r.get("promotionStatus") == "under_review"),
        "skipped": sum(1 for r in results if r.get("skipped")),
        "results": results,
        "errors": errors,
    }


def _stamp_approval(promotion: Promotion, approver: Identity | None, now: datetime) -> None:
    if approver is not None:
        promotion.approved_by_id = approver.user_id
        promotion.approved_by_name = approver.name or None
    promotion.approval_date = now


def _move_between_classes(student: Student, from_name: str, to_name: str) -> None:
    for school_class in SchoolClass.query.filter_by(name=from_name).all():
        if student in school_class.students:
            school_class.students.remove(student)
    target = (
        SchoolClass.query.filter_by(name=to_name)
        .order_by(case((SchoolClass.status == "active", 0), else_=1), SchoolClass.id.desc())
        .first()
    )
    if target is not None and student not in target.students:
        target.students.append(student)


def promote(promotion: Promotion, approver: Identity | None = None, now: datetime | None = None) -> Promotion:
    """Apply an ``eligible`` promotion to the student.

    Raises ``IneligibleError`` before touching the student when the record is
    in any other state.
    """
    if promotion.promotion_status != "eligible":
        raise IneligibleError(promotion.promotion_status)
    now = now or datetime.utcnow()
    student = get_or_404(Student, promotion.student_id, "Student")
    _move_between_classes(student, promotion.current_class, promotion.next_class)
    student.class_name = promotion.next_class
    student.academic_year = promotion.academic_year
    promotion.promotion_status = "promoted"
    promotion.promotion_date = now
    _stamp_approval(promotion, approver, now)
    db.session.commit()
    return promotion


def promote_by_id(promotion_id, approver: Identity | None = None, now: datetime | None = None) -> Promotion:
    return promote(get_or_404(Promotion, promotion_id, "Promotion record"), approver, now)


def bulk_promote(
    academic_year: str,
    class_id=None,
    term: str | None = None,
    student_ids: Iterable[int] | None = None,
    approver: Identity | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Promote every matching ``eligible`` record independently.

    ``promoted + failed`` always equals the number of records selected.
    """
    query = Promotion.query.filter(
        Promotion.academic_year == academic_year,
        Promotion.promotion_status == "eligible",
    )
    if class_id is not None:
        school_class = get_or_404(SchoolClass, class_id, "Class")
        query = query.filter(Promotion.current_class == school_class.name)
    if term:
        query = query.filter(Promotion.term == term)
    if student_ids:
        query = query.filter(Promotion.student_id.in_([int(s) for s in student_ids]))
    selected = [(p.id, p.student_id, p.student_name) for p in query.order_by(Promotion.id).all()]

    results: dict[str, Any] = {"promoted": 0, "failed": 0, "total": len(selected), "errors": []}
    for promotion_id, student_id, student_name in selected:
        try:
            promote(db.session.get(Promotion, promotion_id), approver, now)
            results["promoted"] += 1
        except (ServiceError, SQLAlchemyError) as exc:
            db.session.rollback()
            reason = getattr(exc, "message", None) or str(exc)
            current_app.logger.warning("Promotion of student %s failed: %s", student_id, reason)
            results["failed"] += 1
            results["errors"].append({"studentId": student_id, "studentName": student_name, "reason": reason})
    current_app.logger.info(
        "Bulk promotion for %s: %d promoted, %d failed", academic_year, results["promoted"], results["failed"]
    )
    return results


def hold_back(
    promotion_id,
    approver: Identity | None = None,
    remarks: str | None = None,
    now: datetime | None = None,
) -> Promotion:
    """Admin override into the terminal ``held_back`` state."""
    promotion = get_or_404(Promotion, promotion_id, "Promotion record")
    if promotion.promotion_status not in HOLDABLE_STATUSES:
        raise ValidationError(
            f"Cannot hold back a record in status {promotion.promotion_status}",
            details={"currentStatus": promotion.promotion_status},
        )
    now = now or datetime.utcnow()
    promotion.promotion_status = "held_back"
    if remarks:
        promotion.remarks = remarks
    _stamp_approval(promotion, approver, now)
    db.session.commit()
    return promotion


def promotion_stats(academic_year: str, term: str) -> dict[str, Any]:
    with aggregation_guard("promotion statistics"):
        scope = (Promotion.academic_year == academic_year, Promotion.term == term)
        by_status = (
            db.session.query(Promotion.promotion_status, func.count(Promotion.id))
            .filter(*scope)
            .group_by(Promotion.promotion_status)
            .all()
        )
        by_grade = (
            db.session.query(
                Promotion.current_grade,
                func.count(Promotion.id),
                func.sum(case((Promotion.promotion_status == "eligible", 1), else_=0)),
                func.sum(case((Promotion.promotion_status == "promoted", 1), else_=0)),
            )
            .filter(*scope)
            .group_by(Promotion.current_grade)
            .order_by(Promotion.current_grade)
            .all()
        )
    return {
        "overallStats": {status: int(count) for status, count in by_status},
        "gradeStats": [
            {"grade": grade, "total": int(total), "eligible": int(eligible or 0), "promoted": int(promoted or 0)}
            for grade, total, eligible, promoted in by_grade
        ],
        "academicYear": academic_year,
        "term": term,
    }
