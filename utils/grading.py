from __future__ import annotations

from typing import Any

from models import EXAM_TYPES, TERMS, Grade
from utils.errors import ValidationError, require_fields
from utils.responses import parse_date

# (minimum percentage, band), highest first.
LETTER_BANDS = (
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (65, "D"),
)
FAIL_BAND = "F"
ALL_BANDS = tuple(band for _, band in LETTER_BANDS) + (FAIL_BAND,)


def percentage(score: float, max_score: float) -> float:
    if max_score < 1:
        raise ValidationError("maxScore must be at least 1", field="maxScore")
    if score < 0:
        raise ValidationError("score must not be negative", field="score")
    return float(score) * 100 / float(max_score)


def band_for_percentage(pct: float) -> str:
    for threshold, band in LETTER_BANDS:
        if pct >= threshold:
            return band
    return FAIL_BAND


def letter_grade(score: float, max_score: float) -> str:
    """Letter band for a raw score; the same function is used on write and on read."""
    return band_for_percentage(percentage(score, max_score))


def _number(payload: dict[str, Any], key: str) -> float:
    try:
        return float(payload[key])
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", field=key)


def apply_grade_fields(grade: Grade, payload: dict[str, Any]) -> Grade:
    """Copy writable fields from a request payload and re-derive ``grade_level``."""
    if "subjectName" in payload:
        grade.subject_name = str(payload["subjectName"]).strip()
    if "examType" in payload:
        if payload["examType"] not in EXAM_TYPES:
            raise ValidationError(f"examType must be one of {', '.join(EXAM_TYPES)}", field="examType")
        grade.exam_type = payload["examType"]
    if "term" in payload:
        if payload["term"] not in TERMS:
            raise ValidationError(f"term must be one of {', '.join(TERMS)}", field="term")
        grade.term = payload["term"]
    if "academicYear" in payload:
        grade.academic_year = str(payload["academicYear"])
    if "score" in payload:
        grade.score = _number(payload, "score")
    if "maxScore" in payload:
        grade.max_score = _number(payload, "maxScore")
    if "remarks" in payload:
        grade.remarks = payload["remarks"]
    if payload.get("date"):
        grade.date = parse_date(payload["date"], "date")
    grade.grade_level = letter_grade(grade.score, grade.max_score)
    return grade


def build_grade(payload: dict[str, Any], default_year: str) -> Grade:
    require_fields(payload, "studentId", "subjectName", "examType", "score", "maxScore", "term")
    try:
        student_id = int(payload["studentId"])
    except (TypeError, ValueError):
        raise ValidationError("studentId must be an integer", field="studentId")
    grade = Grade(
        student_id=student_id,
        class_id=payload.get("classId"),
        academic_year=payload.get("academicYear") or default_year,
    )
    return apply_grade_fields(grade, payload)
