from __future__ import annotations

from collections import OrderedDict, defaultdict
from typing import Any, Iterable

from models import Grade
from utils.db_helpers import aggregation_guard
from utils.grading import ALL_BANDS, letter_grade


def _round(value: float) -> float:
    return round(value, 2)


def subject_averages(grades: Iterable[Grade]) -> dict[str, float]:
    """Pooled percentage per subject: ``100 * sum(score) / sum(max_score)``."""
    scores: dict[str, float] = defaultdict(float)
    maxima: dict[str, float] = defaultdict(float)
    for grade in grades:
        scores[grade.subject_name] += float(grade.score)
        maxima[grade.subject_name] += float(grade.max_score)
    return {
        subject: _round(100 * scores[subject] / maxima[subject])
        for subject in sorted(scores)
        if maxima[subject] > 0
    }


def pooled_average(grades: Iterable[Grade]) -> float:
    total_score = 0.0
    total_max = 0.0
    for grade in grades:
        total_score += float(grade.score)
        total_max += float(grade.max_score)
    if total_max <= 0:
        return 0.0
    return _round(100 * total_score / total_max)


def student_overall_average(grades: Iterable[Grade]) -> float:
    """Mean of the per-subject averages; 0 when nothing matched."""
    averages = subject_averages(grades)
    if not averages:
        return 0.0
    return _round(sum(averages.values()) / len(averages))


def grade_distribution(grades: Iterable[Grade]) -> "OrderedDict[str, int]":
    counts: OrderedDict[str, int] = OrderedDict((band, 0) for band in ALL_BANDS)
    for grade in grades:
        counts[letter_grade(grade.score, grade.max_score)] += 1
    return counts


def student_averages(grades: Iterable[Grade]) -> dict[int, float]:
    by_student: dict[int, list[Grade]] = defaultdict(list)
    for grade in grades:
        by_student[grade.student_id].append(grade)
    return {sid: student_overall_average(rows) for sid, rows in by_student.items()}


def class_grade_summary(grades: list[Grade]) -> dict[str, Any]:
    return {
        "totalStudents": len({g.student_id for g in grades}),
        "totalGrades": len(grades),
        "averageScore": pooled_average(grades),
        "subjectAverages": subject_averages(grades),
        "gradeDistribution": grade_distribution(grades),
    }


def student_grade_summary(grades: list[Grade]) -> dict[str, Any]:
    by_subject: dict[str, list[Grade]] = defaultdict(list)
    for grade in grades:
        by_subject[grade.subject_name].append(grade)
    averages = subject_averages(grades)
    subjects = [
        {
            "subject": subject,
            "average": averages.get(subject, 0.0),
            "gradeLevel": letter_grade(averages.get(subject, 0.0), 100),
            "grades": [
                {
                    "examType": g.exam_type,
                    "percentage": _round(100 * float(g.score) / float(g.max_score)),
                    "date": g.date.isoformat() if g.date else None,
                }
                for g in rows
            ],
        }
        for subject, rows in sorted(by_subject.items())
    ]
    return {
        "overallAverage": student_overall_average(grades),
        "subjects": subjects,
        "totalGrades": len(grades),
    }


def exam_snapshot(grades: list[Grade], min_grade: float) -> dict[str, Any]:
    """Eligibility snapshot for one exam type of one student."""
    averages = subject_averages(grades)
    if not averages:
        return {"completed": False, "averageScore": 0.0, "totalSubjects": 0, "passedSubjects": 0}
    return {
        "completed": True,
        "averageScore": _round(sum(averages.values()) / len(averages)),
        "totalSubjects": len(averages),
        "passedSubjects": sum(1 for avg in averages.values() if avg >= min_grade),
    }


def load_grades(
    student_id: int | None = None,
    class_id: int | None = None,
    subject: str | None = None,
    term: str | None = None,
    academic_year: str | None = None,
    exam_type: str | None = None,
    start=None,
    end=None,
) -> list[Grade]:
    with aggregation_guard("grade statistics"):
        query = Grade.query
        if student_id is not None:
            query = query.filter(Grade.student_id == student_id)
        if class_id is not None:
            query = query.filter(Grade.class_id == class_id)
        if subject:
            query = query.filter(Grade.subject_name == subject)
        if term:
            query = query.filter(Grade.term == term)
        if academic_year:
            query = query.filter(Grade.academic_year == academic_year)
        if exam_type:
            query = query.filter(Grade.exam_type == exam_type)
        if start is not None:
            query = query.filter(Grade.date >= start)
        if end is not None:
            query = query.filter(Grade.date < end)
        return query.order_by(Grade.date, Grade.id).all()
