from flask import Blueprint, current_app, g, request

from extensions import db
from models import Grade, SchoolClass, Student
from utils import STAFF_ROLES, role_required
from utils.access import ensure_can_view_student, student_for_identity
from utils.db_helpers import commit, get_or_404
from utils.grade_stats import class_grade_summary, load_grades, student_averages, student_grade_summary
from utils.grading import apply_grade_fields, build_grade
from utils.responses import date_arg, fail, int_arg, json_body, ok, paginate

grade_bp = Blueprint("grades", __name__, url_prefix="/api/grades")


@grade_bp.route("", methods=["GET"])
@role_required()
def list_grades():
    query = Grade.query
    student_id = int_arg("studentId")
    if not g.identity.is_staff:
        own = student_for_identity(g.identity)
        if own is None:
            return fail("No student record linked to this account", 404)
        student_id = own.id
    if student_id is not None:
        query = query.filter(Grade.student_id == student_id)
    for arg, column in (
        ("subject", Grade.subject_name),
        ("examType", Grade.exam_type),
        ("term", Grade.term),
        ("academicYear", Grade.academic_year),
    ):
        if request.args.get(arg):
            query = query.filter(column == request.args[arg])
    if int_arg("classId") is not None:
        query = query.filter(Grade.class_id == int_arg("classId"))
    grades, pagination = paginate(query.order_by(Grade.date.desc(), Grade.id.desc()), "Grades")
    return ok([gr.to_dict() for gr in grades], pagination=pagination)


@grade_bp.route("", methods=["POST"])
@role_required("admin", "teacher")
def create_grade():
    grade = build_grade(json_body(), current_app.config["DEFAULT_ACADEMIC_YEAR"])
    student = get_or_404(Student, grade.student_id, "Student")
    if grade.class_id is not None:
        grade.class_name = get_or_404(SchoolClass, grade.class_id, "Class").name
    else:
        grade.class_name = student.class_name
    db.session.add(grade)
    commit()
    return ok(grade.to_dict(), "Grade recorded successfully", 201)


@grade_bp.route("/<int:grade_id>", methods=["PUT"])
@role_required("admin", "teacher")
def update_grade(grade_id: int):
    grade = apply_grade_fields(get_or_404(Grade, grade_id, "Grade"), json_body())
    commit()
    return ok(grade.to_dict(), "Grade updated successfully")


@grade_bp.route("/<int:grade_id>", methods=["DELETE"])
@role_required("admin", "teacher")
def delete_grade(grade_id: int):
    db.session.delete(get_or_404(Grade, grade_id, "Grade"))
    commit()
    return ok(message="Grade deleted successfully")


@grade_bp.route("/analytics/student/<int:student_id>", methods=["GET"])
@role_required()
def student_grade_analytics(student_id: int):
    ensure_can_view_student(g.identity, student_id)
    student = get_or_404(Student, student_id, "Student")
    grades = load_grades(
        student_id=student.id,
        term=request.args.get("term"),
        academic_year=request.args.get("academicYear"),
        exam_type=request.args.get("examType"),
        start=date_arg("startDate"),
    )
    summary = student_grade_summary(grades)
    summary["student"] = {"id": student.id, "name": student.name, "class": student.class_name}
    return ok(summary)


@grade_bp.route("/analytics/class/<int:class_id>", methods=["GET"])
@role_required(*STAFF_ROLES)
def class_grade_analytics(class_id: int):
    school_class = get_or_404(SchoolClass, class_id, "Class")
    grades = load_grades(
        class_id=school_class.id,
        subject=request.args.get("subject"),
        term=request.args.get("term"),
        academic_year=request.args.get("academicYear"),
        exam_type=request.args.get("examType"),
    )
    summary = class_grade_summary(grades)
    limit = int_arg("top", 5)
    ranked = sorted(student_averages(grades).items(), key=lambda item: item[1], reverse=True)[:limit]
    names = {s.id: s.name for s in school_class.students}
    summary["topStudents"] = [
        {"studentId": sid, "name": names.get(sid), "average": average} for sid, average in ranked
    ]
    summary["class"] = {"id": school_class.id, "name": school_class.name, "grade": school_class.grade}
    return ok(summary)
