from flask import Blueprint, current_app, g, request
from sqlalchemy import or_

from extensions import db
from models import STUDENT_STATUSES, SchoolClass, Student
from utils import STAFF_ROLES, role_required
from utils.access import ensure_can_view_student
from utils.db_helpers import commit, get_or_404
from utils.errors import ValidationError, require_fields
from utils.responses import id_list, json_body, ok, paginate, parse_date

student_bp = Blueprint("students", __name__, url_prefix="/api/students")
class_bp = Blueprint("classes", __name__, url_prefix="/api/classes")


@student_bp.route("", methods=["GET"])
@role_required(*STAFF_ROLES)
def list_students():
    query = Student.query
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Student.name.ilike(like), Student.email.ilike(like), Student.student_code.ilike(like)))
    if request.args.get("class"):
        query = query.filter(Student.class_name == request.args["class"])
    if request.args.get("status"):
        query = query.filter(Student.status == request.args["status"])
    students, pagination = paginate(query.order_by(Student.name), "Students")
    return ok([s.to_dict() for s in students], pagination=pagination)


@student_bp.route("", methods=["POST"])
@role_required("admin")
def create_student():
    payload = json_body()
    require_fields(payload, "studentId", "name", "email", "class")
    if Student.query.filter_by(student_code=payload["studentId"]).first():
        raise ValidationError("Student ID already exists", field="studentId")
    parent = payload.get("parentInfo") or {}
    student = Student(
        student_code=payload["studentId"],
        name=payload["name"].strip(),
        email=payload["email"].strip(),
        class_name=payload["class"],
        section=payload.get("section") or "A",
        roll_number=payload.get("rollNumber"),
        academic_year=payload.get("academicYear") or current_app.config["DEFAULT_ACADEMIC_YEAR"],
        guardian_name=parent.get("guardianName"),
        guardian_email=parent.get("guardianEmail"),
        guardian_phone=parent.get("guardianPhone"),
        user_id=payload.get("userId"),
    )
    if payload.get("admissionDate"):
        student.admission_date = parse_date(payload["admissionDate"], "admissionDate")
    db.session.add(student)
    commit()
    return ok(student.to_dict(), "Student created successfully", 201)


@student_bp.route("/<int:student_id>", methods=["GET"])
@role_required()
def get_student(student_id: int):
    ensure_can_view_student(g.identity, student_id)
    return ok(get_or_404(Student, student_id, "Student").to_dict())


@student_bp.route("/<int:student_id>/status", methods=["PUT"])
@role_required("admin")
def update_student_status(student_id: int):
    student = get_or_404(Student, student_id, "Student")
    status = json_body().get("status")
    if status not in STUDENT_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STUDENT_STATUSES)}", field="status")
    student.status = status
    commit()
    return ok(student.to_dict(), "Student status updated")


@class_bp.route("", methods=["GET"])
@role_required(*STAFF_ROLES)
def list_classes():
    query = SchoolClass.query
    if request.args.get("grade"):
        query = query.filter(SchoolClass.grade == request.args["grade"])
    if request.args.get("academicYear"):
        query = query.filter(SchoolClass.academic_year == request.args["academicYear"])
    query = query.filter(SchoolClass.status == request.args.get("status", "active"))
    classes, pagination = paginate(query.order_by(SchoolClass.grade, SchoolClass.name), "Classes")
    return ok([c.to_dict() for c in classes], pagination=pagination)


@class_bp.route("", methods=["POST"])
@role_required("admin")
def create_class():
    payload = json_body()
    require_fields(payload, "name", "grade")
    try:
        capacity = int(payload.get("capacity", 30))
    except (TypeError, ValueError):
        raise ValidationError("capacity must be an integer", field="capacity")
    if capacity < 1:
        raise ValidationError("capacity must be at least 1", field="capacity")
    school_class = SchoolClass(
        name=payload["name"],
        section=payload.get("section") or "A",
        grade=str(payload["grade"]),
        room=payload.get("room"),
        capacity=capacity,
        academic_year=payload.get("academicYear") or current_app.config["DEFAULT_ACADEMIC_YEAR"],
        teacher_id=payload.get("teacherId"),
    )
    db.session.add(school_class)
    commit()
    return ok(school_class.to_dict(), "Class created successfully", 201)


@class_bp.route("/<int:class_id>", methods=["GET"])
@role_required(*STAFF_ROLES)
def get_class(class_id: int):
    return ok(get_or_404(SchoolClass, class_id, "Class").to_dict(with_students=True))


@class_bp.route("/<int:class_id>/students", methods=["POST"])
@role_required("admin")
def add_students_to_class(class_id: int):
    school_class = get_or_404(SchoolClass, class_id, "Class")
    ids = id_list(json_body().get("studentIds"), "studentIds")
    if not ids:
        raise ValidationError("studentIds is required", field="studentIds")
    new = [get_or_404(Student, sid, "Student") for sid in ids]
    new = [s for s in new if s not in school_class.students]
    if school_class.student_count + len(new) > school_class.capacity:
        raise ValidationError("Class capacity would be exceeded", field="studentIds")
    for student in new:
        school_class.students.append(student)
        student.class_name = school_class.name
    commit()
    return ok(school_class.to_dict(with_students=True), f"{len(new)} student(s) added to class")
