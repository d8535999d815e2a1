from datetime import date, timedelta

from flask import Blueprint, current_app, g, request

from extensions import db, limiter
from models import ATTENDANCE_STATUSES, Attendance, SchoolClass, Student
from utils import role_required
from utils.access import ensure_can_view_student, student_for_identity
from utils.attendance_stats import attendance_series, attendance_summary, configured_late_weight, inclusive_end, load_attendance
from utils.db_helpers import commit, get_or_404
from utils.errors import ForbiddenError, ValidationError, require_fields
from utils.responses import date_arg, int_arg, json_body, ok, parse_date

attendance_bp = Blueprint("attendance", __name__, url_prefix="/api/attendance")


def _mark(student_id, day: date, status: str, class_id=None, reason=None) -> Attendance:
    """One record per student per day; a second mark overwrites the first."""
    if status not in ATTENDANCE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ATTENDANCE_STATUSES)}", field="status")
    student = get_or_404(Student, student_id, "Student")
    record = Attendance.query.filter_by(student_id=student.id, date=day).first()
    if record is None:
        record = Attendance(student_id=student.id, date=day)
        db.session.add(record)
    record.status = status
    record.class_id = class_id
    record.reason = reason
    return record


@attendance_bp.route("", methods=["POST"])
@role_required("admin", "teacher")
@limiter.limit("30 per minute", methods=["POST"])
def mark_attendance():
    """Mark one student, or a whole class with ``records: [{studentId, status}]``."""
    payload = json_body()
    require_fields(payload, "date")
    day = parse_date(payload["date"], "date")
    class_id = payload.get("classId")
    if class_id is not None:
        class_id = get_or_404(SchoolClass, class_id, "Class").id

    if "records" in payload:
        rows = payload["records"]
        if not isinstance(rows, list) or not rows:
            raise ValidationError("records must be a non-empty list", field="records")
        for row in rows:
            require_fields(row, "studentId", "status")
        marked = [_mark(r["studentId"], day, r["status"], class_id, r.get("reason")) for r in rows]
    else:
        require_fields(payload, "studentId", "status")
        marked = [_mark(payload["studentId"], day, payload["status"], class_id, payload.get("reason"))]
    commit()
    return ok([r.to_dict() for r in marked], f"Attendance marked for {len(marked)} student(s)", 201)


def _scope_student_id():
    """The student filter the caller may use; students only ever see themselves."""
    student_id = int_arg("studentId")
    if g.identity.is_staff:
        return student_id
    own = student_for_identity(g.identity) if g.identity.role == "student" else None
    if own is None:
        raise ForbiddenError("Access denied")
    if student_id is not None:
        ensure_can_view_student(g.identity, student_id)
    return own.id


@attendance_bp.route("", methods=["GET"])
@role_required()
def list_attendance():
    end_day = date_arg("endDate", date.today())
    start_day = date_arg("startDate", end_day - timedelta(days=29))
    records = load_attendance(start_day, inclusive_end(end_day), _scope_student_id(), int_arg("classId"))
    return ok([r.to_dict() for r in records])


@attendance_bp.route("/analytics", methods=["GET"])
@role_required()
def attendance_analytics():
    end_day = date_arg("endDate", date.today())
    start_day = date_arg("startDate", end_day - timedelta(days=29))
    if start_day > end_day:
        raise ValidationError("startDate must not be after endDate", field="startDate")
    weight = configured_late_weight(request.args.get("latePolicy"))
    end = inclusive_end(end_day)
    records = load_attendance(start_day, end, _scope_student_id(), int_arg("classId"))
    return ok({
        "summary": attendance_summary(records, weight),
        "series": attendance_series(
            records,
            start_day,
            end,
            granularity=request.args.get("granularity"),
            weight=weight,
            daily_max_days=current_app.config.get("ATTENDANCE_DAILY_MAX_DAYS", 30),
        ),
        "startDate": start_day.isoformat(),
        "endDate": end_day.isoformat(),
    })
