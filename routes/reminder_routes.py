from flask import Blueprint, g, request

from extensions import db, limiter
from models import FeeReminder
from utils import STAFF_ROLES, role_required
from utils.access import ensure_scope, student_for_identity
from utils.db_helpers import commit, get_or_404
from utils.errors import require_fields
from utils.reminders import acknowledge_reminder, create_reminders, reminder_stats, send_pending_reminders
from utils.responses import fail, id_list, int_arg, json_body, ok, paginate

reminder_bp = Blueprint("reminders", __name__, url_prefix="/api/fee-reminders")

REMINDER_ROLES = ("admin", "accountant")


@reminder_bp.route("", methods=["GET"])
@role_required(*STAFF_ROLES)
def list_reminders():
    query = FeeReminder.query
    for arg, column in (("status", FeeReminder.status), ("reminderType", FeeReminder.reminder_type)):
        if request.args.get(arg):
            query = query.filter(column == request.args[arg])
    if int_arg("studentId") is not None:
        query = query.filter(FeeReminder.student_id == int_arg("studentId"))
    reminders, pagination = paginate(
        query.order_by(FeeReminder.reminder_date.desc(), FeeReminder.id.desc()), "Reminders", default_limit=20
    )
    return ok([r.to_dict() for r in reminders], pagination=pagination)


@reminder_bp.route("/create", methods=["POST"])
@role_required(*REMINDER_ROLES)
@limiter.limit("10 per minute")
def create():
    payload = json_body()
    require_fields(payload, "reminderType")
    result = create_reminders(
        payload["reminderType"],
        days_before=payload.get("daysBefore"),
        student_ids=id_list(payload.get("studentIds"), "studentIds"),
        fee_types=payload.get("feeTypes") or None,
    )
    return ok(result, f"Created {result['count']} fee reminders", 201)


@reminder_bp.route("/send", methods=["POST"])
@role_required(*REMINDER_ROLES)
@limiter.limit("10 per minute")
def send():
    payload = json_body()
    results = send_pending_reminders(reminder_ids=id_list(payload.get("reminderIds"), "reminderIds"))
    return ok(results, f"Sent {results['sent']} reminders, {results['failed']} failed")


@reminder_bp.route("/<int:reminder_id>/acknowledge", methods=["POST"])
@role_required()
def acknowledge(reminder_id: int):
    reminder = acknowledge_reminder(reminder_id, g.identity)
    return ok(reminder.to_dict(), "Reminder acknowledged")


@reminder_bp.route("/student/me", methods=["GET"])
@role_required("student")
def my_reminders():
    own = student_for_identity(g.identity)
    if own is None:
        return fail("No student record linked to this account", 404)
    reminders = (
        FeeReminder.query.filter_by(student_id=own.id)
        .order_by(FeeReminder.reminder_date.desc())
        .limit(50)
        .all()
    )
    return ok([r.to_dict() for r in reminders])


@reminder_bp.route("/stats", methods=["GET"])
@role_required()
def stats():
    ensure_scope(g.identity, "reminder_stats")
    return ok(reminder_stats(request.args.get("period", "month")))


@reminder_bp.route("/<int:reminder_id>", methods=["DELETE"])
@role_required("admin")
def delete(reminder_id: int):
    db.session.delete(get_or_404(FeeReminder, reminder_id, "Fee reminder"))
    commit()
    return ok(message="Fee reminder deleted successfully")
