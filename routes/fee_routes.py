from datetime import date

from flask import Blueprint, current_app, g, request

from extensions import db, limiter
from models import Fee, Student
from utils import role_required
from utils.access import ensure_can_view_student, student_for_identity
from utils.db_helpers import commit, get_or_404
from utils.errors import require_fields
from utils.fees import apply_fee_fields, build_fee, record_payment, refresh_fee_statuses
from utils.finance_stats import financial_summary, load_fees, monthly_revenue, shift_month
from utils.responses import fail, int_arg, json_body, ok, paginate

fee_bp = Blueprint("fees", __name__, url_prefix="/api/fees")

FINANCE_ROLES = ("admin", "accountant")


@fee_bp.route("", methods=["GET"])
@role_required()
def list_fees():
    query = Fee.query
    student_id = int_arg("studentId")
    if not g.identity.is_staff:
        own = student_for_identity(g.identity)
        if own is None:
            return fail("No student record linked to this account", 404)
        student_id = own.id
    if student_id is not None:
        query = query.filter(Fee.student_id == student_id)
    for arg, column in (("status", Fee.status), ("type", Fee.type), ("term", Fee.term), ("academicYear", Fee.academic_year)):
        if request.args.get(arg):
            query = query.filter(column == request.args[arg])
    fees, pagination = paginate(query.order_by(Fee.due_date.desc(), Fee.id.desc()), "Fees")
    return ok([f.to_dict() for f in fees], pagination=pagination)


@fee_bp.route("", methods=["POST"])
@role_required(*FINANCE_ROLES)
def create_fee():
    fee = build_fee(json_body(), current_app.config["DEFAULT_ACADEMIC_YEAR"])
    get_or_404(Student, fee.student_id, "Student")
    db.session.add(fee)
    commit()
    return ok(fee.to_dict(), "Fee created successfully", 201)


@fee_bp.route("/<int:fee_id>", methods=["GET"])
@role_required()
def get_fee(fee_id: int):
    fee = get_or_404(Fee, fee_id, "Fee")
    ensure_can_view_student(g.identity, fee.student_id)
    return ok(fee.to_dict(with_history=True))


@fee_bp.route("/<int:fee_id>", methods=["PUT"])
@role_required(*FINANCE_ROLES)
def update_fee(fee_id: int):
    fee = apply_fee_fields(get_or_404(Fee, fee_id, "Fee"), json_body())
    commit()
    return ok(fee.to_dict(), "Fee updated successfully")


@fee_bp.route("/<int:fee_id>/payment", methods=["POST"])
@role_required(*FINANCE_ROLES)
def pay_fee(fee_id: int):
    fee = get_or_404(Fee, fee_id, "Fee")
    payload = json_body()
    require_fields(payload, "amount", "paymentMethod")
    record_payment(
        fee,
        payload["amount"],
        payload["paymentMethod"],
        transaction_id=payload.get("transactionId"),
        received_by=g.identity.name or g.identity.role,
    )
    commit()
    current_app.logger.info("Payment of %s recorded on fee %s (%s)", payload["amount"], fee.id, fee.status)
    return ok(fee.to_dict(with_history=True), "Payment processed successfully")


@fee_bp.route("/refresh-status", methods=["POST"])
@role_required(*FINANCE_ROLES)
def refresh_statuses():
    changed = refresh_fee_statuses()
    commit()
    return ok({"updated": changed}, f"{changed} fee status(es) updated")


@fee_bp.route("/analytics/overview", methods=["GET"])
@role_required(*FINANCE_ROLES, "teacher")
def fee_overview():
    fees = load_fees(academic_year=request.args.get("academicYear"), term=request.args.get("term"))
    return ok(financial_summary(fees))


@fee_bp.route("/analytics/student/<int:student_id>", methods=["GET"])
@role_required()
def student_fee_analytics(student_id: int):
    ensure_can_view_student(g.identity, student_id)
    student = get_or_404(Student, student_id, "Student")
    fees = load_fees(student_id=student.id, academic_year=request.args.get("academicYear"))
    return ok({
        "student": {"id": student.id, "name": student.name, "class": student.class_name},
        "summary": financial_summary(fees),
        "fees": [f.to_dict() for f in fees],
    })


@fee_bp.route("/analytics/revenue", methods=["GET"])
@role_required(*FINANCE_ROLES)
def revenue_series():
    months = max(1, min(int_arg("months", current_app.config["FINANCE_REVENUE_MONTHS"]), 36))
    today = date.today()
    year, month = shift_month(today.year, today.month, -(months - 1))
    fees = load_fees(paid_from=date(year, month, 1))
    return ok({"months": months, "series": monthly_revenue(fees, months, today)})
