from flask import Blueprint, current_app, g, request

from extensions import limiter
from models import Promotion, Student
from utils import STAFF_ROLES, role_required
from utils.access import ensure_can_view_student, ensure_scope
from utils.db_helpers import get_or_404
from utils.errors import require_fields
from utils.promotion import PromotionRequirements, bulk_promote, evaluate_class, hold_back, promote_by_id, promotion_stats
from utils.responses import id_list, json_body, ok, paginate

promotion_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotion_bp.route("", methods=["GET"])
@role_required(*STAFF_ROLES)
def list_promotions():
    query = Promotion.query
    for arg, column in (
        ("academicYear", Promotion.academic_year),
        ("term", Promotion.term),
        ("status", Promotion.promotion_status),
        ("class", Promotion.current_class),
    ):
        if request.args.get(arg):
            query = query.filter(column == request.args[arg])
    promotions, pagination = paginate(
        query.order_by(Promotion.current_class, Promotion.student_name), "Promotions", default_limit=20
    )
    return ok([p.to_dict() for p in promotions], pagination=pagination)


@promotion_bp.route("/evaluate", methods=["POST"])
@role_required("admin", "teacher")
@limiter.limit("10 per minute")
def evaluate():
    payload = json_body()
    require_fields(payload, "classId", "academicYear", "term")
    summary = evaluate_class(
        payload["classId"],
        payload["academicYear"],
        payload["term"],
        requirements=PromotionRequirements.from_payload(payload.get("requirements")),
    )
    return ok(summary, f"Evaluated {summary['evaluated']} students for promotion")


@promotion_bp.route("/promote/<int:promotion_id>", methods=["POST"])
@role_required("admin")
def promote_student(promotion_id: int):
    promotion = promote_by_id(promotion_id, approver=g.identity)
    current_app.logger.info("Promotion %s applied by user %s", promotion.id, g.identity.user_id)
    return ok(promotion.to_dict(), "Student promoted successfully")


@promotion_bp.route("/bulk-promote", methods=["POST"])
@role_required("admin")
@limiter.limit("5 per minute")
def bulk():
    payload = json_body()
    require_fields(payload, "academicYear")
    results = bulk_promote(
        payload["academicYear"],
        class_id=payload.get("classId"),
        term=payload.get("term"),
        student_ids=id_list(payload.get("studentIds"), "studentIds"),
        approver=g.identity,
    )
    return ok(results, f"Bulk promotion completed: {results['promoted']} promoted, {results['failed']} failed")


@promotion_bp.route("/<int:promotion_id>/hold-back", methods=["POST"])
@role_required("admin")
def hold(promotion_id: int):
    promotion = hold_back(promotion_id, approver=g.identity, remarks=json_body().get("remarks"))
    return ok(promotion.to_dict(), "Student held back")


@promotion_bp.route("/student/<int:student_id>", methods=["GET"])
@role_required()
def student_history(student_id: int):
    ensure_can_view_student(g.identity, student_id)
    get_or_404(Student, student_id, "Student")
    history = (
        Promotion.query.filter_by(student_id=student_id)
        .order_by(Promotion.academic_year.desc(), Promotion.id.desc())
        .all()
    )
    return ok([p.to_dict() for p in history])


@promotion_bp.route("/stats", methods=["GET"])
@role_required()
def stats():
    ensure_scope(g.identity, "promotion_stats")
    cfg = current_app.config
    return ok(promotion_stats(
        request.args.get("academicYear") or cfg["DEFAULT_ACADEMIC_YEAR"],
        request.args.get("term") or cfg["DEFAULT_TERM"],
    ))
