from datetime import datetime

from flask import Blueprint, g, request

from utils import role_required
from utils.access import ensure_scope
from utils.analytics import DEFAULT_RANGE, build_dashboard, dashboard_section
from utils.responses import ok

analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.route("", methods=["GET"])
@role_required()
def dashboard():
    ensure_scope(g.identity, "dashboard")
    range_name = request.args.get("range", DEFAULT_RANGE)
    return ok(build_dashboard(range_name), range=range_name, generatedAt=datetime.utcnow().isoformat())


@analytics_bp.route("/<section>", methods=["GET"])
@role_required()
def section(section: str):
    ensure_scope(g.identity, section)
    range_name = request.args.get("range", DEFAULT_RANGE)
    return ok(dashboard_section(section, range_name), type=section, range=range_name)
