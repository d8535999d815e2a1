from flask import Blueprint, g, request

from extensions import db
from models import ACCESS_LEVELS, ROLES, Announcement, Resource
from utils import role_required
from utils.access import audience_matches, can_view, visible_levels
from utils.db_helpers import commit, get_or_404
from utils.errors import ForbiddenError, ValidationError, require_fields
from utils.responses import json_body, ok, paginate

resource_bp = Blueprint("resources", __name__, url_prefix="/api/resources")
announcement_bp = Blueprint("announcements", __name__, url_prefix="/api/announcements")


@resource_bp.route("", methods=["GET"])
@role_required()
def list_resources():
    query = Resource.query.filter(
        Resource.is_active.is_(True),
        Resource.access_level.in_(visible_levels(g.identity.role)),
    )
    for arg, column in (("type", Resource.type), ("subject", Resource.subject), ("grade", Resource.grade)):
        if request.args.get(arg):
            query = query.filter(column == request.args[arg])
    resources, pagination = paginate(query.order_by(Resource.created_at.desc()), "Resources")
    return ok([r.to_dict() for r in resources], pagination=pagination)


@resource_bp.route("/<int:resource_id>", methods=["GET"])
@role_required()
def get_resource(resource_id: int):
    resource = get_or_404(Resource, resource_id, "Resource")
    if not can_view(resource.access_level, g.identity.role):
        raise ForbiddenError("Access denied")
    return ok(resource.to_dict())


@resource_bp.route("", methods=["POST"])
@role_required("admin", "teacher")
def create_resource():
    payload = json_body()
    require_fields(payload, "name")
    level = payload.get("accessLevel", "students")
    if level not in ACCESS_LEVELS:
        raise ValidationError(f"accessLevel must be one of {', '.join(ACCESS_LEVELS)}", field="accessLevel")
    resource = Resource(
        name=payload["name"],
        type=payload.get("type") or "document",
        subject=payload.get("subject"),
        grade=payload.get("grade"),
        access_level=level,
        description=payload.get("description"),
    )
    db.session.add(resource)
    commit()
    return ok(resource.to_dict(), "Resource created successfully", 201)


@announcement_bp.route("", methods=["GET"])
@role_required()
def list_announcements():
    rows = Announcement.query.filter_by(is_active=True).order_by(Announcement.created_at.desc()).all()
    visible = [a.to_dict() for a in rows if audience_matches(a.audience, g.identity.role)]
    return ok(visible)


@announcement_bp.route("", methods=["POST"])
@role_required("admin")
def create_announcement():
    payload = json_body()
    require_fields(payload, "title", "content")
    audience = payload.get("targetAudience") or ["all"]
    if isinstance(audience, str):
        audience = [audience]
    unknown = [a for a in audience if a != "all" and a not in ROLES]
    if unknown:
        raise ValidationError(f"Unknown audience: {', '.join(unknown)}", field="targetAudience")
    announcement = Announcement(
        title=payload["title"],
        content=payload["content"],
        target_audience=",".join(audience),
        priority=payload.get("priority") or "medium",
    )
    db.session.add(announcement)
    commit()
    return ok(announcement.to_dict(), "Announcement created successfully", 201)
