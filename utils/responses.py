from __future__ import annotations

import math
from datetime import date
from typing import Any

from flask import jsonify, request

from utils.errors import ValidationError

MAX_PAGE_SIZE = 100


def ok(data: Any = None, message: str | None = None, status: int = 200, **extra: Any):
    payload: dict[str, Any] = {"success": True}
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return jsonify(payload), status


def fail(message: str, status: int = 400, error: str | None = None):
    payload: dict[str, Any] = {"success": False, "message": message}
    if error:
        payload["error"] = error
    return jsonify(payload), status


def page_args(default_limit: int = 10) -> tuple[int, int]:
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers", field="page")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive", field="page")
    return page, min(limit, MAX_PAGE_SIZE)


def paginate(query, entity: str, default_limit: int = 10) -> tuple[list, dict[str, Any]]:
    """Slice ``query`` by the request's page/limit and build the pagination block.

    ``entity`` names the total key, e.g. ``Promotions`` -> ``totalPromotions``.
    """
    page, limit = page_args(default_limit)
    total = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    total_pages = math.ceil(total / limit) if total else 0
    return items, {
        "currentPage": page,
        "totalPages": total_pages,
        f"total{entity}": total,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_date(raw: Any, field: str) -> date:
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)


def date_arg(name: str, default: date | None = None) -> date | None:
    raw = request.args.get(name)
    if not raw:
        return default
    return parse_date(raw, name)


def int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)


def id_list(raw: Any, field: str) -> list[int] | None:
    """``[1, "2"]`` -> ``[1, 2]``; ``None``/empty -> ``None``."""
    if not raw:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{field} must be a list", field=field)
    try:
        return [int(item) for item in raw]
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must contain integer ids", field=field)
