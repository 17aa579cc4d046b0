"""
Small helpers shared by the JSON blueprints.
"""
from typing import Any, Dict, Tuple

from flask import current_app, request
from flask_login import current_user

from utilities.errors import PermissionDenied, ValidationError


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError({"_": "Request body must be a JSON object."})
    return payload


def pagination_args() -> Tuple[int, int]:
    """``page`` and ``limit`` from the query string, clamped to the configured bounds."""
    default = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    maximum = current_app.config.get("MAX_PAGE_SIZE", 200)
    try:
        page = max(int(request.args.get("page", 1)), 1)
        limit = int(request.args.get("limit", default))
    except (TypeError, ValueError):
        raise ValidationError({"page": "page and limit must be integers."})
    limit = min(max(limit, 1), maximum)
    return page, limit


def require_admin():
    if getattr(current_user, "role", "").lower() != "admin":
        raise PermissionDenied("Admin access required")


def require_equipment_editor():
    if not getattr(current_user, "can_edit_equipment", False):
        raise PermissionDenied("Admin or manager access required")


def query_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}
