from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from utilities.activity_feed import ACTIVITY_FILTERS, list_activity, recent_activity
from utilities.errors import ValidationError
from utilities.request_helpers import pagination_args, require_admin
from utilities.transaction_engine import dashboard_summary, utilization_report

main_bp = Blueprint("main", __name__)


@main_bp.get("/health")
def health():
    return {"ok": True}, 200


@main_bp.get("/api/reports/dashboard")
@login_required
def dashboard():
    return jsonify(dashboard_summary())


@main_bp.get("/api/reports/utilization")
@login_required
def utilization():
    return jsonify(utilization_report())


@main_bp.get("/api/activity/recent")
@login_required
def activity_recent():
    require_admin()
    try:
        limit = int(request.args.get("limit", 20))
    except (TypeError, ValueError):
        raise ValidationError({"limit": "limit must be an integer."})
    return jsonify(recent_activity(min(max(limit, 1), current_app.config.get("MAX_PAGE_SIZE", 200))))


@main_bp.get("/api/activity")
@login_required
def activity_index():
    require_admin()
    page, limit = pagination_args()
    filters = {key: request.args.get(key) for key in ACTIVITY_FILTERS if request.args.get(key)}
    return jsonify(list_activity(filters, page=page, limit=limit))
