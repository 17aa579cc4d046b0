# checkout/views.py
from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from utilities.database import TRANSACTION_TYPES
from utilities.errors import PermissionDenied, ValidationError
from utilities.request_helpers import json_body, pagination_args
from utilities.transaction_engine import (
    checkin_equipment,
    checkout_equipment,
    get_batch,
    list_overdue,
    list_transactions,
)

checkout_bp = Blueprint("checkout", __name__)


@checkout_bp.post("/checkout")
@login_required
def checkout():
    data = json_body()
    missing = {
        key: f"{key} is required."
        for key in ("equipment_id", "user_id", "expected_return_date", "purpose")
        if data.get(key) in (None, "", [])
    }
    if missing:
        raise ValidationError(missing)

    result = checkout_equipment(
        data["equipment_id"],
        borrower_id=data["user_id"],
        expected_return_date=data["expected_return_date"],
        purpose=data["purpose"],
        notes=data.get("notes"),
        actor_id=current_user.id,
    )
    payload = result.to_dict()
    payload["message"] = f"Successfully checked out {result.transaction_count} item(s)"
    return jsonify(payload), 201


@checkout_bp.post("/checkin")
@login_required
def checkin():
    data = json_body()
    if data.get("equipment_id") in (None, "", []):
        raise ValidationError({"equipment_id": "equipment_id is required."})

    # The signed-in user is the actor; a different checked_in_by is refused
    checked_in_by = data.get("checked_in_by", current_user.id)
    try:
        checked_in_by = int(checked_in_by)
    except (TypeError, ValueError):
        raise ValidationError({"checked_in_by": "checked_in_by must be a user ID."})
    if checked_in_by != current_user.id:
        raise PermissionDenied("checked_in_by must be the signed-in user")

    result = checkin_equipment(
        data["equipment_id"],
        actor_id=checked_in_by,
        return_location=data.get("return_location") or "studio",
        condition_on_return=data.get("condition_on_return"),
        notes=data.get("notes"),
    )
    payload = result.to_dict()
    payload["message"] = f"Successfully checked in {result.transaction_count} item(s)"
    return jsonify(payload)


@checkout_bp.get("/", strict_slashes=False)
@login_required
def history():
    page, limit = pagination_args()
    filters = {
        key: request.args.get(key)
        for key in ("equipment_id", "user_id", "type", "start_date", "end_date", "batch_id")
        if request.args.get(key)
    }
    if filters.get("type") and filters["type"] not in TRANSACTION_TYPES:
        raise ValidationError({"type": "Unknown transaction type."})
    for key in ("equipment_id", "user_id"):
        if key in filters and not str(filters[key]).isdigit():
            raise ValidationError({key: f"{key} must be an integer."})
    return jsonify(list_transactions(filters, page=page, limit=limit))


@checkout_bp.get("/overdue")
@login_required
def overdue():
    return jsonify(list_overdue())


@checkout_bp.get("/batch/<batch_id>")
@login_required
def batch_detail(batch_id: str):
    return jsonify(get_batch(batch_id))
