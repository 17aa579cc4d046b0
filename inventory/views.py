from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from utilities.availability import SORT_FIELDS, describe_equipment, list_equipment
from utilities.database import EFFECTIVE_ONLY_STATUSES, EQUIPMENT_STATUSES
from utilities.equipment_registry import (
    CONDITION_STATUS_ADVISORY,
    clear_relabeling,
    create_category,
    create_equipment,
    list_categories,
    soft_delete_equipment,
    suggest_status,
    update_equipment,
)
from utilities.errors import ValidationError
from utilities.request_helpers import json_body, pagination_args, require_equipment_editor

inventory_bp = Blueprint("inventory", __name__)


@inventory_bp.get("/equipment")
@login_required
def equipment_index():
    page, limit = pagination_args()

    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in EQUIPMENT_STATUSES + EFFECTIVE_ONLY_STATUSES:
        raise ValidationError({"status": "Unknown status filter."})

    category = request.args.get("category") or None
    if category is not None:
        try:
            category = int(category)
        except ValueError:
            raise ValidationError({"category": "Category must be an integer ID."})

    sort = request.args.get("sort", "name")
    if sort not in SORT_FIELDS:
        sort = "name"

    return jsonify(
        list_equipment(
            status=status,
            category=category,
            search=(request.args.get("search") or "").strip() or None,
            sort=sort,
            order=request.args.get("order", "asc"),
            page=page,
            limit=limit,
        )
    )


@inventory_bp.get("/equipment/<int:equipment_id>")
@login_required
def equipment_detail(equipment_id: int):
    return jsonify(describe_equipment(equipment_id))


@inventory_bp.post("/equipment")
@login_required
def equipment_create():
    require_equipment_editor()
    data = json_body()
    created = create_equipment(data, quantity=data.get("quantity", 1), actor=current_user.id)
    payload = {
        "message": f"Created {len(created)} equipment item(s)",
        "count": len(created),
        "equipment": [describe_equipment(unit.id) for unit in created],
    }
    return jsonify(payload), 201


@inventory_bp.put("/equipment/<int:equipment_id>")
@login_required
def equipment_update(equipment_id: int):
    require_equipment_editor()
    result = update_equipment(equipment_id, json_body(), actor=current_user.id)
    return jsonify(
        {
            "equipment": describe_equipment(result.equipment.id),
            "changes": result.changes,
            "relabeling_triggered": result.relabeled,
        }
    )


@inventory_bp.delete("/equipment/<int:equipment_id>")
@login_required
def equipment_delete(equipment_id: int):
    require_equipment_editor()
    equipment = soft_delete_equipment(equipment_id, actor=current_user.id)
    return jsonify({"message": "Equipment deleted successfully", "id": equipment.id})


@inventory_bp.post("/equipment/<int:equipment_id>/clear-relabel")
@login_required
def equipment_clear_relabel(equipment_id: int):
    require_equipment_editor()
    clear_relabeling(equipment_id, actor=current_user.id)
    return jsonify(describe_equipment(equipment_id))


@inventory_bp.get("/equipment/status-advice")
@login_required
def status_advice():
    condition = request.args.get("condition")
    if condition:
        return jsonify({"condition": condition, "suggested_status": suggest_status(condition)})
    return jsonify(CONDITION_STATUS_ADVISORY)


@inventory_bp.get("/categories")
@login_required
def categories_index():
    return jsonify(list_categories())


@inventory_bp.post("/categories")
@login_required
def categories_create():
    require_equipment_editor()
    data = json_body()
    category = create_category(
        data.get("name"),
        description=data.get("description"),
        color=data.get("color"),
        actor=current_user.id,
    )
    return jsonify(category.to_dict()), 201
