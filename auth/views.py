from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from utilities.database import log_activity
from utilities.errors import ValidationError
from utilities.logger import get_logger
from utilities.rate_limit import limiter, login_rate_limit
from utilities.request_helpers import json_body, query_flag, require_admin
from utilities.user_registry import (
    authenticate_pin,
    create_user,
    get_user_or_404,
    list_users,
    soft_delete_user,
    update_user,
)

# Define the blueprint HERE. Do NOT import another auth_bp from elsewhere.
auth_bp = Blueprint("auth", __name__)

logger = get_logger("auth")


@auth_bp.post("/auth/login")
@limiter.limit(login_rate_limit)
def login():
    data = json_body()
    pin = str(data.get("pin") or "").strip()
    remember = bool(data.get("remember", False))

    if not pin:
        raise ValidationError({"pin": "Enter your PIN."})

    user = authenticate_pin(pin)
    if user is None:
        return jsonify({"error": "Invalid PIN.", "code": "invalid_credentials"}), 401

    login_user(user, remember=remember)
    log_activity(
        "auth_login",
        user=user,
        summary="User signed in",
        meta={"remember": remember},
        commit=True,
    )
    logger.info("User %s signed in", user.id)
    return jsonify({"user": user.to_dict()})


@auth_bp.post("/auth/logout")
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    log_activity("auth_logout", user=user_id, summary="User signed out", commit=True)
    return jsonify({"ok": True})


@auth_bp.get("/auth/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.get("/users")
@login_required
def users_index():
    include_inactive = query_flag("include_inactive")
    if include_inactive:
        require_admin()
    return jsonify(list_users(active_only=not include_inactive))


@auth_bp.get("/users/<int:user_id>")
@login_required
def user_detail(user_id: int):
    if user_id != current_user.id:
        require_admin()
    return jsonify(get_user_or_404(user_id).to_dict())


@auth_bp.post("/users")
@login_required
def users_create():
    require_admin()
    user = create_user(json_body(), actor=current_user.id)
    return jsonify(user.to_dict()), 201


@auth_bp.put("/users/<int:user_id>")
@login_required
def users_update(user_id: int):
    require_admin()
    user = update_user(user_id, json_body(), actor=current_user.id)
    return jsonify(user.to_dict())


@auth_bp.delete("/users/<int:user_id>")
@login_required
def users_delete(user_id: int):
    require_admin()
    if user_id == current_user.id:
        raise ValidationError({"user_id": "You cannot remove your own account."})
    user = soft_delete_user(user_id, actor=current_user.id)
    return jsonify({"message": f"User {user.name} removed.", "id": user.id})

