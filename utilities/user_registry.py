"""
Staff accounts: creation, edits, soft delete and PIN sign-in.
"""
import re
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, func

from utilities.database import ROLES, Transaction, User, log_activity
from utilities.errors import NotFoundError, UserHasActiveLoans, ValidationError
from utilities.logger import get_logger
from utilities.session_helpers import atomic, get_session, session_query

logger = get_logger("users")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USER_FIELDS = ["username", "name", "email", "role", "phone", "department"]

Actor = Optional[Union[User, int]]


def _clean_pin(pin: Any) -> Optional[str]:
    if pin is None:
        return None
    pin = str(pin).strip()
    return pin or None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _pin_in_use(pin: str, user_id: Optional[int] = None) -> bool:
    for user in session_query(User).filter_by(is_active=True).all():
        if user.id != user_id and user.check_pin(pin):
            return True
    return False


def _validate_user_fields(fields: Dict[str, Any], *, require_all: bool, user_id: Optional[int] = None) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if require_all or "username" in fields:
        username = fields.get("username")
        if not username or len(username) < 3:
            errors["username"] = "Username must be at least 3 characters."
        elif (
            session_query(User)
            .filter(func.lower(User.username) == username.lower(), User.id != (user_id or 0))
            .first()
        ):
            errors["username"] = "Username already exists."

    if (require_all or "name" in fields) and not fields.get("name"):
        errors["name"] = "Name is required."

    if require_all or "email" in fields:
        email = fields.get("email")
        if not email:
            errors["email"] = "Email is required."
        elif not EMAIL_PATTERN.match(email):
            errors["email"] = "Enter a valid email address."
        elif (
            session_query(User)
            .filter(func.lower(User.email) == email.lower(), User.id != (user_id or 0))
            .first()
        ):
            errors["email"] = "Email already exists."

    if "role" in fields and fields["role"] is not None and fields["role"] not in ROLES:
        errors["role"] = "Select a valid role."

    pin = fields.get("pin")
    if require_all and not pin:
        errors["pin"] = "PIN is required."
    elif pin and (len(pin) < 4 or not pin.isdigit()):
        errors["pin"] = "PIN must be numeric and at least 4 digits."
    elif pin and _pin_in_use(pin, user_id):
        errors["pin"] = "PIN is already assigned to another user."

    return errors


def _normalise(data: Dict[str, Any]) -> Dict[str, Any]:
    fields = {key: _clean(data[key]) for key in USER_FIELDS if key in data}
    if fields.get("role"):
        fields["role"] = fields["role"].lower()
    if fields.get("email"):
        fields["email"] = fields["email"].lower()
    if "pin" in data:
        fields["pin"] = _clean_pin(data["pin"])
    if "is_active" in data:
        fields["is_active"] = bool(data["is_active"])
    return fields


def get_user_or_404(user_id: int) -> User:
    user = get_session().get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", user_id=user_id)
    return user


def active_checkout_count(user_id: int) -> int:
    return (
        session_query(Transaction)
        .filter(
            Transaction.user_id == user_id,
            Transaction.transaction_type == "checkout",
            Transaction.actual_return_date.is_(None),
        )
        .count()
    )


def create_user(data: Dict[str, Any], actor: Actor = None) -> User:
    fields = _normalise(data)
    fields.setdefault("role", "user")
    errors = _validate_user_fields(fields, require_all=True)
    if errors:
        raise ValidationError(errors)

    with atomic() as session:
        user = User(
            username=fields["username"],
            name=fields["name"],
            email=fields["email"],
            role=fields.get("role") or "user",
            phone=fields.get("phone"),
            department=fields.get("department"),
            is_active=True,
        )
        user.set_pin(fields["pin"])
        session.add(user)
        session.flush()
        log_activity(
            "user_created",
            user=actor,
            target=user,
            summary=f"Created user {user.name}",
            meta={"email": user.email, "role": user.role},
        )

    logger.info("Created user %s (%s)", user.id, user.username)
    return user


def update_user(user_id: int, data: Dict[str, Any], actor: Actor = None) -> User:
    user = get_user_or_404(user_id)
    fields = _normalise(data)
    errors = _validate_user_fields(fields, require_all=False, user_id=user.id)
    if errors:
        raise ValidationError(errors)

    # Deactivating through an edit follows the soft-delete rule
    if user.is_active and fields.get("is_active") is False:
        open_loans = active_checkout_count(user.id)
        if open_loans:
            raise UserHasActiveLoans(user.id, open_loans)

    with atomic():
        before = {key: getattr(user, key) for key in USER_FIELDS + ["is_active"]}
        for key in USER_FIELDS + ["is_active"]:
            if key in fields and (fields[key] is not None or key in ("phone", "department")):
                setattr(user, key, fields[key])

        pin_changed = False
        if fields.get("pin"):
            user.set_pin(fields["pin"])
            pin_changed = True

        changes = {}
        for key, old_value in before.items():
            new_value = getattr(user, key)
            if old_value != new_value:
                changes[key] = {"from": old_value, "to": new_value}
        if pin_changed:
            changes["pin"] = {"from": "****", "to": "updated"}

        if changes:
            log_activity(
                "user_updated",
                user=actor,
                target=user,
                summary=f"Updated user {user.name}",
                meta={"changes": changes},
            )
    return user


def soft_delete_user(user_id: int, actor: Actor = None) -> User:
    user = get_user_or_404(user_id)
    open_loans = active_checkout_count(user.id)
    if open_loans:
        raise UserHasActiveLoans(user.id, open_loans)

    with atomic():
        user.is_active = False
        log_activity(
            "user_deleted",
            user=actor,
            target=user,
            summary=f"Removed user {user.name}",
            meta={"name": user.name, "email": user.email, "role": user.role},
        )

    logger.info("Deactivated user %s", user.id)
    return user


def list_users(active_only: bool = True) -> List[Dict[str, Any]]:
    session = get_session()
    open_checkout = case(
        (
            (Transaction.transaction_type == "checkout") & Transaction.actual_return_date.is_(None),
            1,
        ),
        else_=0,
    )
    counts = {
        user_id: (total, active)
        for user_id, total, active in session.query(
            Transaction.user_id,
            func.sum(case((Transaction.transaction_type == "checkout", 1), else_=0)),
            func.sum(open_checkout),
        )
        .group_by(Transaction.user_id)
        .all()
    }

    query = session.query(User)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    users = query.order_by(User.name.asc()).all()

    result = []
    for user in users:
        total, active = counts.get(user.id, (0, 0))
        entry = user.to_dict()
        entry["total_checkouts"] = int(total or 0)
        entry["active_checkouts"] = int(active or 0)
        result.append(entry)
    return result


def authenticate_pin(pin: Any) -> Optional[User]:
    """The single active user whose PIN matches; ambiguous matches are rejected."""
    pin = _clean_pin(pin)
    if not pin:
        return None

    candidates = [u for u in session_query(User).filter_by(is_active=True).all() if u.check_pin(pin)]
    if len(candidates) > 1:
        logger.warning("PIN matched %s active users; refusing sign-in", len(candidates))
        return None
    return candidates[0] if candidates else None
