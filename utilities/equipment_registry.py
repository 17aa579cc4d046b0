"""
Equipment records: creation, edits, relabeling and soft delete.

Condition -> status advice
--------------------------
``CONDITION_STATUS_ADVISORY`` is what the edit form pre-selects when a
condition is picked. It is advisory only: the registry accepts any valid
persisted status regardless of condition and never applies the map itself.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func

from utilities.availability import open_transaction_for
from utilities.barcode_utils import barcode_generator
from utilities.database import (
    CONDITIONS,
    EQUIPMENT_STATUSES,
    LOCATIONS,
    Category,
    Equipment,
    User,
    log_activity,
)
from utilities.errors import (
    EquipmentCheckedOut,
    NotFoundError,
    StatusLockedByActiveLoan,
    ValidationError,
)
from utilities.logger import get_logger
from utilities.session_helpers import atomic, get_session, session_query

logger = get_logger("equipment")

MAX_QUANTITY = 99

EDITABLE_FIELDS = [
    "name",
    "serial_number",
    "barcode",
    "model",
    "manufacturer",
    "category_id",
    "purchase_date",
    "purchase_price",
    "current_value",
    "condition",
    "status",
    "location",
    "description",
    "notes",
]
# Fields whose change forces a barcode re-derivation
BARCODE_FIELDS = ("category_id", "purchase_date")
# NOT NULL columns an edit may change but never clear
REQUIRED_CHOICES = ("condition", "status", "location")

CONDITION_STATUS_ADVISORY = {
    "brand_new": "available",
    "functional": "available",
    "normal": "available",
    "worn": "needs_maintenance",
    "out_of_commission": "unavailable",
    "broken": "unavailable",
}

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

Actor = Optional[Union[User, int]]


def suggest_status(condition: Optional[str]) -> Optional[str]:
    """Advisory persisted status for a condition (None when unknown)."""
    if not condition:
        return None
    return CONDITION_STATUS_ADVISORY.get(condition.strip().lower())


@dataclass
class UpdateResult:
    equipment: Equipment
    changes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    relabeled: bool = False


# --- Field cleaning ---

def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_date(value: Any, field_name: str, errors: Dict[str, str]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip()).date()
    except ValueError:
        errors[field_name] = "Date must be in YYYY-MM-DD format."
        return None


def _parse_money(value: Any, field_name: str, errors: Dict[str, str]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field_name] = "Must be a number."
        return None
    if amount < 0:
        errors[field_name] = "Must be a positive number."
        return None
    return amount


def _parse_choice(value: Any, choices: Iterable[str], field_name: str, errors: Dict[str, str]) -> Optional[str]:
    cleaned = _clean_str(value)
    if cleaned is None:
        return None
    cleaned = cleaned.lower()
    if cleaned not in choices:
        errors[field_name] = f"Must be one of: {', '.join(choices)}."
        return None
    return cleaned


def _parse_category(value: Any, errors: Dict[str, str]) -> Optional[Category]:
    if value is None or value == "":
        return None
    try:
        category_id = int(value)
    except (TypeError, ValueError):
        errors["category_id"] = "Category ID must be an integer."
        return None
    category = get_session().get(Category, category_id)
    if category is None:
        errors["category_id"] = "Selected category could not be found."
    return category


def _clean_fields(data: Dict[str, Any], errors: Dict[str, str], partial: bool = False) -> Dict[str, Any]:
    """
    Normalise the editable subset of ``data``; problems go into ``errors``.

    On create a blank condition, status or location falls back to its default.
    On a partial edit those columns cannot be blanked.
    """
    cleaned: Dict[str, Any] = {}
    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        raw = data[key]
        if key == "name":
            name = _clean_str(raw)
            if not name:
                errors["name"] = "Name is required."
            cleaned[key] = name
        elif key == "category_id":
            category = _parse_category(raw, errors)
            cleaned[key] = category.id if category else None
        elif key == "purchase_date":
            cleaned[key] = _parse_date(raw, key, errors)
        elif key in ("purchase_price", "current_value"):
            cleaned[key] = _parse_money(raw, key, errors)
        elif key == "condition":
            cleaned[key] = _parse_choice(raw, CONDITIONS, key, errors)
        elif key == "status":
            cleaned[key] = _parse_choice(raw, EQUIPMENT_STATUSES, key, errors)
        elif key == "location":
            cleaned[key] = _parse_choice(raw, LOCATIONS, key, errors)
        else:
            cleaned[key] = _clean_str(raw)

        if partial and key in REQUIRED_CHOICES and cleaned[key] is None and key not in errors:
            errors[key] = f"{key.title()} is required."
    return cleaned


def _json_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _serial_in_use(serial_number: str, exclude_id: Optional[int] = None) -> bool:
    query = session_query(Equipment.id).filter(
        Equipment.is_active.is_(True),
        func.lower(Equipment.serial_number) == serial_number.lower(),
    )
    if exclude_id is not None:
        query = query.filter(Equipment.id != exclude_id)
    return query.first() is not None


def get_equipment_or_404(equipment_id: int, include_inactive: bool = False) -> Equipment:
    query = session_query(Equipment).filter(Equipment.id == equipment_id)
    if not include_inactive:
        query = query.filter(Equipment.is_active.is_(True))
    equipment = query.first()
    if equipment is None:
        raise NotFoundError("Equipment not found", equipment_id=equipment_id)
    return equipment


# --- Operations ---

def create_equipment(attrs: Dict[str, Any], quantity: Any = 1, actor: Actor = None) -> List[Equipment]:
    """
    Create one or more identical units.

    Args:
        attrs: Editable fields, plus optional ``serial_numbers`` (one per unit
            when quantity > 1)
        quantity: Number of units, 1-99
        actor: User performing the change (for the audit trail)

    Returns:
        The created units, each with its own barcode.
    """
    errors: Dict[str, str] = {}

    try:
        count = 1 if quantity in (None, "") else int(quantity)
    except (TypeError, ValueError):
        count = 0
    if count < 1 or count > MAX_QUANTITY:
        errors["quantity"] = f"Quantity must be between 1 and {MAX_QUANTITY}."
        count = max(count, 1)

    if "name" not in attrs:
        errors["name"] = "Name is required."
    fields = _clean_fields(attrs, errors)

    serial_numbers: List[Optional[str]] = [None] * count
    raw_serials = attrs.get("serial_numbers")
    if raw_serials is not None:
        if not isinstance(raw_serials, (list, tuple)):
            errors["serial_numbers"] = "Serial numbers must be a list."
        elif len(raw_serials) != count:
            errors["serial_numbers"] = (
                f"Serial numbers count ({len(raw_serials)}) doesn't match quantity ({count})"
            )
        else:
            serial_numbers = [_clean_str(sn) for sn in raw_serials]
    elif count == 1:
        serial_numbers = [fields.get("serial_number")]

    seen = set()
    for sn in serial_numbers:
        if not sn:
            continue
        if sn.lower() in seen:
            errors["serial_numbers"] = f"Serial number repeated in request: {sn}"
        elif _serial_in_use(sn):
            errors["serial_number" if count == 1 else "serial_numbers"] = f"Serial number already exists: {sn}"
        seen.add(sn.lower())

    explicit_barcode = fields.get("barcode")
    if explicit_barcode:
        if count > 1:
            errors["barcode"] = "An explicit barcode can only be given for a single unit."
        elif barcode_generator.is_taken(explicit_barcode):
            errors["barcode"] = f"Barcode already in use: {explicit_barcode}"

    if errors:
        raise ValidationError(errors)

    actor_id = getattr(actor, "id", actor)
    category = get_session().get(Category, fields["category_id"]) if fields.get("category_id") else None
    category_name = category.name if category else None

    with atomic() as session:
        # All barcodes are allocated before the first insert so the offsets share one base
        barcodes = [
            explicit_barcode
            or barcode_generator.generate(
                category_name,
                fields.get("purchase_date"),
                sequence_index=index + 1,
                serial_number=serial_numbers[index],
                total_in_batch=count,
            )
            for index in range(count)
        ]

        created = []
        for index in range(count):
            unit = Equipment(
                name=fields["name"],
                serial_number=serial_numbers[index],
                barcode=barcodes[index],
                model=fields.get("model"),
                manufacturer=fields.get("manufacturer"),
                category_id=fields.get("category_id"),
                purchase_date=fields.get("purchase_date"),
                purchase_price=fields.get("purchase_price"),
                current_value=fields.get("current_value"),
                condition=fields.get("condition") or "normal",
                status=fields.get("status") or "available",
                location=fields.get("location") or "studio",
                description=fields.get("description"),
                notes=fields.get("notes"),
                needs_relabeling=False,
                is_active=True,
            )
            session.add(unit)
            session.flush()

            log_activity(
                "equipment_created",
                user=actor_id,
                target=unit,
                summary=f"Created equipment {unit.name} ({unit.barcode})",
                meta={
                    "name": unit.name,
                    "barcode": unit.barcode,
                    "category_id": unit.category_id,
                    "count": f"{index + 1}/{count}",
                },
            )
            created.append(unit)

    logger.info("Created %s equipment item(s): %s", len(created), ", ".join(u.barcode for u in created))
    return created


def update_equipment(equipment_id: int, patch: Dict[str, Any], actor: Actor = None) -> UpdateResult:
    """
    Apply a partial edit.

    Persisted status is locked while a transaction is open on the unit. A
    category or acquisition-date change re-derives the barcode; when the code
    drifts it is overwritten and ``needs_relabeling`` is set. The flag is
    never cleared here (see ``clear_relabeling``).
    """
    equipment = get_equipment_or_404(equipment_id)

    errors: Dict[str, str] = {}
    fields = _clean_fields(patch, errors, partial=True)
    if not fields and not errors:
        raise ValidationError({"_": "No valid fields to update"}, message="No valid fields to update")

    if fields.get("serial_number") and _serial_in_use(fields["serial_number"], exclude_id=equipment.id):
        errors["serial_number"] = f"Serial number already exists: {fields['serial_number']}"
    if "barcode" in fields:
        if not fields["barcode"]:
            errors["barcode"] = "Barcode cannot be empty."
        elif barcode_generator.is_taken(fields["barcode"], exclude_id=equipment.id):
            errors["barcode"] = f"Barcode already in use: {fields['barcode']}"
    if errors:
        raise ValidationError(errors)

    if "status" in fields and fields["status"] != equipment.status:
        if open_transaction_for(equipment.id) is not None:
            raise StatusLockedByActiveLoan(equipment.id)

    actor_id = getattr(actor, "id", actor)
    before = {key: getattr(equipment, key) for key in EDITABLE_FIELDS + ["needs_relabeling"]}

    with atomic() as session:
        for key, value in fields.items():
            setattr(equipment, key, value)

        relabeled = False
        drift_fields = [k for k in BARCODE_FIELDS if k in fields and fields[k] != before[k]]
        barcode_set_explicitly = "barcode" in fields and fields["barcode"] != before["barcode"]
        if drift_fields and not barcode_set_explicitly:
            category = session.get(Category, equipment.category_id) if equipment.category_id else None
            expected = barcode_generator.rederive(
                equipment.barcode,
                category.name if category else None,
                equipment.purchase_date,
                exclude_id=equipment.id,
            )
            if expected != equipment.barcode:
                logger.info(
                    "Barcode drift on equipment %s: %s -> %s", equipment.id, equipment.barcode, expected
                )
                equipment.barcode = expected
                equipment.needs_relabeling = True
                relabeled = True

        changes = {}
        for key, old in before.items():
            new = getattr(equipment, key)
            if old != new:
                changes[key] = {"from": _json_value(old), "to": _json_value(new)}

        if changes:
            log_activity(
                "equipment_updated",
                user=actor_id,
                target=equipment,
                summary=f"Updated equipment {equipment.name}",
                meta={"changes": changes},
            )
        if relabeled:
            log_activity(
                "equipment_relabel_required",
                user=actor_id,
                target=equipment,
                summary=f"Equipment {equipment.name} needs a new label ({equipment.barcode})",
                meta={"from": before["barcode"], "to": equipment.barcode, "fields": drift_fields},
            )

    return UpdateResult(equipment=equipment, changes=changes, relabeled=relabeled)


def clear_relabeling(equipment_id: int, actor: Actor = None) -> Equipment:
    """Mark the physical label as replaced. The only path that resets the flag."""
    equipment = get_equipment_or_404(equipment_id)
    if not equipment.needs_relabeling:
        return equipment

    with atomic():
        equipment.needs_relabeling = False
        log_activity(
            "equipment_relabeled",
            user=getattr(actor, "id", actor),
            target=equipment,
            summary=f"Relabeled equipment {equipment.name} ({equipment.barcode})",
            meta={"barcode": equipment.barcode},
        )
    return equipment


def soft_delete_equipment(equipment_id: int, actor: Actor = None) -> Equipment:
    equipment = get_equipment_or_404(equipment_id)

    if open_transaction_for(equipment.id) is not None:
        raise EquipmentCheckedOut(equipment.id)

    with atomic():
        equipment.is_active = False
        log_activity(
            "equipment_deleted",
            user=getattr(actor, "id", actor),
            target=equipment,
            summary=f"Removed equipment {equipment.name}",
            meta={"name": equipment.name, "barcode": equipment.barcode},
        )

    logger.info("Soft-deleted equipment %s (%s)", equipment.id, equipment.barcode)
    return equipment


# --- Categories ---

def list_categories() -> List[Dict[str, Any]]:
    session = get_session()
    counts = dict(
        session.query(Equipment.category_id, func.count(Equipment.id))
        .filter(Equipment.is_active.is_(True))
        .group_by(Equipment.category_id)
        .all()
    )
    categories = session.query(Category).order_by(Category.name.asc()).all()
    return [dict(c.to_dict(), equipment_count=counts.get(c.id, 0)) for c in categories]


def create_category(name: Any, description: Any = None, color: Any = None, actor: Actor = None) -> Category:
    errors: Dict[str, str] = {}
    name = _clean_str(name)
    color = _clean_str(color)
    if not name:
        errors["name"] = "Category name is required."
    elif session_query(Category).filter(func.lower(Category.name) == name.lower()).first():
        errors["name"] = "Category name already exists."
    if color and not HEX_COLOR.match(color):
        errors["color"] = "Color must be a valid hex color."
    if errors:
        raise ValidationError(errors)

    with atomic() as session:
        category = Category(name=name, description=_clean_str(description), color=color)
        session.add(category)
        session.flush()
        log_activity(
            "category_created",
            user=getattr(actor, "id", actor),
            target=category,
            summary=f"Created category {name}",
        )
    return category
