"""
Checkout, check-in and maintenance transactions.

Every write call handles a batch of equipment ids as one storage transaction:
each unit is locked (where the backend supports row locks), its availability
is resolved again inside the transaction, and the new row is flushed before
moving on to the next unit. Any failure rolls the whole batch back. The
partial unique index on open transactions is the backstop when two callers
race past the check; its violation surfaces as ``InvalidStateForCheckout``.
"""
from datetime import date, datetime, time, timedelta
from math import ceil
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from utilities.availability import (
    CHECKOUT_ELIGIBLE_STATUSES,
    days_between,
    display_days,
    open_transaction_for,
    resolve,
)
from utilities.batches import BatchItem, BatchResult, generate_batch_id
from utilities.database import (
    CONDITIONS,
    PURPOSES,
    RETURN_LOCATIONS,
    ActivityLog,
    Category,
    Equipment,
    Transaction,
    User,
    log_activity,
    utc_now,
)
from utilities.errors import (
    CheckinNotAuthorized,
    InvalidStateForCheckout,
    InvalidStateForMaintenance,
    NoOpenCheckout,
    NotFoundError,
    PermissionDenied,
    StateConflictError,
    ValidationError,
)
from utilities.logger import get_logger
from utilities.session_helpers import atomic, get_session, session_query

logger = get_logger("transactions")

RETURN_NOTES_SEPARATOR = "\n--- Return Notes ---\n"

EquipmentIds = Union[int, str, Iterable[Union[int, str]]]


# --- Input helpers ---

def normalize_equipment_ids(equipment_ids: EquipmentIds) -> List[int]:
    """Accept a single id or a list; reject empty lists and repeated ids."""
    if equipment_ids is None or equipment_ids == "":
        raise ValidationError({"equipment_id": "Equipment ID is required."})
    if isinstance(equipment_ids, (int, str)):
        equipment_ids = [equipment_ids]

    ids: List[int] = []
    for raw in equipment_ids:
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            raise ValidationError({"equipment_id": f"Invalid equipment ID: {raw!r}"})

    if not ids:
        raise ValidationError({"equipment_id": "At least one equipment ID is required."})
    if len(set(ids)) != len(ids):
        raise ValidationError({"equipment_id": "The same equipment ID was given more than once."})
    return ids


def parse_return_date(value: Any) -> Optional[datetime]:
    """Dates become midnight of that day; full timestamps are kept as given."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    raw = str(value).strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def _active_user(user_id: Any, label: str) -> User:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError({label: "A valid user ID is required."})
    user = session_query(User).filter_by(id=user_id, is_active=True).first()
    if user is None:
        raise NotFoundError("User not found or inactive", user_id=user_id)
    return user


def _locked_equipment(equipment_id: int) -> Equipment:
    equipment = (
        session_query(Equipment)
        .filter_by(id=equipment_id, is_active=True)
        .with_for_update()
        .first()
    )
    if equipment is None:
        raise NotFoundError(f"Equipment not found: {equipment_id}", equipment_id=equipment_id)
    return equipment


def _append_notes(existing: Optional[str], extra: Optional[str]) -> Optional[str]:
    extra = (extra or "").strip()
    if not extra:
        return existing
    if not existing:
        return extra
    return f"{existing}{RETURN_NOTES_SEPARATOR}{extra}"


# --- Checkout / check-in ---

def checkout_equipment(
    equipment_ids: EquipmentIds,
    borrower_id: Any,
    expected_return_date: Any,
    purpose: Any,
    notes: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> BatchResult:
    """
    Open one checkout per unit, all under a single new batch id.

    Raises:
        ValidationError: bad ids, purpose or return date
        NotFoundError: borrower or unit missing/inactive
        InvalidStateForCheckout: a unit is not available or needs_maintenance,
            including one that another caller checked out concurrently
    """
    ids = normalize_equipment_ids(equipment_ids)

    errors: Dict[str, str] = {}
    purpose = (purpose or "").strip().lower() if isinstance(purpose, str) else purpose
    if purpose not in PURPOSES:
        errors["purpose"] = f"Purpose must be one of: {', '.join(PURPOSES)}."
    due = parse_return_date(expected_return_date)
    if due is None:
        errors["expected_return_date"] = "Expected return date is required (YYYY-MM-DD)."
    if errors:
        raise ValidationError(errors)

    borrower = _active_user(borrower_id, "user_id")
    now = now or utc_now()
    batch_id = generate_batch_id(now)
    result = BatchResult(action="checkout", batch_id=batch_id, user_name=borrower.name)

    with atomic() as session:
        for equipment_id in ids:
            equipment = _locked_equipment(equipment_id)
            availability = resolve(equipment_id)
            if availability.status not in CHECKOUT_ELIGIBLE_STATUSES:
                raise InvalidStateForCheckout(equipment.id, equipment.name, availability.status)

            # A failed flush expires the loaded row, so keep what the error needs
            unit_id, unit_name = equipment.id, equipment.name

            txn = Transaction(
                transaction_type="checkout",
                equipment_id=equipment.id,
                user_id=borrower.id,
                batch_id=batch_id,
                checkout_date=now,
                expected_return_date=due,
                condition_on_checkout=equipment.condition,
                purpose=purpose,
                notes=(notes or "").strip() or None,
                created_by=actor_id,
                created_at=now,
            )
            session.add(txn)
            try:
                session.flush()
            except IntegrityError as exc:
                # Lost the race: another open row appeared after our read
                logger.warning("Concurrent checkout detected on equipment %s", unit_id)
                raise InvalidStateForCheckout(unit_id, unit_name, "checked_out") from exc

            equipment.location = "with_user"
            result.items.append(
                BatchItem(id=equipment.id, name=equipment.name, transaction_id=txn.id, barcode=equipment.barcode)
            )

        log_activity(
            "checkout",
            user=actor_id,
            target_type="Batch",
            batch_id=batch_id,
            summary=f"Checked out {result.transaction_count} item(s) to {borrower.name}",
            meta={
                "borrower_id": borrower.id,
                "equipment_ids": ids,
                "transaction_ids": result.transaction_ids,
                "purpose": purpose,
                "expected_return_date": due.isoformat(),
            },
        )

    logger.info(
        "Batch %s: checked out %s item(s) to user %s", batch_id, result.transaction_count, borrower.id
    )
    return result


def checkin_equipment(
    equipment_ids: EquipmentIds,
    actor_id: Any,
    return_location: Any = "studio",
    condition_on_return: Any = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BatchResult:
    """
    Close the open checkout of every unit, all under a single new batch id.

    The actor must be the borrower of each open row or hold an override role.
    Location is always updated; condition only when a value is supplied.
    """
    ids = normalize_equipment_ids(equipment_ids)

    errors: Dict[str, str] = {}
    location = (return_location or "studio").strip().lower() if isinstance(return_location, str) else return_location
    if location not in RETURN_LOCATIONS:
        errors["return_location"] = f"Return location must be one of: {', '.join(RETURN_LOCATIONS)}."
    condition = None
    if condition_on_return not in (None, ""):
        condition = str(condition_on_return).strip().lower()
        if condition not in CONDITIONS:
            errors["condition_on_return"] = f"Condition must be one of: {', '.join(CONDITIONS)}."
    if errors:
        raise ValidationError(errors)

    actor = _active_user(actor_id, "checked_in_by")
    now = now or utc_now()
    batch_id = generate_batch_id(now)
    result = BatchResult(action="checkin", batch_id=batch_id, user_name=actor.name)
    borrowers = set()

    with atomic():
        for equipment_id in ids:
            equipment = _locked_equipment(equipment_id)
            txn = open_transaction_for(equipment.id, transaction_type="checkout")
            if txn is None:
                raise NoOpenCheckout(equipment.id, equipment.name)

            if txn.user_id != actor.id and not actor.can_override_checkin:
                borrower = txn.user
                raise CheckinNotAuthorized(
                    equipment.id,
                    equipment.name,
                    txn.user_id,
                    borrower.name if borrower else f"user {txn.user_id}",
                )

            txn.actual_return_date = now
            txn.checked_in_by = actor.id
            txn.return_batch_id = batch_id
            txn.notes = _append_notes(txn.notes, notes)
            if condition:
                txn.condition_on_return = condition
                equipment.condition = condition
            equipment.location = location

            borrowers.add(txn.user_id)
            result.items.append(
                BatchItem(id=equipment.id, name=equipment.name, transaction_id=txn.id, barcode=equipment.barcode)
            )

        log_activity(
            "checkin",
            user=actor.id,
            target_type="Batch",
            batch_id=batch_id,
            summary=f"Checked in {result.transaction_count} item(s)",
            meta={
                "equipment_ids": ids,
                "transaction_ids": result.transaction_ids,
                "borrower_ids": sorted(borrowers),
                "return_location": location,
                "condition_on_return": condition,
            },
        )

    logger.info("Batch %s: checked in %s item(s) by user %s", batch_id, result.transaction_count, actor.id)
    return result


# --- Maintenance (engine only) ---

def start_maintenance(
    equipment_ids: EquipmentIds,
    actor_id: Any,
    expected_return_date: Any = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BatchResult:
    """Open a maintenance row per unit; any open transaction on a unit rejects the batch."""
    ids = normalize_equipment_ids(equipment_ids)
    actor = _active_user(actor_id, "actor_id")
    if not actor.can_edit_equipment:
        raise PermissionDenied("Only admins and managers can send equipment to maintenance")

    due = parse_return_date(expected_return_date)
    now = now or utc_now()
    batch_id = generate_batch_id(now)
    result = BatchResult(action="maintenance_start", batch_id=batch_id, user_name=actor.name)

    with atomic() as session:
        for equipment_id in ids:
            equipment = _locked_equipment(equipment_id)
            availability = resolve(equipment_id)
            if availability.open_transaction is not None:
                raise InvalidStateForMaintenance(equipment.id, equipment.name, availability.status)

            unit_id, unit_name = equipment.id, equipment.name

            txn = Transaction(
                transaction_type="maintenance",
                equipment_id=equipment.id,
                user_id=actor.id,
                batch_id=batch_id,
                checkout_date=now,
                expected_return_date=due,
                condition_on_checkout=equipment.condition,
                notes=(notes or "").strip() or None,
                created_by=actor.id,
                created_at=now,
            )
            session.add(txn)
            try:
                session.flush()
            except IntegrityError as exc:
                logger.warning("Concurrent maintenance start detected on equipment %s", unit_id)
                raise InvalidStateForMaintenance(unit_id, unit_name, "checked_out") from exc

            result.items.append(
                BatchItem(id=equipment.id, name=equipment.name, transaction_id=txn.id, barcode=equipment.barcode)
            )

        log_activity(
            "maintenance_start",
            user=actor.id,
            target_type="Batch",
            batch_id=batch_id,
            summary=f"Sent {result.transaction_count} item(s) to maintenance",
            meta={"equipment_ids": ids, "transaction_ids": result.transaction_ids},
        )

    logger.info("Batch %s: %s item(s) sent to maintenance", batch_id, result.transaction_count)
    return result


def complete_maintenance(
    equipment_ids: EquipmentIds,
    actor_id: Any,
    return_location: Any = "studio",
    condition_on_return: Any = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BatchResult:
    """Close the open maintenance row of every unit."""
    ids = normalize_equipment_ids(equipment_ids)
    actor = _active_user(actor_id, "actor_id")
    if not actor.can_edit_equipment:
        raise PermissionDenied("Only admins and managers can complete maintenance")

    errors: Dict[str, str] = {}
    location = (return_location or "studio").strip().lower()
    if location not in RETURN_LOCATIONS:
        errors["return_location"] = f"Return location must be one of: {', '.join(RETURN_LOCATIONS)}."
    condition = (condition_on_return or "").strip().lower() or None
    if condition and condition not in CONDITIONS:
        errors["condition_on_return"] = f"Condition must be one of: {', '.join(CONDITIONS)}."
    if errors:
        raise ValidationError(errors)

    now = now or utc_now()
    batch_id = generate_batch_id(now)
    result = BatchResult(action="maintenance_complete", batch_id=batch_id, user_name=actor.name)

    with atomic():
        for equipment_id in ids:
            equipment = _locked_equipment(equipment_id)
            txn = open_transaction_for(equipment.id, transaction_type="maintenance")
            if txn is None:
                raise StateConflictError(
                    f"No open maintenance found for equipment {equipment.name}",
                    equipment_id=equipment.id,
                )

            txn.actual_return_date = now
            txn.checked_in_by = actor.id
            txn.return_batch_id = batch_id
            txn.notes = _append_notes(txn.notes, notes)
            if condition:
                txn.condition_on_return = condition
                equipment.condition = condition
            equipment.location = location

            result.items.append(
                BatchItem(id=equipment.id, name=equipment.name, transaction_id=txn.id, barcode=equipment.barcode)
            )

        log_activity(
            "maintenance_complete",
            user=actor.id,
            target_type="Batch",
            batch_id=batch_id,
            summary=f"Returned {result.transaction_count} item(s) from maintenance",
            meta={"equipment_ids": ids, "transaction_ids": result.transaction_ids},
        )

    logger.info("Batch %s: %s item(s) back from maintenance", batch_id, result.transaction_count)
    return result


# --- Read side ---

def list_transactions(
    filters: Optional[Dict[str, Any]] = None,
    page: int = 1,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Paginated transaction history, newest first.

    Filters: equipment_id, user_id, type, start_date, end_date, batch_id.
    ``batch_id`` matches rows opened or closed by that batch.
    """
    filters = filters or {}
    now = now or utc_now()
    query = session_query(Transaction)

    if filters.get("equipment_id"):
        query = query.filter(Transaction.equipment_id == int(filters["equipment_id"]))
    if filters.get("user_id"):
        query = query.filter(Transaction.user_id == int(filters["user_id"]))
    if filters.get("type"):
        query = query.filter(Transaction.transaction_type == filters["type"])
    if filters.get("batch_id"):
        batch_id = filters["batch_id"]
        query = query.filter(or_(Transaction.batch_id == batch_id, Transaction.return_batch_id == batch_id))

    errors: Dict[str, str] = {}
    for key, op in (("start_date", "ge"), ("end_date", "le")):
        if not filters.get(key):
            continue
        bound = parse_return_date(filters[key])
        if bound is None:
            errors[key] = "Date must be in YYYY-MM-DD format."
            continue
        if op == "ge":
            query = query.filter(Transaction.created_at >= bound)
        else:
            # A bare date includes the whole day
            if len(str(filters[key]).strip()) == 10:
                bound = bound + timedelta(days=1)
                query = query.filter(Transaction.created_at < bound)
            else:
                query = query.filter(Transaction.created_at <= bound)
    if errors:
        raise ValidationError(errors)

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [txn.to_dict(now) for txn in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": ceil(total / limit) if limit else 0,
        },
    }


def list_overdue(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Open checkouts whose expected return is strictly before ``now``, oldest due first."""
    now = now or utc_now()
    rows = (
        session_query(Transaction)
        .filter(
            Transaction.transaction_type == "checkout",
            Transaction.actual_return_date.is_(None),
            Transaction.expected_return_date < now,
        )
        .order_by(Transaction.expected_return_date.asc(), Transaction.id.asc())
        .all()
    )

    overdue = []
    for txn in rows:
        days = days_between(now, txn.expected_return_date)
        overdue.append(
            {
                "id": txn.id,
                "equipment_id": txn.equipment_id,
                "equipment_name": txn.equipment.name if txn.equipment else None,
                "serial_number": txn.equipment.serial_number if txn.equipment else None,
                "barcode": txn.equipment.barcode if txn.equipment else None,
                "user_id": txn.user_id,
                "user_name": txn.user.name if txn.user else None,
                "user_email": txn.user.email if txn.user else None,
                "phone": txn.user.phone if txn.user else None,
                "checkout_date": txn.checkout_date.isoformat() if txn.checkout_date else None,
                "expected_return_date": txn.expected_return_date.isoformat(),
                "days_overdue": days,
                "days_overdue_display": display_days(days),
            }
        )
    return overdue


def get_batch(batch_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Rows opened or closed by a batch, plus its activity record."""
    now = now or utc_now()
    rows = (
        session_query(Transaction)
        .filter(or_(Transaction.batch_id == batch_id, Transaction.return_batch_id == batch_id))
        .order_by(Transaction.id.asc())
        .all()
    )
    activity = (
        session_query(ActivityLog)
        .filter(ActivityLog.batch_id == batch_id)
        .order_by(ActivityLog.id.asc())
        .first()
    )
    if not rows and activity is None:
        raise NotFoundError("Batch not found", batch_id=batch_id)

    return {
        "batch_id": batch_id,
        "action": activity.action if activity else None,
        "transaction_count": len(rows),
        "transactions": [txn.to_dict(now) for txn in rows],
        "activity": activity.to_dict() if activity else None,
    }


def dashboard_summary(now: Optional[datetime] = None, recent: int = 10) -> Dict[str, Any]:
    now = now or utc_now()
    session = get_session()

    open_counts = dict(
        session.query(Transaction.transaction_type, func.count(Transaction.id))
        .filter(Transaction.actual_return_date.is_(None))
        .group_by(Transaction.transaction_type)
        .all()
    )
    total_equipment = session.query(func.count(Equipment.id)).filter(Equipment.is_active.is_(True)).scalar()
    busy_units = (
        session.query(func.count(func.distinct(Transaction.equipment_id)))
        .join(Equipment, Equipment.id == Transaction.equipment_id)
        .filter(Transaction.actual_return_date.is_(None), Equipment.is_active.is_(True))
        .scalar()
    )
    overdue = (
        session.query(func.count(Transaction.id))
        .filter(
            Transaction.transaction_type == "checkout",
            Transaction.actual_return_date.is_(None),
            Transaction.expected_return_date < now,
        )
        .scalar()
    )
    needs_relabeling = (
        session.query(func.count(Equipment.id))
        .filter(Equipment.is_active.is_(True), Equipment.needs_relabeling.is_(True))
        .scalar()
    )

    recent_rows = (
        session.query(Transaction)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(recent)
        .all()
    )

    return {
        "summary": {
            "total_equipment": total_equipment or 0,
            "available_equipment": (total_equipment or 0) - (busy_units or 0),
            "checked_out_equipment": open_counts.get("checkout", 0),
            "maintenance_equipment": open_counts.get("maintenance", 0),
            "overdue_equipment": overdue or 0,
            "needs_relabeling": needs_relabeling or 0,
            "total_users": session.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0,
            "total_categories": session.query(func.count(Category.id)).scalar() or 0,
        },
        "recent_activity": [
            {
                "transaction_type": txn.transaction_type,
                "created_at": txn.created_at.isoformat() if txn.created_at else None,
                "purpose": txn.purpose,
                "equipment_name": txn.equipment.name if txn.equipment else None,
                "user_name": txn.user.name if txn.user else None,
                "batch_id": txn.batch_id,
            }
            for txn in recent_rows
        ],
    }


def utilization_report(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Checkout usage per active unit, busiest first.

    Days out are fractional; a loan still open counts up to ``now``. Units
    never checked out are listed with zero checkouts and no averages.
    """
    now = now or utc_now()
    session = get_session()

    units = (
        session.query(Equipment)
        .filter(Equipment.is_active.is_(True))
        .order_by(Equipment.id.asc())
        .all()
    )
    loans = (
        session.query(Transaction.equipment_id, Transaction.checkout_date, Transaction.actual_return_date)
        .join(Equipment, Equipment.id == Transaction.equipment_id)
        .filter(Transaction.transaction_type == "checkout", Equipment.is_active.is_(True))
        .all()
    )

    usage: Dict[int, Dict[str, Any]] = {}
    for equipment_id, checkout_date, returned in loans:
        entry = usage.setdefault(equipment_id, {"count": 0, "days": 0.0, "last": None})
        entry["count"] += 1
        entry["days"] += days_between(returned or now, checkout_date) or 0.0
        if entry["last"] is None or checkout_date > entry["last"]:
            entry["last"] = checkout_date

    report = []
    for unit in units:
        entry = usage.get(unit.id)
        count = entry["count"] if entry else 0
        report.append(
            {
                "id": unit.id,
                "name": unit.name,
                "serial_number": unit.serial_number,
                "barcode": unit.barcode,
                "total_checkouts": count,
                "avg_checkout_days": round(entry["days"] / count, 2) if count else None,
                "total_days_out": round(entry["days"], 2) if count else None,
                "last_checkout": entry["last"].isoformat() if count else None,
            }
        )
    report.sort(key=lambda row: row["total_checkouts"], reverse=True)
    return report
