"""
Effective availability of equipment units.

A unit's stored ``status`` is the manual classification. While a transaction
is open on the unit, that classification is overlaid at read time:

    open checkout     -> "checked_out"
    open maintenance  -> "maintenance"
    nothing open      -> persisted status

The overlay is never written back to the equipment row. The same rule exists
twice, once in Python (``effective_status``) and once as SQL for the ledger
query (``effective_status_expression``); they must stay in step.
"""
from dataclasses import dataclass
from datetime import datetime
from math import ceil, floor
from typing import Any, Dict, Optional

from sqlalchemy import and_, asc, case, desc, func, or_
from sqlalchemy.orm import aliased

from utilities.database import Category, Equipment, Transaction, User, utc_now
from utilities.errors import NotFoundError
from utilities.session_helpers import get_session, session_query

CHECKED_OUT = "checked_out"
MAINTENANCE = "maintenance"
CHECKOUT_ELIGIBLE_STATUSES = {"available", "needs_maintenance"}

_OVERLAY_BY_TYPE = {
    "checkout": CHECKED_OUT,
    "maintenance": MAINTENANCE,
}

SORT_FIELDS = ["name", "serial_number", "category_name", "status", "checkout_date", "expected_return_date"]

SECONDS_PER_DAY = 86400.0


@dataclass
class Availability:
    equipment_id: int
    status: str
    persisted_status: str
    open_transaction: Optional[Transaction] = None

    @property
    def is_checked_out(self) -> bool:
        return self.status == CHECKED_OUT

    @property
    def can_checkout(self) -> bool:
        return self.status in CHECKOUT_ELIGIBLE_STATUSES


def effective_status(persisted_status: str, open_transaction: Optional[Transaction]) -> str:
    if open_transaction is None or open_transaction.actual_return_date is not None:
        return persisted_status
    return _OVERLAY_BY_TYPE.get(open_transaction.transaction_type, persisted_status)


def effective_status_expression(equipment=Equipment, txn=Transaction):
    """SQL CASE equivalent of ``effective_status`` for an outer-joined open transaction."""
    return case(
        (txn.transaction_type == "checkout", CHECKED_OUT),
        (txn.transaction_type == "maintenance", MAINTENANCE),
        else_=equipment.status,
    )


def open_transaction_for(equipment_id: int, transaction_type: Optional[str] = None) -> Optional[Transaction]:
    """Most recent transaction on the unit whose close date is still null."""
    query = session_query(Transaction).filter(
        Transaction.equipment_id == equipment_id,
        Transaction.actual_return_date.is_(None),
    )
    if transaction_type:
        query = query.filter(Transaction.transaction_type == transaction_type)
    return query.order_by(Transaction.id.desc()).first()


def resolve(equipment_id: int) -> Availability:
    """Live effective status for one active unit. Read-only."""
    equipment = session_query(Equipment).filter_by(id=equipment_id, is_active=True).first()
    if equipment is None:
        raise NotFoundError(f"Equipment not found: {equipment_id}", equipment_id=equipment_id)

    open_txn = open_transaction_for(equipment_id)
    return Availability(
        equipment_id=equipment.id,
        status=effective_status(equipment.status, open_txn),
        persisted_status=equipment.status,
        open_transaction=open_txn,
    )


def days_between(later: Optional[datetime], earlier: Optional[datetime]) -> Optional[float]:
    """Fractional days from ``earlier`` to ``later``; callers floor for display."""
    if later is None or earlier is None:
        return None
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def display_days(days: Optional[float]) -> Optional[int]:
    return floor(days) if days is not None else None


def is_overdue(transaction: Optional[Transaction], now: Optional[datetime] = None) -> bool:
    if transaction is None:
        return False
    return transaction.is_overdue(now or utc_now())


def list_equipment(
    *,
    status: Optional[str] = None,
    category: Optional[int] = None,
    search: Optional[str] = None,
    sort: str = "name",
    order: str = "asc",
    page: int = 1,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Paginated ledger of active units with their effective status.

    Args:
        status: Effective status to filter on (e.g. "checked_out", "available")
        category: Category id
        search: Case-insensitive substring over name, serial, barcode,
            model, manufacturer and category name
        sort: One of SORT_FIELDS (anything else sorts by name)
        order: "asc" or "desc"
        page: 1-based page number
        limit: Page size
        now: Reference time for days_out

    Returns:
        {"data": [...], "pagination": {page, limit, total, pages}}
    """
    now = now or utc_now()
    session = get_session()

    open_txn = aliased(Transaction)
    holder = aliased(User)
    status_expr = effective_status_expression(Equipment, open_txn).label("effective_status")

    query = (
        session.query(Equipment, open_txn, holder, status_expr)
        .outerjoin(Category, Equipment.category_id == Category.id)
        .outerjoin(
            open_txn,
            and_(
                open_txn.equipment_id == Equipment.id,
                open_txn.actual_return_date.is_(None),
            ),
        )
        .outerjoin(holder, open_txn.user_id == holder.id)
        .filter(Equipment.is_active.is_(True))
    )

    if category:
        query = query.filter(Equipment.category_id == category)

    if status:
        query = query.filter(effective_status_expression(Equipment, open_txn) == status)

    if search:
        term = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                func.lower(Equipment.name).like(pattern, escape="\\"),
                func.lower(Equipment.serial_number).like(pattern, escape="\\"),
                func.lower(Equipment.barcode).like(pattern, escape="\\"),
                func.lower(Equipment.model).like(pattern, escape="\\"),
                func.lower(Equipment.manufacturer).like(pattern, escape="\\"),
                func.lower(Category.name).like(pattern, escape="\\"),
            )
        )

    sort_columns = {
        "name": Equipment.name,
        "serial_number": Equipment.serial_number,
        "category_name": Category.name,
        "status": effective_status_expression(Equipment, open_txn),
        "checkout_date": open_txn.checkout_date,
        "expected_return_date": open_txn.expected_return_date,
    }
    sort_column = sort_columns.get(sort, Equipment.name)
    direction = desc if (order or "").lower() == "desc" else asc

    total = query.order_by(None).count()
    rows = (
        query.order_by(direction(sort_column), Equipment.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    data = []
    for equipment, txn, user, effective in rows:
        entry = equipment.to_dict()
        days_out = days_between(now, txn.checkout_date) if txn is not None else None
        entry.update(
            {
                "status": effective,
                "checked_out_by_id": user.id if user else None,
                "checked_out_by_name": user.name if user else None,
                "checked_out_by_email": user.email if user else None,
                "checkout_date": txn.checkout_date.isoformat() if txn and txn.checkout_date else None,
                "expected_return_date": (
                    txn.expected_return_date.isoformat() if txn and txn.expected_return_date else None
                ),
                "days_out": days_out,
                "days_out_display": display_days(days_out),
                "is_overdue": is_overdue(txn, now),
            }
        )
        data.append(entry)

    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": ceil(total / limit) if limit else 0,
        },
    }


def describe_equipment(equipment_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Single-unit view: stored attributes plus the live overlay and current holder."""
    now = now or utc_now()
    availability = resolve(equipment_id)
    equipment = get_session().get(Equipment, equipment_id)
    txn = availability.open_transaction

    entry = equipment.to_dict()
    days_out = days_between(now, txn.checkout_date) if txn is not None else None
    entry.update(
        {
            "status": availability.status,
            "checked_out_by_id": txn.user_id if txn else None,
            "checked_out_by_name": txn.user.name if txn and txn.user else None,
            "checkout_date": txn.checkout_date.isoformat() if txn and txn.checkout_date else None,
            "expected_return_date": (
                txn.expected_return_date.isoformat() if txn and txn.expected_return_date else None
            ),
            "days_out": days_out,
            "days_out_display": display_days(days_out),
            "is_overdue": is_overdue(txn, now),
        }
    )
    return entry
