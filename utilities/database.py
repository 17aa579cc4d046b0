# utilities/database.py
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import date, datetime, UTC
from decimal import Decimal
from typing import Any, Dict, Optional, Union

db = SQLAlchemy()


def utc_now() -> datetime:
    """Return a naive UTC datetime without relying on deprecated utcnow()."""
    return datetime.now(UTC).replace(tzinfo=None)


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


CONDITIONS = ["brand_new", "functional", "normal", "worn", "out_of_commission", "broken"]
EQUIPMENT_STATUSES = [
    "available",
    "in_use",
    "unavailable",
    "out_for_maintenance",
    "needs_maintenance",
    "reserved",
    "decommissioned",
]
# Overlay values; never written to equipment.status
EFFECTIVE_ONLY_STATUSES = ["checked_out", "maintenance"]
LOCATIONS = ["studio", "vault", "with_user"]
RETURN_LOCATIONS = ["studio", "vault"]
TRANSACTION_TYPES = ["checkout", "checkin", "maintenance"]
PURPOSES = ["events", "marketing", "personal"]
ROLES = ["admin", "manager", "user"]
CHECKIN_OVERRIDE_ROLES = {"admin"}
EQUIPMENT_EDITOR_ROLES = {"admin", "manager"}


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(7), nullable=True)  # "#RRGGBB" for the UI
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    equipment = db.relationship("Equipment", back_populates="category")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
        }


class Equipment(db.Model):
    __tablename__ = "equipment"
    __table_args__ = (
        # Barcodes only need to be unique among units still in service
        db.Index(
            "uq_equipment_active_barcode",
            "barcode",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    serial_number = db.Column(db.String(100), nullable=True, index=True)
    barcode = db.Column(db.String(32), nullable=True, index=True)  # e.g. "CA-24-00012"
    model = db.Column(db.String(100), nullable=True)
    manufacturer = db.Column(db.String(100), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    purchase_date = db.Column(db.Date, nullable=True)  # acquisition date, drives the barcode year
    purchase_price = db.Column(db.Numeric(10, 2), nullable=True)
    current_value = db.Column(db.Numeric(10, 2), nullable=True)

    condition = db.Column(db.String(20), nullable=False, default="normal")
    status = db.Column(db.String(20), nullable=False, default="available")  # persisted status only
    location = db.Column(db.String(20), nullable=False, default="studio")  # studio|vault|with_user

    description = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    needs_relabeling = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    category = db.relationship("Category", back_populates="equipment")
    transactions = db.relationship(
        "Transaction",
        back_populates="equipment",
        order_by="Transaction.id",
    )

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "serial_number": self.serial_number,
            "barcode": self.barcode,
            "model": self.model,
            "manufacturer": self.manufacturer,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category.color if self.category else None,
            "purchase_date": _iso(self.purchase_date),
            "purchase_price": _money(self.purchase_price),
            "current_value": _money(self.current_value),
            "condition": self.condition,
            "equipment_status": self.status,
            "location": self.location,
            "description": self.description,
            "notes": self.notes,
            "needs_relabeling": bool(self.needs_relabeling),
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)  # full name shown on receipts
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="user")  # admin|manager|user
    phone = db.Column(db.String(20), nullable=True)
    department = db.Column(db.String(50), nullable=True)
    pin_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def set_pin(self, raw_pin: str):
        self.pin_hash = generate_password_hash(raw_pin)

    def check_pin(self, raw_pin: str) -> bool:
        return check_password_hash(self.pin_hash, raw_pin)

    @property
    def can_override_checkin(self) -> bool:
        return (self.role or "").lower() in CHECKIN_OVERRIDE_ROLES

    @property
    def can_edit_equipment(self) -> bool:
        return (self.role or "").lower() in EQUIPMENT_EDITOR_ROLES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "department": self.department,
            "is_active": bool(self.is_active),
        }


class Transaction(db.Model):
    """One loan-related event: a checkout or maintenance row, open until returned."""
    __tablename__ = "transactions"
    __table_args__ = (
        # At most one open transaction per unit, whatever its type
        db.Index(
            "uq_transactions_open_per_equipment",
            "equipment_id",
            unique=True,
            sqlite_where=db.text("actual_return_date IS NULL"),
            postgresql_where=db.text("actual_return_date IS NULL"),
        ),
        db.Index("ix_transactions_dates", "checkout_date", "actual_return_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_type = db.Column(db.String(20), nullable=False, index=True)  # checkout|checkin|maintenance
    equipment_id = db.Column(db.Integer, db.ForeignKey("equipment.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    batch_id = db.Column(db.String(50), nullable=True, index=True)
    return_batch_id = db.Column(db.String(50), nullable=True, index=True)

    checkout_date = db.Column(db.DateTime, nullable=True)
    expected_return_date = db.Column(db.DateTime, nullable=True)
    actual_return_date = db.Column(db.DateTime, nullable=True)  # NULL while open

    condition_on_checkout = db.Column(db.String(20), nullable=True)
    condition_on_return = db.Column(db.String(20), nullable=True)
    purpose = db.Column(db.String(50), nullable=True, index=True)  # events|marketing|personal
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    checked_in_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    equipment = db.relationship("Equipment", back_populates="transactions")
    user = db.relationship("User", foreign_keys=[user_id])
    creator = db.relationship("User", foreign_keys=[created_by])
    returner = db.relationship("User", foreign_keys=[checked_in_by])

    @property
    def is_open(self) -> bool:
        return self.actual_return_date is None

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return (
            self.transaction_type == "checkout"
            and self.is_open
            and self.expected_return_date is not None
            and self.expected_return_date < now
        )

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transaction_type": self.transaction_type,
            "equipment_id": self.equipment_id,
            "equipment_name": self.equipment.name if self.equipment else None,
            "barcode": self.equipment.barcode if self.equipment else None,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "batch_id": self.batch_id,
            "return_batch_id": self.return_batch_id,
            "checkout_date": _iso(self.checkout_date),
            "expected_return_date": _iso(self.expected_return_date),
            "actual_return_date": _iso(self.actual_return_date),
            "condition_on_checkout": self.condition_on_checkout,
            "condition_on_return": self.condition_on_return,
            "purpose": self.purpose,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_by_name": self.creator.name if self.creator else None,
            "checked_in_by": self.checked_in_by,
            "created_at": _iso(self.created_at),
            "is_overdue": self.is_overdue(now),
        }


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(120), nullable=False)
    target_type = db.Column(db.String(120), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    batch_id = db.Column(db.String(50), nullable=True, index=True)
    summary = db.Column(db.String(255), nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "user_id": self.user_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "batch_id": self.batch_id,
            "summary": self.summary,
            "meta": self.meta,
        }


def log_activity(
    action: str,
    *,
    user: Optional[Union[User, int]] = None,
    target: Optional[Any] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    batch_id: Optional[str] = None,
    summary: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    commit: bool = False,
) -> ActivityLog:
    """Persist a structured audit trail entry."""
    entry = ActivityLog(
        action=action,
        user_id=_extract_id(user),
        target_type=target_type or _extract_target_type(target),
        target_id=target_id or _extract_id(target),
        batch_id=batch_id,
        summary=summary[:255] if summary else summary,
        meta=meta or None,
    )
    db.session.add(entry)

    if commit:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    return entry

def _extract_id(candidate: Optional[Union[User, Equipment, ActivityLog, int]]) -> Optional[int]:
    if candidate is None:
        return None
    if isinstance(candidate, int):
        return candidate
    return getattr(candidate, "id", None)

def _extract_target_type(target: Optional[Any]) -> Optional[str]:
    if target is None:
        return None
    return target.__class__.__name__
