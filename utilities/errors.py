"""
Error taxonomy for the equipment engine.

Every error carries the HTTP status it maps to and a stable ``code`` so the
blueprints can hand it straight to ``jsonify``. Nothing here is retried by
the engine; callers decide.
"""
from typing import Any, Dict, Optional


class KitroomError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


# --- Validation ---

class ValidationError(KitroomError):
    """Missing or malformed input, reported per field."""
    code = "validation_error"

    def __init__(self, errors: Dict[str, str], message: str = "Invalid request"):
        super().__init__(message, errors=errors)
        self.errors = errors


class PermissionDenied(KitroomError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(KitroomError):
    status_code = 404
    code = "not_found"


# --- State conflicts ---

class StateConflictError(KitroomError):
    status_code = 409
    code = "state_conflict"


class InvalidTransactionState(StateConflictError):
    action = "transact"
    hint = ""

    def __init__(self, equipment_id: int, equipment_name: str, status: str):
        message = f"Cannot {self.action} equipment '{equipment_name}' with status '{status}'."
        if self.hint:
            message = f"{message} {self.hint}"
        super().__init__(
            message,
            equipment_id=equipment_id,
            equipment_name=equipment_name,
            status=status,
        )
        self.equipment_id = equipment_id
        self.status = status


class InvalidStateForCheckout(InvalidTransactionState):
    code = "invalid_state_for_checkout"
    action = "checkout"
    hint = "Equipment must be 'available' or 'needs_maintenance' to checkout."


class InvalidStateForMaintenance(InvalidTransactionState):
    code = "invalid_state_for_maintenance"
    action = "send to maintenance"
    hint = "Close the open transaction first."


class NoOpenCheckout(StateConflictError):
    code = "no_open_checkout"

    def __init__(self, equipment_id: int, equipment_name: Optional[str] = None):
        label = equipment_name or f"ID {equipment_id}"
        super().__init__(
            f"No active checkout found for equipment {label}",
            equipment_id=equipment_id,
        )
        self.equipment_id = equipment_id


class CheckinNotAuthorized(KitroomError):
    status_code = 403
    code = "checkin_not_authorized"

    def __init__(self, equipment_id: int, equipment_name: str, borrower_id: int, borrower_name: str):
        super().__init__(
            f"Only {borrower_name} or an admin can check in this equipment. "
            f"'{equipment_name}' was checked out by {borrower_name}.",
            equipment_id=equipment_id,
            equipment_name=equipment_name,
            borrower_id=borrower_id,
            borrower_name=borrower_name,
        )
        self.equipment_id = equipment_id
        self.borrower_id = borrower_id


class StatusLockedByActiveLoan(StateConflictError):
    code = "status_locked_by_active_loan"

    def __init__(self, equipment_id: int):
        super().__init__(
            "Cannot change status while equipment is checked out. "
            "Please check in the equipment first.",
            equipment_id=equipment_id,
        )
        self.equipment_id = equipment_id


class EquipmentCheckedOut(StateConflictError):
    code = "equipment_checked_out"

    def __init__(self, equipment_id: int):
        super().__init__(
            "Cannot delete equipment that is currently checked out",
            equipment_id=equipment_id,
        )
        self.equipment_id = equipment_id


class UserHasActiveLoans(StateConflictError):
    code = "user_has_active_loans"

    def __init__(self, user_id: int, count: int):
        super().__init__(
            f"Cannot delete user with active checkouts. User has {count} equipment checked out.",
            user_id=user_id,
            active_checkouts=count,
        )
        self.user_id = user_id
        self.count = count


# --- Storage ---

class StorageError(KitroomError):
    status_code = 500
    code = "storage_error"
