"""
Batch identifiers and results for multi-item checkout/checkin calls.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from utilities.database import utc_now

BATCH_RESULT_KEYS = {
    "checkout": "equipment_checked_out",
    "checkin": "equipment_checked_in",
    "maintenance_start": "equipment_in_maintenance",
    "maintenance_complete": "equipment_returned_from_maintenance",
}


def generate_batch_id(now: Optional[datetime] = None) -> str:
    """
    Correlation id shared by every row of one call.

    Format: YYYYMMDD-HHMMSS-XXXXXX (UTC timestamp plus six random hex chars)
    """
    now = now or utc_now()
    return f"{now.strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3).upper()}"


@dataclass
class BatchItem:
    id: int
    name: str
    transaction_id: int
    barcode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "transaction_id": self.transaction_id,
            "barcode": self.barcode,
        }


@dataclass
class BatchResult:
    action: str
    batch_id: str
    user_name: Optional[str] = None
    items: List[BatchItem] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return len(self.items)

    @property
    def transaction_ids(self) -> List[int]:
        return [item.transaction_id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "transaction_count": self.transaction_count,
            BATCH_RESULT_KEYS.get(self.action, "equipment"): [item.to_dict() for item in self.items],
            "user_name": self.user_name,
        }
