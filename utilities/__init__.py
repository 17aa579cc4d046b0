from .database import (
    db,
    Category,
    Equipment,
    User,
    Transaction,
    ActivityLog,
    log_activity,
    utc_now,
)
from .errors import KitroomError
from .logger import get_logger, setup_logger

__all__ = [
    "db",
    "Category",
    "Equipment",
    "User",
    "Transaction",
    "ActivityLog",
    "KitroomError",
    "get_logger",
    "setup_logger",
    "log_activity",
    "utc_now",
]
