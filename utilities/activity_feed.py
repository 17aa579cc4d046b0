"""
Read side of the audit trail.
"""
from datetime import timedelta
from math import ceil
from typing import Any, Dict, List, Optional

from utilities.database import ActivityLog, User
from utilities.errors import ValidationError
from utilities.session_helpers import get_session
from utilities.transaction_engine import parse_return_date

ACTIVITY_FILTERS = ("user_id", "action", "target_type", "target_id", "batch_id", "start_date", "end_date")


def _entry(log: ActivityLog, user: Optional[User]) -> Dict[str, Any]:
    data = log.to_dict()
    data["user_name"] = user.name if user else None
    data["username"] = user.username if user else None
    return data


def _base_query():
    return get_session().query(ActivityLog, User).outerjoin(User, User.id == ActivityLog.user_id)


def recent_activity(limit: int = 20) -> List[Dict[str, Any]]:
    rows = _base_query().order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
    return [_entry(log, user) for log, user in rows]


def list_activity(filters: Optional[Dict[str, Any]] = None, page: int = 1, limit: int = 50) -> Dict[str, Any]:
    """
    Paginated audit entries, newest first.

    Filters: user_id, action, target_type, target_id, batch_id, start_date,
    end_date. A bare ``end_date`` includes that whole day.
    """
    filters = filters or {}
    query = _base_query()
    errors: Dict[str, str] = {}

    for key in ("user_id", "target_id"):
        if filters.get(key) in (None, ""):
            continue
        try:
            query = query.filter(getattr(ActivityLog, key) == int(filters[key]))
        except (TypeError, ValueError):
            errors[key] = f"{key} must be an integer."
    for key in ("action", "target_type", "batch_id"):
        if filters.get(key):
            query = query.filter(getattr(ActivityLog, key) == filters[key])

    start = filters.get("start_date")
    if start:
        bound = parse_return_date(start)
        if bound is None:
            errors["start_date"] = "Date must be in YYYY-MM-DD format."
        else:
            query = query.filter(ActivityLog.created_at >= bound)
    end = filters.get("end_date")
    if end:
        bound = parse_return_date(end)
        if bound is None:
            errors["end_date"] = "Date must be in YYYY-MM-DD format."
        elif len(str(end).strip()) == 10:
            query = query.filter(ActivityLog.created_at < bound + timedelta(days=1))
        else:
            query = query.filter(ActivityLog.created_at <= bound)
    if errors:
        raise ValidationError(errors)

    total = query.order_by(None).count()
    rows = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [_entry(log, user) for log, user in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": ceil(total / limit) if limit else 0,
        },
    }
