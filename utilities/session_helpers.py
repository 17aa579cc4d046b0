"""
Helpers around the shared SQLAlchemy session.

Every write path in the engine goes through ``atomic()`` so a batch is either
committed whole or rolled back before the call returns.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from utilities.database import db
from utilities.errors import StorageError
from utilities.logger import get_logger

logger = get_logger("storage")


def get_session() -> Session:
    """
    Get the current request's database session.

    Returns:
        The scoped SQLAlchemy session bound to the app
    """
    return db.session


def session_query(model_class):
    """
    Create a query against the current session.

    Example:
        units = session_query(Equipment).filter_by(is_active=True).all()
    """
    return get_session().query(model_class)


@contextmanager
def atomic() -> Iterator[Session]:
    """
    Run a block as one storage transaction.

    Commits when the block finishes, rolls back on any exception. Domain
    errors are re-raised unchanged; driver and constraint failures surface as
    ``StorageError`` after the rollback.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Storage transaction rolled back")
        raise StorageError("Failed to save changes") from exc
    except Exception:
        session.rollback()
        raise
