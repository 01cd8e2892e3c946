"""
Transaction boundary for multi-step writes.

Directory creation, moderator appointment, change approval and directory
deletion each group several inserts/updates that must commit together
or not at all.  Services wrap those steps in ``transaction()``; the
block commits on success and rolls back on ANY exception.

Usage:
    with transaction("appoint moderator"):
        db.session.add(moderator)
        db.session.add(domain)

Domain exceptions (ValidationError, ConflictError, ...) are re-raised
unchanged after rollback.  SQLAlchemy failures are wrapped in the typed
storage errors so callers never inspect driver messages:

    IntegrityError   → ConstraintError
    OperationalError → StoreConnectionError
    other DB errors  → StorageError
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from directory_hub.core.exceptions import (
    ConstraintError,
    StorageError,
    StoreConnectionError,
)
from directory_hub.models import db

logger = logging.getLogger(__name__)


@contextmanager
def transaction(operation: str):
    """Commit the enclosed writes atomically; roll back and re-raise on failure."""
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Constraint violation during %s: %s", operation, exc.orig)
        raise ConstraintError(operation) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.error("Store unavailable during %s: %s", operation, exc.orig)
        raise StoreConnectionError(operation) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Storage failure during %s: %s", operation, exc)
        raise StorageError(operation) from exc
    except Exception:
        db.session.rollback()
        raise
