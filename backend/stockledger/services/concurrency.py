# Overview: Transaction boundary and row-locking helpers shared by every mutating service.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Versioned rows (Unit, StockOut) still catch the race on SQLite through
    the optimistic version check at flush time.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    One unit of work: commit on success, roll back everything on failure.

    Concurrency-related failures (optimistic version mismatch, lock timeout or
    deadlock, a unique index losing a race) surface as ConflictError. The core
    never retries on its own; the losing caller re-fetches and tries again.
    """
    try:
        yield db.session
        db.session.commit()
    except (StaleDataError, OperationalError, IntegrityError) as exc:
        db.session.rollback()
        raise ConflictError(
            "The records changed while this operation was running; reload and try again"
        ) from exc
    except Exception:
        db.session.rollback()
        raise
