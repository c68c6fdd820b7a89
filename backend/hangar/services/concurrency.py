# Overview: Service-layer operations for concurrency; serializes ledger writes per aircraft.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import PersistenceError


_registry_lock = threading.Lock()
_aircraft_locks: dict[int, threading.RLock] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def get_aircraft_lock(aircraft_id: int) -> threading.RLock:
    """Process-wide lock for one aircraft; the same object is returned for the same id."""
    with _registry_lock:
        lock = _aircraft_locks.get(aircraft_id)
        if lock is None:
            lock = threading.RLock()
            _aircraft_locks[aircraft_id] = lock
        return lock


@contextmanager
def aircraft_lock(aircraft_id: int):
    """
    Serialize ledger writes for one aircraft within this process.

    Across processes the Aircraft row lock (FOR UPDATE) and its version_id
    column take over: a concurrent writer fails with StaleDataError and
    run_with_retry re-runs the whole operation, re-reading the last counters.
    """
    lock = get_aircraft_lock(aircraft_id)
    with lock:
        yield


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must be a complete unit of work:
    it is re-run from scratch, including validation.
    """
    if attempts is None:
        attempts = current_app.config.get("COMMIT_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_or_raise() -> None:
    """Commit the current session, translating driver failures into PersistenceError."""
    try:
        db.session.commit()
    except (OperationalError, StaleDataError):
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Commit failed")
        raise PersistenceError(f"Could not persist changes: {exc.__class__.__name__}") from exc


def run_unit_of_work(func, *, attempts: int | None = None):
    """
    run_with_retry plus the final translation of exhausted retries.

    Conflicts still standing after the last attempt surface as PersistenceError.
    """
    try:
        return run_with_retry(func, attempts=attempts)
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        current_app.logger.error("Unit of work abandoned after retries: %s", exc)
        raise PersistenceError("Concurrent update conflict, please retry") from exc
    except Exception:
        db.session.rollback()
        raise
