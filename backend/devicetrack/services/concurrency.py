# Overview: Transaction boundary and row locking shared by every mutating service.

from __future__ import annotations

from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError, DeviceTrackError

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns on Device, Transfer and EmiDetail still catch a
    lost race there.
    """
    return query.with_for_update()


def run_atomic(func: Callable[[], T]) -> T:
    """
    Run one logical operation as a single transaction.

    Commits on success, rolls back on any error. Lost races
    (StaleDataError) and uniqueness violations (IntegrityError) surface as
    ConflictError. Nothing is retried here; retry is the caller's decision.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except DeviceTrackError:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        current_app.logger.warning("Concurrent modification detected: %s", exc)
        raise ConflictError(
            "The record was modified by another request. Reload and try again."
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning("Integrity violation: %s", exc.orig)
        raise ConflictError("A record with the same unique value already exists.") from exc
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Unexpected failure inside transaction")
        raise
