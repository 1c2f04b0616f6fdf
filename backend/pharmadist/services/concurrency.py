# Overview: Transaction, locking and retry helpers shared by the services.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query, of=None):
    """
    Apply row-level locking for critical operations.

    `of` restricts the lock to one entity's rows, which PostgreSQL requires
    when the query outer-joins a nullable side.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    if of is not None:
        return query.with_for_update(of=of)
    return query.with_for_update()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("TX_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before each
    new attempt, so func must redo all of its work from scratch.
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Concurrency conflict (%s), retrying attempt %d/%d",
                type(exc).__name__, attempt + 2, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Run func and commit its writes as one unit of work.

    Any exception rolls back every write func made and propagates. A version
    conflict that survives the retry budget becomes ConflictError.
    """
    def _op():
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except StaleDataError as exc:
        raise ConflictError("Version conflict, please retry") from exc
    except Exception:
        db.session.rollback()
        raise
