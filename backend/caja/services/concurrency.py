# Overview: Row locking and retry helpers shared by every write path.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StoreUnavailableError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts, dropped connections)
    and StaleDataError (optimistic locking conflicts). Every failure rolls the
    session back so no partial write survives. When the last attempt still
    fails the caller gets a retryable StoreUnavailableError.
    """
    if attempts is None:
        attempts = current_app.config.get("STORE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STORE_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error("Store unavailable after %d attempt(s): %s", attempts, exc)
                raise StoreUnavailableError(
                    "The data store is temporarily unavailable, retry the operation"
                ) from exc
            current_app.logger.warning("Store conflict on attempt %d, retrying: %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
