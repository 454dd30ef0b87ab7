# Overview: Row locking, retry, and the transactional unit of work used by every mutating service.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db
from .hooks import PostCommitHooks


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the aggregates'
    version_id column turns lost updates into StaleDataError, which
    run_with_retry handles.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func(hooks) as one transaction, then run the queued post-commit hooks.

    - Commits on success; rolls back and re-raises on any domain error.
    - Lock/optimistic conflicts are retried with a fresh hook list; once
      retries are exhausted they surface as ConflictError.
    - Hooks run only after a successful commit.
    """
    def _op():
        hooks = PostCommitHooks()
        try:
            result = func(hooks)
            db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise
        return result, hooks

    try:
        result, hooks = run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
    except (OperationalError, StaleDataError) as exc:
        raise ConflictError("The record is being modified concurrently; retry the operation") from exc

    hooks.run()
    return result
