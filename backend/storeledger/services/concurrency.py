# Overview: Row locking and bounded retry around a unit of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ResourceContention(Exception):
    """Retries exhausted on a locked or concurrently modified row. Callers may retry later."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def lock_for_update(query):
    """
    Apply row-level locking for a read-modify-write.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version columns still
    catch a lost update there and surface it as StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work, retrying on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The session is rolled back on any
    exception, so a failed unit of work leaves nothing behind. func must
    reload whatever it reads; a retry recomputes from scratch.

    Raises:
        ResourceContention: every attempt hit contention
    """
    if attempts is None:
        attempts = current_app.config.get("RECON_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RECON_RETRY_BACKOFF_BASE", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ResourceContention(
                    f"Resource busy after {attempts} attempts; retry later",
                    attempts=attempts,
                ) from exc
            current_app.logger.info("Contention on attempt %s/%s: %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ResourceContention("No attempts were made", attempts=attempts)
