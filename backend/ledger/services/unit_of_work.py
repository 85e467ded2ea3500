# Overview: Service-layer transaction scope and retry policy shared by all ledger mutations.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class UnitOfWork:
    """
    Explicit transaction scope over the Flask-SQLAlchemy session.

    Sequencer, stock ledger and receipt coordinator calls receive the uow so
    every write of one business operation lands in the same transaction:

        with UnitOfWork() as uow:
            ...
    Leaving the block commits; any exception rolls everything back.
    """

    def __init__(self, session=None):
        self.session = session or db.session
        self._done = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            return False
        self.commit()
        return False

    def query(self, *entities):
        return self.session.query(*entities)

    def get(self, model, ident, *, lock: bool = False):
        query = self.session.query(model).filter(model.id == ident)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def add(self, obj):
        self.session.add(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)

    def flush(self) -> None:
        self.session.flush()

    def expire(self, obj, attrs=None) -> None:
        self.session.expire(obj, attrs)

    def commit(self) -> None:
        if self._done:
            return
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._done = True

    def rollback(self) -> None:
        if not self._done:
            self.session.rollback()
            self._done = True


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func(uow) in a fresh UnitOfWork, retrying on concurrency failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on version_id).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            with UnitOfWork() as uow:
                return func(uow)
        except (OperationalError, StaleDataError) as exc:
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Transaction conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
