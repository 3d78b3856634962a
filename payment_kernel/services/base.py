"""
BaseService -- common constructor and transaction boundary for services.

Responsibility:
    Every ledger service receives a SQLAlchemy ``Session`` and an injected
    ``Clock``.  Unlike flush-only kernel helpers (SequenceService), the
    ledger services own their transaction: a public operation either
    commits completely or rolls back completely.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - All-or-nothing mutations: ``_commit_or_rollback`` commits on success
      and rolls back on any exception, so a failed operation never leaves a
      partial bucket update behind.
    - Every mutation runs in a write transaction (BEGIN IMMEDIATE on
      SQLite), opened before its first read.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generator, Generic, TypeVar

from sqlalchemy.orm import Session

from payment_kernel.db.base import Base
from payment_kernel.db.engine import begin_write, translate_storage_errors
from payment_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.  Public mutating
        methods commit before returning.

    Non-goals:
        - Does NOT provide list/report queries -- those belong in
          ``payment_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    @contextmanager
    def _commit_or_rollback(self, operation: str) -> Generator[None, None, None]:
        """Open a write transaction, commit on success, roll back on any error."""
        try:
            with translate_storage_errors(operation):
                begin_write(self.session)
                yield
                self.session.commit()
        except Exception:
            self.session.rollback()
            raise
