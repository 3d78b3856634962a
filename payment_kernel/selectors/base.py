"""
Module: payment_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/.

Invariants enforced:
    - Selectors never add, flush, delete or commit.
    - Read failures surface as StorageUnavailableError (retryable); a read
      can never leave state behind, so callers may simply retry.
"""

from abc import ABC
from contextlib import AbstractContextManager
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from payment_kernel.db.base import Base
from payment_kernel.db.engine import translate_storage_errors

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return ORM rows, DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session

    def _reading(self, operation: str) -> AbstractContextManager[None]:
        return translate_storage_errors(operation)
