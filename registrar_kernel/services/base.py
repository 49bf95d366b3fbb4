"""
BaseService -- abstract base for all registrar services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Concrete services receive a SQLAlchemy
    ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The
      DocumentControlService facade (or the test harness) owns
      commit/rollback, so a registry change and its audit row are atomic.

Failure modes:
    - A subclass calling ``session.commit()`` would split a number
      allocation from its registry row and break gap-freedom.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from registrar_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all registrar services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only reporting queries -- those belong in
          ``registrar_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name
