"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service in the kernel layer.  All concrete services
    inherit from BaseService, receiving a SQLAlchemy ``Session`` that
    they use via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Every service in ``procurement_kernel/services/`` that performs
    write operations extends this class.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The
      caller (ProcurementService or a test) owns commit/rollback, so a
      comparison decision and the request transitions it drives land
      together or not at all.
    - A stale versioned row (version_id_col mismatch) surfaces as
      OptimisticLockError, never as a raw SQLAlchemy exception.

Failure modes:
    - If a subclass calls ``session.commit()`` the atomicity of
      multi-entity operations (create_delivery, issue_direct) is broken.
"""

from abc import ABC
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_kernel.db.base import Base, TrackedBase
from procurement_kernel.domain.authority import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - ``_flush`` converts StaleDataError into OptimisticLockError.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) methods -- those belong
          in ``procurement_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Preconditions:
            - ``session`` is a valid, open SQLAlchemy session.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source.  Defaults to SystemClock.
        """
        self.session = session
        self._clock = clock or SystemClock()

    def _now(self) -> datetime:
        return self._clock.now()

    def _stamp_update(self, entity: TrackedBase, actor: Actor) -> None:
        entity.updated_by_id = actor.actor_id
        entity.updated_at = self._now()

    def _flush(self, entity_type: str, entity_id: UUID | str | None) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, str(entity_id)) from exc
