"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for request numbers, purchase
    order numbers, delivery challan numbers, and the request timeline.
    Uses a dedicated counter table; the increment is a single UPDATE
    that takes the row lock on every supported dialect.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by RequestService, PurchaseOrderService, DeliveryService,
    RequestLifecycleController and InventoryLedger.

Invariants enforced:
    - Sequence monotonicity: the SQL aggregate-max-plus-one pattern is
      never used.  The counter row is the sole source of truth for the
      next value.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - OptimisticLockError: two transactions created the same counter
      row for the first time.  The caller's transaction is unusable;
      the facade rolls back and retries the whole operation.

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
    RequestNote.sequence values give the commit order of a request's
    transitions.
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.exceptions import OptimisticLockError
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # e.g. "material_request", "purchase_order:202401", "delivery:20240101"
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed only when the
        caller's transaction commits.

    Guarantees:
        - ``UPDATE ... SET current_value = current_value + 1`` is atomic
          and holds the row lock until the transaction ends, so a second
          allocator waits and then reads the committed value.
        - Gap-safe under normal operation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    MATERIAL_REQUEST = "material_request"
    REQUEST_NOTE = "request_note"
    STOCK_MOVEMENT = "stock_movement"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name.
            - The counter row stays locked until the transaction completes.

        Raises:
            OptimisticLockError: Concurrent first use of the sequence.
        """
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
            except IntegrityError as exc:
                logger.debug(
                    "sequence_counter_race",
                    extra={"sequence_name": sequence_name},
                )
                raise OptimisticLockError("SequenceCounter", sequence_name) from exc
            value = 1
        else:
            value = self._session.execute(
                select(SequenceCounter.current_value)
                .where(SequenceCounter.name == sequence_name)
            ).scalar_one()

        assert value > 0, "sequence value must be strictly positive"
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
