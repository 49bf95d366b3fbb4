"""
DocumentSequenceService -- per-(type, site, period) counters under row locks.

Responsibility:
    Hands out the next integer of a document type's sequence, per site
    scope, restarting at the type's starting number whenever the reset
    period (year or month) rolls over.  The counter row in
    ``document_number_patterns`` is the single source of truth.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by NumberingService (generate, reserve, bulk, preview),
    IssuedNumberService and DocumentTypeService (reset, configure).

Invariants enforced:
    - Exactly-once allocation: the counter row is read and advanced under
      ``SELECT ... FOR UPDATE`` (PostgreSQL) or inside a ``BEGIN IMMEDIATE``
      transaction (SQLite).  The aggregate-max-plus-one anti-pattern is
      never used.
    - Bounded lock wait: on PostgreSQL the wait is capped with
      ``SET LOCAL lock_timeout``.  A timeout surfaces as ContentionError;
      there is no unlocked fallback.
    - Period decisions use the injected Clock.  Production wiring passes a
      TransactionClock so every node compares against the database's
      transaction time.
    - Allocation is transactional: nothing is visible until the caller
      commits, and a rollback returns the value.

Failure modes:
    - ContentionError: lock wait exceeded (PostgreSQL 55P03) or the SQLite
      database stayed locked past its busy timeout.
    - IntegrityError on a concurrent counter creation is absorbed: the
      SAVEPOINT is rolled back and the winner's row is locked instead.

Audit relevance:
    Allocations are logged at DEBUG with type, scope and value; period
    resets at INFO; clock regressions and contention at WARNING.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.dtos import SequenceAllocation
from registrar_kernel.domain.values import ResetCycle
from registrar_kernel.exceptions import ContentionError
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.number_pattern import DocumentNumberPattern, scope_key_for
from registrar_kernel.services.base import BaseService

logger = get_logger("services.sequence_store")

# PostgreSQL SQLSTATE for lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"


def is_lock_timeout(exc: OperationalError) -> bool:
    """True when ``exc`` is a bounded lock wait giving up, on either backend."""
    if getattr(exc.orig, "pgcode", None) == _PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(exc).lower()


def period_key(cycle: ResetCycle, year: int | None, month: int | None) -> str | None:
    """Reset-boundary key: none, "YYYY" or "YYYYMM"."""
    if cycle is ResetCycle.NEVER or year is None:
        return None
    if cycle is ResetCycle.YEARLY:
        return f"{year:04d}"
    return f"{year:04d}{(month or 1):02d}"


class DocumentSequenceService(BaseService[DocumentNumberPattern]):
    """
    Locked counter allocation.

    Contract:
        ``allocate_next`` returns the next value for (document type, site
        scope) and advances the counter by the type's ``increment_by``.
        The counter row is created from the type's defaults on first use.

    Guarantees:
        - Values for one (type, scope, period) are strictly increasing and
          gap-free across committed transactions.
        - Callers for different (type, scope) keys never block each other.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT format numbers (PatternFormatter does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lock_timeout_ms: int = 5000,
    ):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)
        self._lock_timeout_ms = lock_timeout_ms

    # -------------------------------------------------------------------------
    # Counter rows
    # -------------------------------------------------------------------------

    def scope_key(self, document_type: DocumentType, site_id: UUID | None) -> str:
        """Counters are per site only for types that number per site."""
        return scope_key_for(site_id if document_type.requires_site_code else None)

    def _select_counter(self, document_type: DocumentType, scope_key: str):
        return select(DocumentNumberPattern).where(
            DocumentNumberPattern.document_type_id == document_type.id,
            DocumentNumberPattern.scope_key == scope_key,
        )

    def get_counter(
        self, document_type: DocumentType, site_id: UUID | None
    ) -> DocumentNumberPattern | None:
        """Unlocked read of the counter row (preview, statistics)."""
        return self.session.execute(
            self._select_counter(document_type, self.scope_key(document_type, site_id))
        ).scalar_one_or_none()

    def _apply_lock_timeout(self) -> None:
        if self.dialect_name == "postgresql":
            self.session.execute(
                text(f"SET LOCAL lock_timeout = '{int(self._lock_timeout_ms)}ms'")
            )

    def _lock_counter(
        self, document_type: DocumentType, scope_key: str
    ) -> DocumentNumberPattern | None:
        try:
            self._apply_lock_timeout()
            return self.session.execute(
                self._select_counter(document_type, scope_key)
                .with_for_update(of=DocumentNumberPattern)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except OperationalError as exc:
            if not is_lock_timeout(exc):
                raise
            logger.warning(
                "sequence_lock_timeout",
                extra={
                    "document_type": document_type.code,
                    "scope_key": scope_key,
                    "timeout_ms": self._lock_timeout_ms,
                },
            )
            raise ContentionError(document_type.code, scope_key, self._lock_timeout_ms) from exc

    def _new_counter(
        self,
        document_type: DocumentType,
        site_id: UUID | None,
        scope_key: str,
        actor_id: UUID,
    ) -> DocumentNumberPattern:
        return DocumentNumberPattern(
            document_type_id=document_type.id,
            site_id=site_id if document_type.requires_site_code else None,
            scope_key=scope_key,
            pattern=document_type.numbering_pattern,
            reset_interval=document_type.reset_cycle,
            next_number=document_type.starting_number,
            number_length=document_type.number_length,
            is_active=True,
            created_by_id=actor_id,
        )

    def lock_or_create_counter(
        self,
        document_type: DocumentType,
        site_id: UUID | None,
        actor_id: UUID,
    ) -> DocumentNumberPattern:
        """
        Return the counter row for (type, scope), locked for this transaction.

        Missing rows are created inside a SAVEPOINT so a lost creation race
        does not roll back the caller's other work.
        """
        scope_key = self.scope_key(document_type, site_id)
        counter = self._lock_counter(document_type, scope_key)
        if counter is not None:
            return counter

        savepoint = self.session.begin_nested()
        try:
            counter = self._new_counter(document_type, site_id, scope_key, actor_id)
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            logger.info(
                "sequence_counter_created",
                extra={
                    "document_type": document_type.code,
                    "scope_key": scope_key,
                    "next_number": counter.next_number,
                },
            )
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"document_type": document_type.code, "scope_key": scope_key},
            )
            savepoint.rollback()
            counter = self._lock_counter(document_type, scope_key)
            if counter is None:
                raise
            return counter

    # -------------------------------------------------------------------------
    # Period handling
    # -------------------------------------------------------------------------

    def _roll_period(
        self,
        counter: DocumentNumberPattern,
        document_type: DocumentType,
        now: datetime,
    ) -> tuple[int, int, bool]:
        """
        Bring the counter into the current period.

        Returns (year, month, reset) for the allocation.  A clock that reads
        earlier than the stored period keeps the stored period; the counter
        never moves backwards.
        """
        cycle = ResetCycle(counter.reset_interval)
        current = period_key(cycle, now.year, now.month)
        stored = period_key(cycle, counter.current_year, counter.current_month)

        if cycle is ResetCycle.NEVER or stored is None:
            counter.current_year = now.year
            counter.current_month = now.month
            return now.year, now.month, False

        if current > stored:
            previous = stored
            counter.next_number = document_type.starting_number
            counter.current_year = now.year
            counter.current_month = now.month
            logger.info(
                "sequence_period_reset",
                extra={
                    "document_type": document_type.code,
                    "scope_key": counter.scope_key,
                    "previous_period": previous,
                    "period": current,
                    "next_number": counter.next_number,
                },
            )
            return now.year, now.month, True

        if current < stored:
            logger.warning(
                "sequence_period_regression",
                extra={
                    "document_type": document_type.code,
                    "scope_key": counter.scope_key,
                    "stored_period": stored,
                    "clock_period": current,
                },
            )
            return counter.current_year, counter.current_month or now.month, False

        return now.year, now.month, False

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def allocate_next(
        self,
        document_type: DocumentType,
        site_id: UUID | None,
        *,
        actor_id: UUID,
    ) -> SequenceAllocation:
        """
        Allocate the next sequence value for (type, site scope).

        Preconditions:
            - The caller is inside a transaction it will commit or roll back.
        Postconditions:
            - The counter row is locked until that transaction ends.
            - ``counter.next_number`` advanced by ``increment_by`` exactly once.

        Raises:
            ContentionError: lock wait exceeded.
        """
        counter = self.lock_or_create_counter(document_type, site_id, actor_id)
        now = self._clock.now_utc()
        year, month, reset = self._roll_period(counter, document_type, now)

        sequence = counter.next_number
        counter.next_number = sequence + document_type.increment_by
        counter.updated_by_id = actor_id
        self.session.flush()

        logger.debug(
            "sequence_allocated",
            extra={
                "document_type": document_type.code,
                "scope_key": counter.scope_key,
                "value": sequence,
            },
        )
        return SequenceAllocation(
            counter_id=counter.id,
            document_type_code=document_type.code,
            scope_key=counter.scope_key,
            sequence=sequence,
            year=year,
            month=month,
            day=now.day,
            pattern=counter.pattern,
            pad_width=counter.number_length,
            prefix=counter.prefix,
            suffix=counter.suffix,
            reset=reset,
            period_key=period_key(ResetCycle(counter.reset_interval), year, month),
        )

    def peek_next(
        self,
        document_type: DocumentType,
        site_id: UUID | None,
    ) -> SequenceAllocation:
        """
        What ``allocate_next`` would return now, without locking or writing.

        Advisory only: a concurrent caller may take the value first.
        """
        scope_key = self.scope_key(document_type, site_id)
        counter = self.get_counter(document_type, site_id)
        now = self._clock.now_utc()

        if counter is None:
            return SequenceAllocation(
                counter_id=None,
                document_type_code=document_type.code,
                scope_key=scope_key,
                sequence=document_type.starting_number,
                year=now.year,
                month=now.month,
                day=now.day,
                pattern=document_type.numbering_pattern,
                pad_width=document_type.number_length,
            )

        cycle = ResetCycle(counter.reset_interval)
        current = period_key(cycle, now.year, now.month)
        stored = period_key(cycle, counter.current_year, counter.current_month)
        sequence = counter.next_number
        reset = stored is not None and current is not None and current > stored
        if reset:
            sequence = document_type.starting_number
        return SequenceAllocation(
            counter_id=counter.id,
            document_type_code=document_type.code,
            scope_key=scope_key,
            sequence=sequence,
            year=now.year,
            month=now.month,
            day=now.day,
            pattern=counter.pattern,
            pad_width=counter.number_length,
            prefix=counter.prefix,
            suffix=counter.suffix,
            reset=reset,
            period_key=current,
        )

    def counters_for(self, document_type: DocumentType, *, lock: bool = False):
        stmt = select(DocumentNumberPattern).where(
            DocumentNumberPattern.document_type_id == document_type.id
        ).order_by(DocumentNumberPattern.scope_key)
        if lock:
            self._apply_lock_timeout()
            stmt = stmt.with_for_update(of=DocumentNumberPattern).execution_options(
                populate_existing=True
            )
        return list(self.session.execute(stmt).scalars().all())

    def reset_counters(
        self,
        document_type: DocumentType,
        start: int,
        *,
        actor_id: UUID,
    ) -> int:
        """
        Restart every counter of a type at ``start``.

        The counters' period bookkeeping moves to the current period so the
        next allocation does not reset a second time.

        Returns:
            Number of counter rows reset.
        """
        now = self._clock.now_utc()
        counters = self.counters_for(document_type, lock=True)
        for counter in counters:
            counter.next_number = start
            counter.current_year = now.year
            counter.current_month = now.month
            counter.updated_by_id = actor_id
        self.session.flush()
        return len(counters)

    def apply_type_numbering(self, document_type: DocumentType, *, actor_id: UUID) -> int:
        """
        Copy the type's pattern, width and reset cycle onto every counter.

        Counter positions, period bookkeeping, prefix and suffix are kept.

        Returns:
            Number of counter rows updated.
        """
        counters = self.counters_for(document_type, lock=True)
        for counter in counters:
            counter.pattern = document_type.numbering_pattern
            counter.number_length = document_type.number_length
            counter.reset_interval = document_type.reset_cycle
            counter.updated_by_id = actor_id
        self.session.flush()
        return len(counters)
