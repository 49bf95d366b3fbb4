"""
DocumentTypeService -- document type configuration and counter setup.

Responsibility:
    Registers and updates document types, resolves active types for the
    numbering path, configures per-site counter rows (pattern, prefix,
    suffix, starting point) and performs administrative numbering resets.

Architecture position:
    Kernel > Services -- imperative shell.  Used by NumberingService,
    IssuedNumberService, the DocumentControlService facade and the
    registrar_config bridge that installs the YAML catalog.

Invariants enforced:
    - Numbering configuration is validated before it is written (and again
      by the ORM save hook in db/immutability.py).
    - A type's ``code`` never changes once documents reference it.
    - A numbering reset is audited as a type-level ``numbering_reset`` row.

Failure modes:
    - DocumentTypeNotFoundError / DocumentTypeInactiveError.
    - PatternConfigurationError / UnknownPatternTokenError on bad config.
    - InvalidRequestError on a non-positive reset start value.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.pattern import DEFAULT_MODIFIER_SEPARATOR, PatternFormatter
from registrar_kernel.domain.values import Actor, AuditAction, RequestContext, ResetCycle
from registrar_kernel.exceptions import (
    DocumentTypeInactiveError,
    DocumentTypeNotFoundError,
    InvalidRequestError,
)
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.number_pattern import DocumentNumberPattern
from registrar_kernel.services.audit_service import AuditTrailService
from registrar_kernel.services.base import BaseService
from registrar_kernel.services.sequence_store import DocumentSequenceService

logger = get_logger("services.document_type")

# Type fields copied onto every counter row when they change.
_COUNTER_FIELDS = ("numbering_pattern", "number_length", "reset_cycle")


class DocumentTypeService(BaseService[DocumentType]):
    """
    Document type configuration.

    Contract:
        ``register`` is an upsert keyed by ``code``.  ``get_active`` is the
        numbering path's lookup.  ``reset_numbering`` restarts every counter
        of a type.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditTrailService | None = None,
        sequences: DocumentSequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)
        self._audit = audit or AuditTrailService(session, self._clock)
        self._sequences = sequences or DocumentSequenceService(session, self._clock)
        self._formatter = PatternFormatter()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find(self, code: str, *, lock: bool = False) -> DocumentType | None:
        stmt = select(DocumentType).where(DocumentType.code == code)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, code: str, *, lock: bool = False) -> DocumentType:
        document_type = self.find(code, lock=lock)
        if document_type is None:
            raise DocumentTypeNotFoundError(code)
        return document_type

    def get_active(self, code: str) -> DocumentType:
        document_type = self.get(code)
        if not document_type.is_active:
            raise DocumentTypeInactiveError(code)
        return document_type

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        code: str,
        name: str,
        numbering_pattern: str,
        actor: Actor,
        *,
        description: str | None = None,
        reset_cycle: ResetCycle | str = ResetCycle.YEARLY,
        starting_number: int = 1,
        number_length: int = 5,
        increment_by: int = 1,
        supports_modifiers: bool = False,
        modifier_separator: str | None = None,
        modifier_options: Mapping[str, str] | None = None,
        requires_site_code: bool = False,
        requires_year: bool = True,
        requires_month: bool = False,
        protect_after_status: str | None = None,
        void_only_statuses: Iterable[str] | None = None,
        is_active: bool = True,
    ) -> DocumentType:
        """
        Create or update the document type ``code``.

        Changing the pattern, number width or reset cycle of an existing
        type rewrites those fields on every counter row of the type, so the
        next number issued anywhere uses the new format.  Counter positions
        carry over.

        Raises:
            PatternConfigurationError: the pattern disagrees with the rest
                of the configuration.
            InvalidRequestError: starting_number or increment_by not positive.
        """
        cycle = ResetCycle(reset_cycle)
        if starting_number < 1:
            raise InvalidRequestError("starting_number", "starting_number must be at least 1")
        if increment_by < 1:
            raise InvalidRequestError("increment_by", "increment_by must be at least 1")
        self._formatter.validate(
            numbering_pattern,
            number_length,
            reset_cycle=cycle,
            requires_site_code=requires_site_code,
            type_code=code,
        )

        values: dict[str, Any] = {
            "name": name,
            "description": description,
            "numbering_pattern": numbering_pattern,
            "reset_cycle": cycle.value,
            "starting_number": starting_number,
            "number_length": number_length,
            "increment_by": increment_by,
            "supports_modifiers": supports_modifiers,
            "modifier_separator": (
                modifier_separator or DEFAULT_MODIFIER_SEPARATOR if supports_modifiers else None
            ),
            "modifier_options": dict(modifier_options) if modifier_options else None,
            "requires_site_code": requires_site_code,
            "requires_year": requires_year,
            "requires_month": requires_month,
            "protect_after_status": protect_after_status,
            "void_only_statuses": sorted(set(void_only_statuses or ())) or None,
            "is_active": is_active,
        }

        document_type = self.find(code)
        if document_type is None:
            document_type = DocumentType(
                code=code,
                current_number=starting_number,
                created_by_id=actor.actor_id,
                **values,
            )
            self.session.add(document_type)
            event = "document_type_registered"
        else:
            numbering_changed = any(
                getattr(document_type, key) != values[key] for key in _COUNTER_FIELDS
            )
            for key, value in values.items():
                setattr(document_type, key, value)
            document_type.updated_by_id = actor.actor_id
            event = "document_type_updated"
            if numbering_changed:
                self.session.flush()
                updated = self._sequences.apply_type_numbering(
                    document_type, actor_id=actor.actor_id
                )
                logger.info(
                    "sequence_counters_reconfigured",
                    extra={
                        "document_type": code,
                        "pattern": numbering_pattern,
                        "counters_updated": updated,
                    },
                )

        self.session.flush()
        logger.info(event, extra={"document_type": code, "pattern": numbering_pattern})
        return document_type

    def deactivate(self, code: str, actor: Actor) -> DocumentType:
        document_type = self.get(code)
        document_type.is_active = False
        document_type.updated_by_id = actor.actor_id
        self.session.flush()
        logger.info("document_type_deactivated", extra={"document_type": code})
        return document_type

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def configure_counter(
        self,
        type_code: str,
        actor: Actor,
        *,
        site_id: UUID | None = None,
        pattern: str | None = None,
        prefix: str | None = None,
        suffix: str | None = None,
        next_number: int | None = None,
        number_length: int | None = None,
        current_year: int | None = None,
        current_month: int | None = None,
    ) -> DocumentNumberPattern:
        """
        Set up (or adjust) the counter row for one (type, site) scope.

        Unspecified fields keep their current value, or take the type's
        defaults when the row is created.
        """
        document_type = self.get(type_code)
        counter = self._sequences.lock_or_create_counter(
            document_type, site_id, actor.actor_id
        )
        if pattern is not None:
            counter.pattern = pattern
        if number_length is not None:
            counter.number_length = number_length
        if prefix is not None:
            counter.prefix = prefix or None
        if suffix is not None:
            counter.suffix = suffix or None
        if next_number is not None:
            counter.next_number = next_number
        if current_year is not None:
            counter.current_year = current_year
        if current_month is not None:
            counter.current_month = current_month
        counter.updated_by_id = actor.actor_id

        self._formatter.validate(
            counter.pattern,
            counter.number_length,
            reset_cycle=counter.reset_interval,
            type_code=type_code,
        )
        self.session.flush()
        logger.info(
            "sequence_counter_configured",
            extra={
                "document_type": type_code,
                "scope_key": counter.scope_key,
                "next_number": counter.next_number,
            },
        )
        return counter

    def reset_numbering(
        self,
        type_code: str,
        actor: Actor,
        *,
        start: int | None = None,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> int:
        """
        Restart numbering for every scope of a type.

        Already issued numbers are untouched; a restart that would re-issue
        one surfaces as a CollisionError on the next generate.

        Returns:
            Number of counter rows reset.
        """
        document_type = self.get(type_code, lock=True)
        start = document_type.starting_number if start is None else start
        if start < 1:
            raise InvalidRequestError("start", "Numbering must restart at 1 or above")

        old_current = document_type.current_number
        reset_count = self._sequences.reset_counters(
            document_type, start, actor_id=actor.actor_id
        )
        document_type.current_number = start
        document_type.updated_by_id = actor.actor_id

        self._audit.record_type_event(
            type_code,
            AuditAction.NUMBERING_RESET,
            actor,
            old_values={"current_number": old_current},
            new_values={"current_number": start, "counters_reset": reset_count},
            reason=reason,
            request=request,
        )
        logger.warning(
            "document_numbering_reset",
            extra={"document_type": type_code, "start": start, "counters_reset": reset_count},
        )
        return reset_count
