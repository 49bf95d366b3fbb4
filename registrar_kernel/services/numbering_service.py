"""
NumberingService -- issues controlled document numbers.

Responsibility:
    Public entry point for number issuance.  Resolves the document type and
    site, validates modifiers, allocates the next sequence value under the
    counter row lock, renders the number, persists the DocumentRegistry row
    and writes its ``create`` audit row, all inside the caller's
    transaction.  Also hosts reserve-then-link, bulk issuance, preview,
    number validation and the offline sequence integrity walk.

Architecture position:
    Kernel > Services -- imperative shell, orchestrates
    DocumentSequenceService (counter), PatternFormatter (pure rendering),
    SiteLookup (injected collaborator) and AuditTrailService.

Invariants enforced:
    - Allocation + registry insert + audit row are one unit: the caller's
      transaction commits all three or none.
    - ``full_document_number`` is unique forever (unique index).  A
      duplicate after rendering is a CollisionError, logged at CRITICAL;
      it is never overwritten.
    - One business document owns at most one registry row (unique index on
      ``(documentable_type, documentable_id)``).
    - A reserved row is linked exactly once.

Failure modes:
    - ConfigurationError subclasses: unknown/inactive type, missing or
      unknown site, invalid modifier, pattern problems.
    - ContentionError: counter lock wait exceeded.
    - CollisionError: rendered number already issued.
    - DocumentAlreadyRegisteredError / RegistryAlreadyLinkedError /
      DocumentLockedError / DocumentVoidedError on link.
    - InvalidRequestError: bulk count out of range, or an empty or
      ``voided`` status requested on issue or link.

Audit relevance:
    ``create`` and ``link`` audit rows are written here.  Every issued
    number is logged as ``document_number_generated``.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.dtos import (
    GenerationResult,
    NumberValidation,
    RegistryInfo,
    SequenceAllocation,
    SequenceGap,
    SequenceIntegrityReport,
)
from registrar_kernel.domain.pattern import (
    PatternFormatter,
    PatternValues,
    join_modifiers,
    normalize_modifiers,
)
from registrar_kernel.domain.values import (
    DEFAULT_POLICY,
    Actor,
    AuditAction,
    DocumentKind,
    DocumentRef,
    RegistrarPolicy,
    RegistryStatus,
    RequestContext,
    ResetCycle,
)
from registrar_kernel.exceptions import (
    CollisionError,
    DocumentAlreadyRegisteredError,
    DocumentLockedError,
    DocumentVoidedError,
    InvalidRequestError,
    RegistryAlreadyLinkedError,
)
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.number_pattern import scope_key_for
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.services.audit_service import AuditTrailService
from registrar_kernel.services.base import BaseService
from registrar_kernel.services.document_type_service import DocumentTypeService
from registrar_kernel.services.registry_service import checked_status, lock_registry_row
from registrar_kernel.services.sequence_store import DocumentSequenceService
from registrar_kernel.services.site_lookup import (
    SiteLookup,
    SiteRef,
    SqlSiteLookup,
    resolve_site_for,
)
from registrar_kernel.utils.hashing import to_json_safe

logger = get_logger("services.numbering")

BULK_METADATA_FLAG = "bulk_generated"


class NumberingService(BaseService[DocumentRegistry]):
    """
    Issues, reserves and links document numbers.

    Contract:
        ``generate`` returns a GenerationResult for a newly issued number.
        ``reserve`` issues a number with no owning document yet; ``link``
        attaches it later.

    Guarantees:
        - Each successful ``generate`` consumed exactly one counter value
          and wrote exactly one registry row and one ``create`` audit row.

    Non-goals:
        - Does NOT call ``session.commit()``; the facade owns the
          transaction.
        - Does NOT reclaim numbers; voids and rolled-back reservations
          leave gaps, which check_sequence_integrity reports.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        site_lookup: SiteLookup | None = None,
        policy: RegistrarPolicy | None = None,
        audit: AuditTrailService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)
        self._policy = policy or DEFAULT_POLICY
        self._site_lookup = site_lookup or SqlSiteLookup(session)
        self._audit = audit or AuditTrailService(session, self._clock)
        self._sequences = DocumentSequenceService(
            session, self._clock, lock_timeout_ms=self._policy.lock_timeout_ms
        )
        self._types = DocumentTypeService(
            session, self._clock, audit=self._audit, sequences=self._sequences
        )
        self._formatter = PatternFormatter()

    @property
    def sequences(self) -> DocumentSequenceService:
        return self._sequences

    @property
    def document_types(self) -> DocumentTypeService:
        return self._types

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _find_by_number(self, full_document_number: str) -> DocumentRegistry | None:
        return self.session.execute(
            select(DocumentRegistry).where(
                DocumentRegistry.full_document_number == full_document_number
            )
        ).scalar_one_or_none()

    def _find_for_document(self, document: DocumentRef) -> DocumentRegistry | None:
        return self.session.execute(
            select(DocumentRegistry).where(
                DocumentRegistry.documentable_type == document.kind.value,
                DocumentRegistry.documentable_id == document.id,
            )
        ).scalar_one_or_none()

    def _ensure_unregistered(self, document: DocumentRef) -> None:
        existing = self._find_for_document(document)
        if existing is not None:
            raise DocumentAlreadyRegisteredError(
                str(existing.id), document.kind.value, document.id
            )

    def _raise_collision(self, full_document_number: str, type_code: str) -> None:
        logger.critical(
            "document_number_collision",
            extra={"document_number": full_document_number, "document_type": type_code},
        )
        raise CollisionError(full_document_number, type_code)

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render(
        self,
        document_type: DocumentType,
        site: SiteRef | None,
        modifiers: tuple[str, ...],
        allocation: SequenceAllocation,
    ) -> tuple[str, str]:
        """Return (core number, full number with modifiers)."""
        values = PatternValues(
            code=document_type.code,
            year=allocation.year,
            month=allocation.month,
            day=allocation.day,
            sequence=allocation.sequence,
            site=site.code if site else None,
        )
        core = self._formatter.render(
            allocation.pattern,
            values,
            allocation.pad_width,
            allocation.prefix,
            allocation.suffix,
        )
        if not modifiers:
            return core, core
        full = self._formatter.append_modifiers(
            core, modifiers, document_type.modifier_separator
        )
        return core, full

    def _modifiers_for(
        self, document_type: DocumentType, modifiers: Iterable[str] | str | None
    ) -> tuple[str, ...]:
        return normalize_modifiers(
            document_type.code,
            modifiers,
            supports_modifiers=document_type.has_modifier_support,
            allowed=document_type.allowed_modifiers,
        )

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def generate(
        self,
        type_code: str,
        actor: Actor,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
        document: DocumentRef | None = None,
        initial_status: str = RegistryStatus.DRAFT,
        metadata: Mapping[str, Any] | None = None,
        request: RequestContext | None = None,
    ) -> GenerationResult:
        """
        Issue the next document number for ``type_code``.

        Preconditions:
            - ``type_code`` names an active document type.
            - ``site_code`` resolves when the type numbers per site.
        Postconditions:
            - The counter advanced once; one registry row and one ``create``
              audit row exist for the returned number.

        Raises:
            ConfigurationError: type, site or modifier problems.
            ContentionError: counter lock wait exceeded.
            CollisionError: rendered number already exists.
            InvalidRequestError: ``initial_status`` is empty or ``voided``.
            DocumentAlreadyRegisteredError: ``document`` already owns a row.
        """
        initial_status = checked_status(initial_status, "initial_status")
        document_type = self._types.get_active(type_code)
        site = resolve_site_for(document_type, site_code, self._site_lookup)
        normalized = self._modifiers_for(document_type, modifiers)
        if document is not None:
            self._ensure_unregistered(document)

        allocation = self._sequences.allocate_next(
            document_type,
            site.site_id if site else None,
            actor_id=actor.actor_id,
        )
        core, full = self._render(document_type, site, normalized, allocation)

        if self._find_by_number(full) is not None:
            self._raise_collision(full, type_code)

        registry = DocumentRegistry(
            document_type_id=document_type.id,
            pattern_id=allocation.counter_id,
            document_number=core,
            document_type_code=document_type.code,
            site_id=site.site_id if site else None,
            site_code=site.code if site else None,
            scope_key=allocation.scope_key,
            year=allocation.year,
            month=allocation.month if document_type.tracks_month else None,
            sequence_number=allocation.sequence,
            modifier=join_modifiers(normalized),
            full_document_number=full,
            documentable_type=(
                document.kind.value if document else DocumentKind.RESERVED.value
            ),
            documentable_id=document.id if document else None,
            status=initial_status,
            document_metadata=to_json_safe(dict(metadata)) if metadata else None,
            created_by_id=actor.actor_id,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(registry)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            # Lost a race that the pre-checks could not see.
            if self._find_by_number(full) is not None:
                self._raise_collision(full, type_code)
            if document is not None:
                self._ensure_unregistered(document)
            raise

        self._audit.record(
            registry,
            AuditAction.CREATE,
            actor,
            new_values={
                "full_document_number": full,
                "sequence_number": allocation.sequence,
                "status": initial_status,
                "site_code": registry.site_code,
                "modifier": registry.modifier,
                "documentable_type": registry.documentable_type,
                "documentable_id": registry.documentable_id,
            },
            request=request,
        )

        logger.info(
            "document_number_generated",
            extra={
                "registry_id": str(registry.id),
                "document_type": document_type.code,
                "document_number": full,
                "sequence": allocation.sequence,
                "scope_key": allocation.scope_key,
                "period_reset": allocation.reset,
            },
        )

        return GenerationResult(
            registry_id=registry.id,
            full_document_number=full,
            document_number=core,
            document_type_code=document_type.code,
            sequence_number=allocation.sequence,
            year=allocation.year,
            month=registry.month,
            site_code=registry.site_code,
            modifiers=normalized,
            components={
                "prefix": allocation.prefix,
                "suffix": allocation.suffix,
                "pattern": allocation.pattern,
                "period_key": allocation.period_key,
            },
        )

    def reserve(
        self,
        type_code: str,
        actor: Actor,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
        metadata: Mapping[str, Any] | None = None,
        request: RequestContext | None = None,
    ) -> GenerationResult:
        """Issue a number before its owning document exists; see ``link``."""
        return self.generate(
            type_code,
            actor,
            site_code=site_code,
            modifiers=modifiers,
            document=None,
            initial_status=RegistryStatus.RESERVED,
            metadata=metadata,
            request=request,
        )

    def link(
        self,
        registry_id: UUID,
        document: DocumentRef,
        actor: Actor,
        *,
        status: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        """
        Point a reserved registry row at its business document, exactly once.

        A row still in the ``reserved`` status moves to ``status`` (default
        ``draft``); a row with a workflow status keeps it unless ``status``
        is given.

        Raises:
            RegistryAlreadyLinkedError: the row already has an owner.
            DocumentAlreadyRegisteredError: the document owns another row.
            DocumentVoidedError / DocumentLockedError.
        """
        registry = lock_registry_row(self.session, registry_id)
        if registry.is_voided:
            raise DocumentVoidedError(str(registry.id), registry.full_document_number)
        if registry.is_locked:
            raise DocumentLockedError(
                str(registry.id), registry.full_document_number, registry.lock_reason
            )
        if not registry.is_reserved:
            raise RegistryAlreadyLinkedError(
                str(registry.id), registry.documentable_type, registry.documentable_id
            )
        self._ensure_unregistered(document)

        old_values = {
            "documentable_type": registry.documentable_type,
            "documentable_id": registry.documentable_id,
            "status": registry.status,
        }
        new_status = checked_status(status, "status") if status is not None else None
        if new_status is None and registry.status == RegistryStatus.RESERVED:
            new_status = RegistryStatus.DRAFT

        savepoint = self.session.begin_nested()
        try:
            registry.documentable_type = document.kind.value
            registry.documentable_id = document.id
            if new_status is not None and new_status != registry.status:
                registry.previous_status = registry.status
                registry.status = new_status
            registry.updated_by_id = actor.actor_id
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            self._ensure_unregistered(document)
            raise

        self._audit.record(
            registry,
            AuditAction.LINK,
            actor,
            old_values=old_values,
            new_values={
                "documentable_type": registry.documentable_type,
                "documentable_id": registry.documentable_id,
                "status": registry.status,
            },
            request=request,
        )
        logger.info(
            "document_number_linked",
            extra={
                "registry_id": str(registry.id),
                "document_number": registry.full_document_number,
                "documentable_type": document.kind.value,
                "documentable_id": document.id,
            },
        )
        return RegistryInfo.from_model(registry)

    def bulk_generate(
        self,
        type_code: str,
        count: int,
        actor: Actor,
        *,
        site_code: str | None = None,
        request: RequestContext | None = None,
    ) -> list[GenerationResult]:
        """
        Issue ``count`` reserved numbers in one transaction (migrations).

        Rows are tagged in their metadata with the batch id and their
        position in the batch; they stay reserved until linked.
        """
        limit = self._policy.bulk_generation_limit
        if count < 1 or count > limit:
            raise InvalidRequestError(
                "count", f"Bulk generation count must be between 1 and {limit} (got {count})"
            )

        batch_id = str(uuid4())
        results = [
            self.reserve(
                type_code,
                actor,
                site_code=site_code,
                metadata={
                    BULK_METADATA_FLAG: True,
                    "batch_id": batch_id,
                    "batch_index": index,
                },
                request=request,
            )
            for index in range(1, count + 1)
        ]
        logger.info(
            "bulk_generation_completed",
            extra={"document_type": type_code, "count": count, "batch_id": batch_id},
        )
        return results

    # -------------------------------------------------------------------------
    # Read-only helpers
    # -------------------------------------------------------------------------

    def preview(
        self,
        type_code: str,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
    ) -> str:
        """
        Render the number ``generate`` would issue now, without consuming it.

        Advisory only; a concurrent generate may take the value first.
        """
        document_type = self._types.get(type_code)
        site = resolve_site_for(document_type, site_code, self._site_lookup)
        normalized = self._modifiers_for(document_type, modifiers)
        allocation = self._sequences.peek_next(document_type, site.site_id if site else None)
        return self._render(document_type, site, normalized, allocation)[1]

    def validate_document_number(
        self, document_number: str, type_code: str | None = None
    ) -> NumberValidation:
        """Check that a number was issued, belongs to ``type_code`` and is not voided."""
        registry = self._find_by_number(document_number)
        if registry is None:
            return NumberValidation(
                document_number=document_number,
                valid=False,
                reason="Document number not found in registry",
            )

        common = {
            "document_number": document_number,
            "registry_id": registry.id,
            "status": registry.status,
            "document_type_code": registry.document_type_code,
        }
        if type_code and registry.document_type_code != type_code:
            return NumberValidation(
                valid=False,
                reason="Document number belongs to a different document type",
                **common,
            )
        if registry.is_voided:
            return NumberValidation(
                valid=False, reason="Document number has been voided", **common
            )
        return NumberValidation(valid=True, reason="valid", **common)

    def check_sequence_integrity(
        self,
        type_code: str,
        *,
        year: int | None = None,
        site_code: str | None = None,
        month: int | None = None,
    ) -> SequenceIntegrityReport:
        """
        Walk issued sequence numbers and report gaps.

        Numbers are grouped per counter scope and reset period; within each
        group the walk expects ``starting_number`` then steps of
        ``increment_by``.  Voided numbers still count as issued, so a void
        never shows up as a gap.
        """
        document_type = self._types.get(type_code)
        stmt = select(DocumentRegistry).where(DocumentRegistry.document_type_code == type_code)
        if year is not None:
            stmt = stmt.where(DocumentRegistry.year == year)
        if month is not None:
            stmt = stmt.where(DocumentRegistry.month == month)
        if site_code:
            site = self._site_lookup.resolve(site_code)
            if document_type.requires_site_code:
                stmt = stmt.where(DocumentRegistry.scope_key == scope_key_for(site.site_id))
            else:
                stmt = stmt.where(DocumentRegistry.site_id == site.site_id)
        stmt = stmt.order_by(
            DocumentRegistry.scope_key,
            DocumentRegistry.year,
            DocumentRegistry.month,
            DocumentRegistry.sequence_number,
        )
        rows = self.session.execute(stmt).scalars().all()

        cycle = document_type.reset
        step = document_type.increment_by
        gaps: list[SequenceGap] = []
        group = None
        expected: int | None = None
        for row in rows:
            key = self._period_group(cycle, row)
            if key != group:
                group = key
                expected = document_type.starting_number
            if row.sequence_number != expected:
                gaps.append(
                    SequenceGap(
                        full_document_number=row.full_document_number,
                        expected_sequence=expected,
                        actual_sequence=row.sequence_number,
                        scope_key=row.scope_key,
                        year=row.year,
                        month=row.month,
                    )
                )
            expected = row.sequence_number + step

        voided = sum(1 for row in rows if row.is_voided)
        report = SequenceIntegrityReport(
            document_type_code=type_code,
            total_documents=len(rows),
            gaps=tuple(gaps),
            next_expected=expected,
            voided_documents=voided,
        )
        log = logger.warning if gaps else logger.info
        log(
            "sequence_integrity_checked",
            extra={
                "document_type": type_code,
                "total_documents": report.total_documents,
                "gap_count": len(gaps),
            },
        )
        return report

    @staticmethod
    def _period_group(cycle: ResetCycle, row: DocumentRegistry) -> tuple:
        if cycle is ResetCycle.NEVER:
            return (row.scope_key,)
        if cycle is ResetCycle.YEARLY:
            return (row.scope_key, row.year)
        return (row.scope_key, row.year, row.month)

