"""
Module: registrar_kernel.selectors.registry_selector
Responsibility: Read-only queries over the document registry: lookups by
    id, number or owning document, per-type statistics, duplicate detection
    and per-row consistency checks.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - DTO convention: RegistryInfo, DocumentTypeStatistics, DuplicateNumber,
      RegistryIntegrity -- never raw ORM models.

Failure modes:
    - Returns None or empty results when nothing matches (never raises on
      absence of data), except ``validate_integrity`` which needs the row.

Audit relevance:
    ``find_duplicates`` and ``validate_integrity`` are fraud-detection
    queries.  Under correct operation the unique indexes make duplicates
    impossible; a non-empty result means the storage constraints were
    bypassed.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from registrar_kernel.domain.dtos import (
    DocumentTypeStatistics,
    DuplicateNumber,
    RegistryInfo,
    RegistryIntegrity,
)
from registrar_kernel.domain.values import AuditAction, DocumentRef, ResetCycle
from registrar_kernel.exceptions import RegistryNotFoundError
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.number_pattern import DocumentNumberPattern
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.selectors.base import BaseSelector


class RegistrySelector(BaseSelector[DocumentRegistry]):
    """
    Selector for registry queries.

    Guarantees:
        - Read-only: no mutations are performed.
        - Lists are ordered by (document_type_code, full_document_number).
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, registry_id: UUID) -> RegistryInfo | None:
        registry = self.session.get(DocumentRegistry, registry_id)
        return RegistryInfo.from_model(registry) if registry else None

    def find_by_number(self, full_document_number: str) -> RegistryInfo | None:
        registry = self.session.execute(
            select(DocumentRegistry).where(
                DocumentRegistry.full_document_number == full_document_number
            )
        ).scalar_one_or_none()
        return RegistryInfo.from_model(registry) if registry else None

    def find_for_document(self, document: DocumentRef) -> RegistryInfo | None:
        registry = self.session.execute(
            select(DocumentRegistry).where(
                DocumentRegistry.documentable_type == document.kind.value,
                DocumentRegistry.documentable_id == document.id,
            )
        ).scalar_one_or_none()
        return RegistryInfo.from_model(registry) if registry else None

    def list_reserved(self, type_code: str | None = None) -> list[RegistryInfo]:
        """Reserved numbers that were never linked to a document."""
        stmt = select(DocumentRegistry).where(
            DocumentRegistry.documentable_id.is_(None),
            DocumentRegistry.is_voided.is_(False),
        )
        if type_code:
            stmt = stmt.where(DocumentRegistry.document_type_code == type_code)
        stmt = stmt.order_by(
            DocumentRegistry.document_type_code, DocumentRegistry.full_document_number
        )
        return [RegistryInfo.from_model(r) for r in self.session.execute(stmt).scalars()]

    def statistics(
        self,
        type_code: str,
        *,
        site_id: UUID | None = None,
        year: int | None = None,
    ) -> DocumentTypeStatistics:
        """
        Counts for one document type, plus each counter's next number.

        ``this_year_count`` counts rows numbered in ``year`` (default: the
        current UTC year).
        """
        year = year or datetime.now(timezone.utc).year
        filters = [DocumentRegistry.document_type_code == type_code]
        if site_id is not None:
            filters.append(DocumentRegistry.site_id == site_id)

        def count(*extra) -> int:
            return self.session.execute(
                select(func.count(DocumentRegistry.id)).where(*filters, *extra)
            ).scalar_one()

        next_numbers = {
            row.scope_key: row.next_number
            for row in self.session.execute(
                select(DocumentNumberPattern.scope_key, DocumentNumberPattern.next_number)
                .join(DocumentType, DocumentType.id == DocumentNumberPattern.document_type_id)
                .where(DocumentType.code == type_code)
                .order_by(DocumentNumberPattern.scope_key)
            )
        }

        return DocumentTypeStatistics(
            document_type_code=type_code,
            total_documents=count(),
            active_documents=count(DocumentRegistry.is_voided.is_(False)),
            voided_documents=count(DocumentRegistry.is_voided.is_(True)),
            locked_documents=count(DocumentRegistry.is_locked.is_(True)),
            this_year_count=count(DocumentRegistry.year == year),
            next_numbers=next_numbers,
        )

    def find_duplicates(self) -> list[DuplicateNumber]:
        """Full document numbers stored more than once."""
        rows = self.session.execute(
            select(
                DocumentRegistry.full_document_number,
                func.count(DocumentRegistry.id).label("occurrences"),
            )
            .group_by(DocumentRegistry.full_document_number)
            .having(func.count(DocumentRegistry.id) > 1)
            .order_by(DocumentRegistry.full_document_number)
        ).all()
        return [
            DuplicateNumber(full_document_number=r.full_document_number, occurrences=r.occurrences)
            for r in rows
        ]

    def validate_integrity(self, registry_id: UUID) -> RegistryIntegrity:
        """
        Consistency checks on one registry row.

        Checks: the number is unique, the sequence number is where the
        period's numbering says it should be, a ``create`` audit row exists,
        the audit row count matches the chain head, and a voided row carries
        a reason.
        """
        registry = self.session.get(DocumentRegistry, registry_id)
        if registry is None:
            raise RegistryNotFoundError(str(registry_id))

        issues: list[str] = []

        duplicates = self.session.execute(
            select(func.count(DocumentRegistry.id)).where(
                DocumentRegistry.full_document_number == registry.full_document_number,
                DocumentRegistry.id != registry.id,
            )
        ).scalar_one()
        if duplicates:
            issues.append("Duplicate document number detected")

        document_type = registry.document_type
        cycle = document_type.reset
        period = [
            DocumentRegistry.document_type_code == registry.document_type_code,
            DocumentRegistry.scope_key == registry.scope_key,
            DocumentRegistry.sequence_number < registry.sequence_number,
        ]
        if cycle is not ResetCycle.NEVER:
            period.append(DocumentRegistry.year == registry.year)
        if cycle is ResetCycle.MONTHLY:
            period.append(DocumentRegistry.month == registry.month)
        earlier = self.session.execute(
            select(func.count(DocumentRegistry.id)).where(*period)
        ).scalar_one()
        expected = document_type.starting_number + earlier * document_type.increment_by
        if registry.sequence_number != expected:
            issues.append(
                f"Sequence number integrity violation: expected {expected}, "
                f"found {registry.sequence_number}"
            )

        audit_rows = self.session.execute(
            select(DocumentAuditTrail.action).where(
                DocumentAuditTrail.registry_id == registry.id
            )
        ).scalars().all()
        if AuditAction.CREATE.value not in audit_rows:
            issues.append("Missing create audit entry")
        if len(audit_rows) != registry.audit_count:
            issues.append(
                f"Audit count mismatch: registry records {registry.audit_count}, "
                f"trail holds {len(audit_rows)}"
            )

        if registry.is_voided and not registry.void_reason:
            issues.append("Voided without a reason")

        return RegistryIntegrity(
            registry_id=registry.id, valid=not issues, issues=tuple(issues)
        )
