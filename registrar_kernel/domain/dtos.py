"""
DTOs -- Pure data transfer objects for the registrar.

Responsibility:
    Defines the immutable data structures that leave the kernel: generation
    results, registry snapshots, audit entries, integrity and validation
    reports, statistics and search pages.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from the
    service and selector layers, never from domain logic.

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities.
    - AuditEntry is the only input to compliance analysis, so flag
      functions stay pure and testable without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from registrar_kernel.domain.values import AuditAction

if TYPE_CHECKING:
    from registrar_kernel.models.audit_trail import DocumentAuditTrail
    from registrar_kernel.models.issued_number import IssuedDocumentNumber
    from registrar_kernel.models.registry import DocumentRegistry


@dataclass(frozen=True)
class SequenceAllocation:
    """
    One value handed out by the sequence store.

    Contract:
        ``sequence`` is the allocated integer; ``year``/``month``/``day`` are
        the period context the allocation belongs to (used for rendering and
        for the registry row).  ``reset`` is True when this allocation
        started a new period.  ``pattern``, ``pad_width``, ``prefix`` and
        ``suffix`` are copied from the counter row so rendering needs no
        further lookup.
    """

    counter_id: UUID | None
    document_type_code: str
    scope_key: str
    sequence: int
    year: int
    month: int
    day: int
    pattern: str
    pad_width: int
    prefix: str | None = None
    suffix: str | None = None
    reset: bool = False
    period_key: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a successful generate/reserve call."""

    registry_id: UUID
    full_document_number: str
    document_number: str
    document_type_code: str
    sequence_number: int
    year: int
    month: int | None
    site_code: str | None
    modifiers: tuple[str, ...] = ()
    components: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RegistryInfo:
    """Read-side snapshot of a registry row."""

    id: UUID
    document_number: str
    full_document_number: str
    document_type_code: str
    site_id: UUID | None
    site_code: str | None
    year: int
    month: int | None
    sequence_number: int
    modifier: str | None
    documentable_type: str
    documentable_id: str | None
    status: str
    previous_status: str | None
    is_locked: bool
    locked_at: datetime | None
    locked_by_id: UUID | None
    lock_reason: str | None
    is_voided: bool
    voided_at: datetime | None
    voided_by_id: UUID | None
    void_reason: str | None
    metadata: dict[str, Any] | None
    created_at: datetime | None
    created_by_id: UUID | None

    @property
    def is_reserved(self) -> bool:
        return self.documentable_id is None

    @classmethod
    def from_model(cls, model: DocumentRegistry) -> RegistryInfo:
        return cls(
            id=model.id,
            document_number=model.document_number,
            full_document_number=model.full_document_number,
            document_type_code=model.document_type_code,
            site_id=model.site_id,
            site_code=model.site_code,
            year=model.year,
            month=model.month,
            sequence_number=model.sequence_number,
            modifier=model.modifier,
            documentable_type=model.documentable_type,
            documentable_id=model.documentable_id,
            status=model.status,
            previous_status=model.previous_status,
            is_locked=model.is_locked,
            locked_at=model.locked_at,
            locked_by_id=model.locked_by_id,
            lock_reason=model.lock_reason,
            is_voided=model.is_voided,
            voided_at=model.voided_at,
            voided_by_id=model.voided_by_id,
            void_reason=model.void_reason,
            metadata=dict(model.document_metadata) if model.document_metadata else None,
            created_at=model.created_at,
            created_by_id=model.created_by_id,
        )


@dataclass(frozen=True)
class AuditEntry:
    """
    Read-side snapshot of one audit trail row.

    Guarantees:
        - performed_by_id is never None.
        - seq orders entries within one registry's chain.
    """

    id: UUID
    registry_id: UUID | None
    document_type_code: str
    action: AuditAction
    performed_by_id: UUID
    performed_at: datetime
    seq: int
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    reason: str | None = None
    performed_by_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] | None = None
    payload_hash: str | None = None
    prev_hash: str | None = None
    hash: str | None = None

    @classmethod
    def from_model(cls, model: DocumentAuditTrail) -> AuditEntry:
        return cls(
            id=model.id,
            registry_id=model.registry_id,
            document_type_code=model.document_type_code,
            action=AuditAction(model.action),
            performed_by_id=model.performed_by_id,
            performed_at=model.performed_at,
            seq=model.seq,
            old_values=dict(model.old_values) if model.old_values else None,
            new_values=dict(model.new_values) if model.new_values else None,
            reason=model.reason,
            performed_by_name=model.performed_by_name,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            session_id=model.session_id,
            request_id=model.request_id,
            metadata=dict(model.audit_metadata) if model.audit_metadata else None,
            payload_hash=model.payload_hash,
            prev_hash=model.prev_hash,
            hash=model.hash,
        )


@dataclass(frozen=True)
class SequenceGap:
    """One discontinuity found by the sequence integrity check."""

    full_document_number: str
    expected_sequence: int
    actual_sequence: int
    scope_key: str
    year: int
    month: int | None

    @property
    def gap(self) -> int:
        return self.actual_sequence - self.expected_sequence


@dataclass(frozen=True)
class SequenceIntegrityReport:
    """Result of walking issued sequence numbers for gaps."""

    document_type_code: str
    total_documents: int
    gaps: tuple[SequenceGap, ...]
    next_expected: int | None
    voided_documents: int = 0

    @property
    def valid(self) -> bool:
        return not self.gaps


@dataclass(frozen=True)
class NumberValidation:
    """Result of validating a document number string."""

    document_number: str
    valid: bool
    reason: str
    registry_id: UUID | None = None
    status: str | None = None
    document_type_code: str | None = None


@dataclass(frozen=True)
class ComplianceFlag:
    """One advisory compliance flag raised over a slice of audit rows."""

    flag: str
    severity: str
    description: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditSummary:
    """Summary of one registry's audit history."""

    registry_id: UUID
    total_entries: int
    action_breakdown: dict[str, int]
    unique_actors: int
    first_action_at: datetime | None
    last_action_at: datetime | None
    protection_actions: int
    compliance_flags: tuple[ComplianceFlag, ...]


@dataclass(frozen=True)
class ComplianceReportRow:
    registry_id: UUID
    full_document_number: str
    document_type_code: str
    status: str
    audit_entries: int
    compliance_flags: tuple[ComplianceFlag, ...]


@dataclass(frozen=True)
class ComplianceReport:
    """
    Audit activity and compliance flags across many registries.

    ``rows`` lists only registries that raised at least one flag.
    """

    document_type_code: str | None
    date_from: datetime | None
    date_to: datetime | None
    total_actions: int
    unique_documents: int
    unique_actors: int
    action_breakdown: dict[str, int]
    hourly_distribution: dict[int, int]
    actor_activity: dict[str, dict[str, Any]]
    flag_counts: dict[str, int]
    rows: tuple[ComplianceReportRow, ...]
    generated_at: datetime | None = None

    @property
    def flagged_documents(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class AuditSearchCriteria:
    """Filters for forensic audit search.  All filters are optional."""

    performed_by_id: UUID | None = None
    action: AuditAction | None = None
    document_type_code: str | None = None
    full_document_number: str | None = None
    ip_address: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = 1
    per_page: int = 50


@dataclass(frozen=True)
class AuditSearchPage:
    entries: tuple[AuditEntry, ...]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        if self.per_page <= 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


@dataclass(frozen=True)
class DocumentTypeStatistics:
    document_type_code: str
    total_documents: int
    active_documents: int
    voided_documents: int
    locked_documents: int
    this_year_count: int
    next_numbers: dict[str, int]


@dataclass(frozen=True)
class DuplicateNumber:
    full_document_number: str
    occurrences: int


@dataclass(frozen=True)
class RegistryIntegrity:
    """Consistency check of a single registry row."""

    registry_id: UUID
    valid: bool
    issues: tuple[str, ...]


@dataclass(frozen=True)
class IssuedNumberInfo:
    id: UUID
    document_number: str
    issued_date: date
    documentable_type: str
    documentable_id: str
    status: str
    document_type_id: UUID
    pattern_id: UUID

    @classmethod
    def from_model(cls, model: IssuedDocumentNumber) -> IssuedNumberInfo:
        return cls(
            id=model.id,
            document_number=model.document_number,
            issued_date=model.issued_date,
            documentable_type=model.documentable_type,
            documentable_id=model.documentable_id,
            status=model.status,
            document_type_id=model.document_type_id,
            pattern_id=model.pattern_id,
        )
