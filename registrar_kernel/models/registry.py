"""
Module: registrar_kernel.models.registry
Responsibility: ORM persistence for the document registry -- one row per
    issued document number, the audit anchor of every controlled document.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling models.

Invariants enforced:
    - full_document_number is unique across the whole system, forever
      (unique index; rows are never deleted).
    - (documentable_type, documentable_id) is unique: one business document
      owns at most one registry row.  Reserved rows carry a NULL
      documentable_id until they are linked.
    - Once is_voided is true the row is immutable except for audit
      bookkeeping fields (ORM listener + DB trigger).
    - Registry rows are never deleted (ORM listener + DB trigger).

Failure modes:
    - IntegrityError on a duplicate full_document_number (mapped to
      CollisionError by the numbering service).
    - ImmutabilityViolationError on DELETE or on edits to a voided row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from registrar_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from registrar_kernel.domain.protection import ProtectionState
from registrar_kernel.domain.values import DocumentKind, RegistryStatus
from registrar_kernel.models.document_type import DocumentType

# Fields that may still change on a voided registry row
AUDIT_BOOKKEEPING_FIELDS = frozenset(
    {"updated_at", "updated_by_id", "audit_count", "last_audit_hash"}
)


class DocumentRegistry(TrackedBase):
    """
    Durable record of one issued document number.

    Contract:
        Created by the numbering service at issuance time.  Status is a free
        string owned by the consuming document type; ``is_locked`` and
        ``is_voided`` are orthogonal flags.  ``audit_count`` and
        ``last_audit_hash`` are the head of this row's audit chain.
    """

    __tablename__ = "document_registries"

    __table_args__ = (
        UniqueConstraint("full_document_number", name="uq_registry_full_number"),
        UniqueConstraint(
            "documentable_type", "documentable_id", name="uq_registry_documentable"
        ),
        Index(
            "idx_registry_sequence",
            "document_type_code",
            "scope_key",
            "year",
            "month",
            "sequence_number",
        ),
        Index("idx_registry_status", "status"),
    )

    document_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_types.id"), nullable=False
    )
    pattern_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("document_number_patterns.id"), nullable=True
    )

    document_number: Mapped[str] = mapped_column(String(200), nullable=False)
    document_type_code: Mapped[str] = mapped_column(String(20), nullable=False)
    site_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    site_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sequence_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    modifier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    full_document_number: Mapped[str] = mapped_column(String(255), nullable=False)

    documentable_type: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DocumentKind.RESERVED.value
    )
    documentable_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=RegistryStatus.DRAFT
    )
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # "metadata" is reserved on declarative classes
    document_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    audit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_audit_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    document_type: Mapped[DocumentType] = relationship()

    def __repr__(self) -> str:
        return f"<DocumentRegistry {self.full_document_number} ({self.status})>"

    @property
    def is_reserved(self) -> bool:
        return self.documentable_id is None

    def protection_state(self) -> ProtectionState:
        return ProtectionState(
            registry_id=str(self.id),
            document_number=self.full_document_number,
            status=self.status,
            is_locked=self.is_locked,
            is_voided=self.is_voided,
            lock_reason=self.lock_reason,
        )
