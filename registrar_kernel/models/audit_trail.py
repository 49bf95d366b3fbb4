"""
Module: registrar_kernel.models.audit_trail
Responsibility: ORM persistence for the append-only document audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are append-only; no UPDATE or DELETE (ORM listener + DB trigger).
    - Hash chain per registry: hash = H(registry_id | seq | action |
      payload_hash | prev_hash).  seq is unique within a registry.
    - performed_by_id is NOT NULL: every row names its actor.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError on a duplicate (registry_id, seq), which can only
      happen if the registry row was not locked while appending.

Audit relevance:
    This table IS the document history.  Rows outlive soft-deletion of the
    business document because the registry row they hang off is never
    deleted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from registrar_kernel.db.base import Base, UTCDateTime, UUIDString


class DocumentAuditTrail(Base):
    """
    One audit row.

    Contract:
        ``registry_id`` is NULL only for type-level rows (numbering resets);
        those chain per ``document_type_code`` instead of per registry.
    """

    __tablename__ = "document_audit_trails"

    __table_args__ = (
        UniqueConstraint("registry_id", "seq", name="uq_audit_registry_seq"),
        Index("idx_audit_registry", "registry_id", "seq"),
        Index("idx_audit_type_action", "document_type_code", "action"),
        Index("idx_audit_performed_at", "performed_at"),
        Index("idx_audit_performed_by", "performed_by_id"),
    )

    registry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("document_registries.id"),
        nullable=True,
    )
    document_type_code: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)

    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    performed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    performed_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    performed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    audit_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentAuditTrail {self.action} #{self.seq} on {self.registry_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
