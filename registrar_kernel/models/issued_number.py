"""
Module: registrar_kernel.models.issued_number
Responsibility: Legacy parallel tracking of issued numbers
    (status active/cancelled/voided), the simpler predecessor of the
    document registry.
Architecture position: Kernel > Models.

Invariants enforced:
    - document_number is unique.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from registrar_kernel.db.base import TrackedBase, UUIDString


class IssuedNumberStatus:
    ACTIVE = "active"
    CANCELLED = "cancelled"
    VOIDED = "voided"

    ALL = frozenset({ACTIVE, CANCELLED, VOIDED})


class IssuedDocumentNumber(TrackedBase):
    __tablename__ = "issued_document_numbers"

    __table_args__ = (
        Index("idx_issued_documentable", "documentable_type", "documentable_id"),
        Index("idx_issued_status", "status"),
    )

    document_number: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    issued_date: Mapped[date] = mapped_column(Date, nullable=False)
    documentable_type: Mapped[str] = mapped_column(String(100), nullable=False)
    documentable_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IssuedNumberStatus.ACTIVE
    )
    document_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_types.id"), nullable=False
    )
    pattern_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_number_patterns.id"), nullable=False
    )

    def __repr__(self) -> str:
        return f"<IssuedDocumentNumber {self.document_number} ({self.status})>"

    @property
    def is_active(self) -> bool:
        return self.status == IssuedNumberStatus.ACTIVE
