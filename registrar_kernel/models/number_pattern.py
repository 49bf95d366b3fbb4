"""
Module: registrar_kernel.models.number_pattern
Responsibility: ORM persistence for the per-(document type, site) sequence
    counter -- the contended resource of the numbering engine.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one counter per (document_type_id, scope_key).  scope_key is
      the site id for per-site types and "GLOBAL" otherwise, so the unique
      index holds without relying on NULL semantics.
    - next_number only increases within a period; it resets to the type's
      starting_number when the tracked period changes.
    - Mutated exactly once per successful allocation, always under a row
      lock (see services/sequence_store.py).

Failure modes:
    - IntegrityError on a duplicate (type, scope) insert; the sequence store
      retries under a SAVEPOINT and locks the winner's row.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from registrar_kernel.db.base import TrackedBase, UUIDString
from registrar_kernel.models.document_type import DocumentType

GLOBAL_SCOPE = "GLOBAL"


def scope_key_for(site_id: UUID | None) -> str:
    return str(site_id) if site_id is not None else GLOBAL_SCOPE


class DocumentNumberPattern(TrackedBase):
    """
    Sequence counter row.

    Contract:
        ``pattern``/``prefix``/``suffix`` render the number; ``next_number``
        is the value the next allocation returns; ``current_year`` and
        ``current_month`` record the period the counter is in.
    """

    __tablename__ = "document_number_patterns"

    __table_args__ = (
        UniqueConstraint("document_type_id", "scope_key", name="uq_number_pattern_scope"),
    )

    document_type_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("document_types.id"), nullable=False
    )
    site_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    scope_key: Mapped[str] = mapped_column(String(64), nullable=False)

    pattern: Mapped[str] = mapped_column(String(200), nullable=False)
    prefix: Mapped[str | None] = mapped_column(String(50), nullable=True)
    suffix: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reset_interval: Mapped[str] = mapped_column(String(10), nullable=False)
    next_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    number_length: Mapped[int] = mapped_column(Integer, nullable=False)
    current_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    document_type: Mapped[DocumentType] = relationship()

    def __repr__(self) -> str:
        return f"<DocumentNumberPattern {self.document_type_id}/{self.scope_key} next={self.next_number}>"
