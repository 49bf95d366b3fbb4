"""
Module: registrar_kernel.models.document_type
Responsibility: ORM persistence for document type configuration: numbering
    pattern, reset cycle, padding, modifiers and protection rules.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - code is globally unique (unique index) and immutable once any registry
      row references it (ORM listener in db/immutability.py + DB trigger).
    - numbering_pattern agrees with number_length, reset_cycle and
      requires_site_code; validated on every INSERT/UPDATE.

Failure modes:
    - PatternConfigurationError / UnknownPatternTokenError on save.
    - ImmutabilityViolationError when changing a referenced code.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from registrar_kernel.db.base import TrackedBase
from registrar_kernel.domain.protection import ProtectionRules
from registrar_kernel.domain.values import ResetCycle


class DocumentType(TrackedBase):
    """
    Configuration for one kind of controlled document.

    Contract:
        Rarely mutated.  The per-(type, site) sequence counters in
        ``document_number_patterns`` are created from these defaults on first
        use.  ``current_number`` is the legacy single-counter field; it is
        kept up to date by numbering resets only.
    """

    __tablename__ = "document_types"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    numbering_pattern: Mapped[str] = mapped_column(String(200), nullable=False)
    reset_cycle: Mapped[str] = mapped_column(
        String(10), nullable=False, default=ResetCycle.YEARLY.value
    )
    starting_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
    current_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
    number_length: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    increment_by: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    supports_modifiers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    modifier_separator: Mapped[str | None] = mapped_column(String(5), nullable=True)
    # {modifier_code: description}
    modifier_options: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    requires_site_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_year: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_month: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    protect_after_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    void_only_statuses: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<DocumentType {self.code}>"

    @property
    def reset(self) -> ResetCycle:
        return ResetCycle(self.reset_cycle)

    @property
    def allowed_modifiers(self) -> tuple[str, ...]:
        if not self.supports_modifiers or not self.modifier_options:
            return ()
        return tuple(self.modifier_options.keys())

    @property
    def has_modifier_support(self) -> bool:
        return bool(self.allowed_modifiers)

    @property
    def protection_rules(self) -> ProtectionRules:
        return ProtectionRules.of(self.protect_after_status, self.void_only_statuses)

    def allows_editing_at_status(self, status: str) -> bool:
        return self.protection_rules.allows_editing_at(status)

    @property
    def tracks_month(self) -> bool:
        return self.requires_month or self.reset is ResetCycle.MONTHLY
