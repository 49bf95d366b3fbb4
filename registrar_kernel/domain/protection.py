"""
ProtectionPolicy -- Pure edit/delete/void decisions for controlled documents.

Responsibility:
    Computes whether a document is currently editable, deletable, or
    voidable from its protection state (status, lock flag, void flag) and
    its document type's protection rules.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  RegistryService and
    the Protectable capability ask this module; neither re-implements it.

Invariants enforced:
    - Edit permission = NOT voided AND NOT locked AND status NOT protected.
    - A voided document is never editable, regardless of status or lock.
    - Deletion is never permitted; voiding is the only destructive-equivalent.
    - Void is permitted exactly once (voided is terminal).  A locked document
      may still be voided.

Failure modes:
    - ``ProtectionDecision.raise_for_edit`` raises the specific
      ProtectionViolation subclass for the first failing rule, in order
      voided > locked > status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from registrar_kernel.exceptions import (
    DocumentLockedError,
    DocumentVoidedError,
    ProtectionReason,
    StatusProtectedError,
)


@dataclass(frozen=True, slots=True)
class ProtectionRules:
    """
    Per-document-type protection rules.

    Contract:
        ``protect_after_status`` is the status at which edits stop;
        ``void_only_statuses`` are further statuses where only voiding is
        allowed.  Both sets are protected.
    """

    protect_after_status: str | None = None
    void_only_statuses: frozenset[str] = frozenset()

    @classmethod
    def of(
        cls, protect_after_status: str | None, void_only_statuses: Iterable[str] | None
    ) -> ProtectionRules:
        return cls(
            protect_after_status=protect_after_status or None,
            void_only_statuses=frozenset(void_only_statuses or ()),
        )

    @property
    def protected_statuses(self) -> frozenset[str]:
        statuses = set(self.void_only_statuses)
        if self.protect_after_status:
            statuses.add(self.protect_after_status)
        return frozenset(statuses)

    def allows_editing_at(self, status: str) -> bool:
        return status not in self.protected_statuses


@dataclass(frozen=True, slots=True)
class ProtectionState:
    """Snapshot of a registry row's protection-relevant fields."""

    registry_id: str
    document_number: str
    status: str
    is_locked: bool = False
    is_voided: bool = False
    lock_reason: str | None = None


@dataclass(frozen=True, slots=True)
class ProtectionDecision:
    """Result of evaluating a ProtectionState against ProtectionRules."""

    state: ProtectionState
    can_edit: bool
    can_delete: bool
    can_void: bool
    reason: ProtectionReason | None

    def raise_for_edit(self) -> None:
        """Raise the specific violation when editing is not allowed."""
        if self.can_edit:
            return
        state = self.state
        if self.reason is ProtectionReason.VOIDED:
            raise DocumentVoidedError(state.registry_id, state.document_number)
        if self.reason is ProtectionReason.LOCKED:
            raise DocumentLockedError(state.registry_id, state.document_number, state.lock_reason)
        raise StatusProtectedError(state.registry_id, state.document_number, state.status)

    def raise_for_void(self) -> None:
        if not self.can_void:
            raise DocumentVoidedError(self.state.registry_id, self.state.document_number)


class ProtectionPolicy:
    """
    Stateless evaluator of protection rules.

    Guarantees:
        - ``evaluate`` is deterministic and side-effect free.
    """

    def evaluate(self, state: ProtectionState, rules: ProtectionRules) -> ProtectionDecision:
        reason: ProtectionReason | None = None
        if state.is_voided:
            reason = ProtectionReason.VOIDED
        elif state.is_locked:
            reason = ProtectionReason.LOCKED
        elif not rules.allows_editing_at(state.status):
            reason = ProtectionReason.STATUS

        return ProtectionDecision(
            state=state,
            can_edit=reason is None,
            can_delete=False,
            can_void=not state.is_voided,
            reason=reason,
        )
