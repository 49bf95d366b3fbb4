"""
RegistryService -- protection state machine for issued document numbers.

Responsibility:
    Applies status changes, lock/unlock, void and field-level update
    records to DocumentRegistry rows, each gated by ProtectionPolicy and
    each producing exactly one audit row.  Also records read-side events
    (access, print).

Architecture position:
    Kernel > Services -- imperative shell.  Called by the
    DocumentControlService facade; NumberingService reuses
    ``lock_registry_row`` for link.

Invariants enforced:
    - Every mutation runs under a row lock on the registry row
      (``SELECT ... FOR UPDATE``), which also serializes its audit chain.
    - Voided is terminal: no status change, lock, unlock, update or second
      void once ``is_voided`` is set.
    - A locked document rejects status changes and edits until unlocked;
      it can still be voided.
    - Void always carries a non-empty reason; ``previous_status`` keeps the
      status at void time.
    - One successful call == one audit row with the matching action.

Failure modes:
    - RegistryNotFoundError: unknown registry id.
    - DocumentVoidedError / DocumentLockedError / StatusProtectedError /
      LockStateError: protection violations with a specific reason.
    - InvalidRequestError: empty void reason or status, or an attempt to
      set the reserved "voided" status through update_status.
    - AuditWriteFailure: propagated; the caller rolls back.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.compliance import diff_values
from registrar_kernel.domain.dtos import AuditEntry, RegistryInfo
from registrar_kernel.domain.protection import ProtectionDecision, ProtectionPolicy
from registrar_kernel.domain.values import Actor, AuditAction, RegistryStatus, RequestContext
from registrar_kernel.exceptions import (
    DocumentLockedError,
    DocumentVoidedError,
    InvalidRequestError,
    LockStateError,
    RegistryNotFoundError,
)
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.services.audit_service import AuditTrailService
from registrar_kernel.services.base import BaseService
from registrar_kernel.utils.hashing import to_json_safe

logger = get_logger("services.registry")


def lock_registry_row(session: Session, registry_id: UUID) -> DocumentRegistry:
    """Load a registry row under ``SELECT ... FOR UPDATE``."""
    registry = session.execute(
        select(DocumentRegistry)
        .where(DocumentRegistry.id == registry_id)
        .with_for_update(of=DocumentRegistry)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if registry is None:
        raise RegistryNotFoundError(str(registry_id))
    return registry


def checked_status(status: str | None, field: str = "new_status") -> str:
    """Normalize a workflow status; 'voided' is only reachable through void()."""
    status = (status or "").strip()
    if not status:
        raise InvalidRequestError(field, "Status must not be empty")
    if status == RegistryStatus.VOIDED:
        raise InvalidRequestError(
            field, "Status 'voided' is reserved; use void() with a reason"
        )
    return status


class RegistryService(BaseService[DocumentRegistry]):
    """
    Mutations of registry protection state.

    Contract:
        Each public mutator locks the row, checks protection, applies the
        change, writes one audit row and flushes.

    Guarantees:
        - Rejected calls leave the row and the audit trail unchanged.

    Non-goals:
        - Does NOT own the status graph; any status string is accepted
          except the registrar-reserved "voided".
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditTrailService | None = None,
        policy: ProtectionPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)
        self._audit = audit or AuditTrailService(session, self._clock)
        self._policy = policy or ProtectionPolicy()

    # -------------------------------------------------------------------------
    # Protection queries
    # -------------------------------------------------------------------------

    def get(self, registry_id: UUID) -> DocumentRegistry:
        registry = self.session.get(DocumentRegistry, registry_id)
        if registry is None:
            raise RegistryNotFoundError(str(registry_id))
        return registry

    def decide(self, registry: DocumentRegistry) -> ProtectionDecision:
        return self._policy.evaluate(
            registry.protection_state(), registry.document_type.protection_rules
        )

    def can_edit(self, registry_id: UUID) -> bool:
        return self.decide(self.get(registry_id)).can_edit

    def _ensure_not_voided(self, registry: DocumentRegistry) -> None:
        if registry.is_voided:
            raise DocumentVoidedError(str(registry.id), registry.full_document_number)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def update_status(
        self,
        registry_id: UUID,
        new_status: str,
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        """
        Move a document to ``new_status``.

        Status protection does not block workflow transitions; it blocks
        edits.  Locks and voids block both.
        """
        new_status = checked_status(new_status)

        registry = lock_registry_row(self.session, registry_id)
        self._ensure_not_voided(registry)
        if registry.is_locked:
            raise DocumentLockedError(
                str(registry.id), registry.full_document_number, registry.lock_reason
            )

        old_status = registry.status
        registry.previous_status = old_status
        registry.status = new_status
        registry.updated_by_id = actor.actor_id

        self._audit.record(
            registry,
            AuditAction.STATUS_CHANGE,
            actor,
            old_values={"status": old_status},
            new_values={"status": new_status},
            reason=reason,
            request=request,
        )
        logger.info(
            "document_status_changed",
            extra={
                "registry_id": str(registry.id),
                "from_status": old_status,
                "to_status": new_status,
            },
        )
        return RegistryInfo.from_model(registry)

    # -------------------------------------------------------------------------
    # Lock / unlock
    # -------------------------------------------------------------------------

    def lock(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        registry = lock_registry_row(self.session, registry_id)
        self._ensure_not_voided(registry)
        if registry.is_locked:
            raise LockStateError(str(registry.id), registry.full_document_number, True)

        now = self._clock.now_utc()
        registry.is_locked = True
        registry.locked_at = now
        registry.locked_by_id = actor.actor_id
        registry.lock_reason = reason
        registry.updated_by_id = actor.actor_id

        self._audit.record(
            registry,
            AuditAction.LOCK,
            actor,
            old_values={"is_locked": False},
            new_values={"is_locked": True, "locked_at": now, "lock_reason": reason},
            reason=reason,
            request=request,
        )
        logger.info(
            "document_locked",
            extra={"registry_id": str(registry.id), "document_number": registry.full_document_number},
        )
        return RegistryInfo.from_model(registry)

    def unlock(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        registry = lock_registry_row(self.session, registry_id)
        self._ensure_not_voided(registry)
        if not registry.is_locked:
            raise LockStateError(str(registry.id), registry.full_document_number, False)

        old_values = {
            "is_locked": True,
            "locked_at": registry.locked_at,
            "locked_by_id": registry.locked_by_id,
            "lock_reason": registry.lock_reason,
        }
        registry.is_locked = False
        registry.locked_at = None
        registry.locked_by_id = None
        registry.lock_reason = None
        registry.updated_by_id = actor.actor_id

        self._audit.record(
            registry,
            AuditAction.UNLOCK,
            actor,
            old_values=old_values,
            new_values={"is_locked": False},
            reason=reason,
            request=request,
        )
        logger.info(
            "document_unlocked",
            extra={"registry_id": str(registry.id), "document_number": registry.full_document_number},
        )
        return RegistryInfo.from_model(registry)

    # -------------------------------------------------------------------------
    # Void
    # -------------------------------------------------------------------------

    def void(
        self,
        registry_id: UUID,
        reason: str,
        actor: Actor,
        *,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        """
        Void a document number.  Terminal; the number is never reused.

        Raises:
            InvalidRequestError: reason is empty or whitespace.
            DocumentVoidedError: already voided.
        """
        reason = (reason or "").strip()
        if not reason:
            raise InvalidRequestError("reason", "A void reason is required")

        registry = lock_registry_row(self.session, registry_id)
        self.decide(registry).raise_for_void()

        now = self._clock.now_utc()
        old_status = registry.status
        registry.previous_status = old_status
        registry.status = RegistryStatus.VOIDED
        registry.is_voided = True
        registry.voided_at = now
        registry.voided_by_id = actor.actor_id
        registry.void_reason = reason
        registry.updated_by_id = actor.actor_id

        self._audit.record(
            registry,
            AuditAction.VOID,
            actor,
            old_values={"status": old_status, "is_voided": False},
            new_values={
                "status": RegistryStatus.VOIDED,
                "is_voided": True,
                "voided_at": now,
                "void_reason": reason,
            },
            reason=reason,
            request=request,
        )
        logger.info(
            "document_voided",
            extra={
                "registry_id": str(registry.id),
                "document_number": registry.full_document_number,
                "previous_status": old_status,
            },
        )
        return RegistryInfo.from_model(registry)

    # -------------------------------------------------------------------------
    # Field-level updates and read-side events
    # -------------------------------------------------------------------------

    def record_update(
        self,
        registry_id: UUID,
        old_values: Mapping[str, Any],
        new_values: Mapping[str, Any],
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEntry | None:
        """
        Record an edit of the owning business document.

        Only keys whose values differ are written.  Returns None (and
        writes nothing) when nothing changed.

        Raises:
            ProtectionViolation: the document cannot be edited.
        """
        registry = lock_registry_row(self.session, registry_id)
        self.decide(registry).raise_for_edit()

        before, after = diff_values(
            to_json_safe(dict(old_values or {})), to_json_safe(dict(new_values or {}))
        )
        if not before and not after:
            logger.debug("document_update_unchanged", extra={"registry_id": str(registry.id)})
            return None

        registry.updated_by_id = actor.actor_id
        row = self._audit.record(
            registry,
            AuditAction.UPDATE,
            actor,
            old_values=before,
            new_values=after,
            reason=reason,
            request=request,
            metadata=metadata,
        )
        return AuditEntry.from_model(row)

    def _record_event(
        self,
        registry_id: UUID,
        action: AuditAction,
        actor: Actor,
        request: RequestContext | None,
        metadata: Mapping[str, Any] | None,
    ) -> AuditEntry:
        registry = lock_registry_row(self.session, registry_id)
        row = self._audit.record(registry, action, actor, request=request, metadata=metadata)
        return AuditEntry.from_model(row)

    def record_access(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        request: RequestContext | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        """Record that a document was viewed.  Allowed in every state."""
        return self._record_event(registry_id, AuditAction.ACCESS, actor, request, metadata)

    def record_print(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        request: RequestContext | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        """Record that a document was printed.  Allowed in every state."""
        return self._record_event(registry_id, AuditAction.PRINT, actor, request, metadata)
