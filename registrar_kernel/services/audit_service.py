"""
AuditTrailService -- append-only, hash-chained document audit trail.

Responsibility:
    Writes one DocumentAuditTrail row per registry mutation (create, link,
    update, status change, lock, unlock, void) and per read-side event
    (access, print), enriched with the actor and request context.  Each
    row extends its registry's hash chain.  Also re-derives a chain to
    detect tampering.

Architecture position:
    Kernel > Services -- imperative shell.  Called by NumberingService,
    RegistryService and DocumentTypeService inside their transactions.

Invariants enforced:
    - Append-only: rows are never modified or deleted (ORM listener + DB
      trigger on DocumentAuditTrail).
    - Chain per registry: ``seq = registry.audit_count + 1`` and
      ``hash = H(registry_id | seq | action | payload_hash | prev_hash)``.
      The caller holds the registry row lock (or just created the row), so
      seq allocation cannot race.
    - Audit is not best-effort: a failed write raises AuditWriteFailure and
      the enclosing business transaction must roll back.

Failure modes:
    - AuditWriteFailure: the row could not be flushed.
    - AuditChainBrokenError: validate_chain found a mismatched hash or link.

Audit relevance:
    This IS the audit service.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.values import EMPTY_REQUEST, Actor, AuditAction, RequestContext
from registrar_kernel.exceptions import AuditChainBrokenError, AuditWriteFailure
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.services.base import BaseService
from registrar_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.audit")

AUDIT_VERSION = "1.0"


class AuditTrailService(BaseService[DocumentAuditTrail]):
    """
    Writer of audit trail rows.

    Contract:
        ``record`` appends one row for a registry; ``record_type_event``
        appends one row anchored to a document type (numbering resets).

    Guarantees:
        - Every row names its actor (``performed_by_id`` NOT NULL).
        - ``old_values``/``new_values`` are stored as JSON-safe copies.

    Non-goals:
        - Does NOT decide whether an action is allowed (RegistryService and
          ProtectionPolicy do).
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)

    def _payload(
        self,
        document_type_code: str,
        action: AuditAction,
        actor: Actor,
        performed_at,
        old_values: dict | None,
        new_values: dict | None,
        reason: str | None,
        request: RequestContext,
    ) -> dict[str, Any]:
        return {
            "document_type_code": document_type_code,
            "action": action.value,
            "performed_by_id": str(actor.actor_id),
            "performed_at": performed_at,
            "old_values": old_values,
            "new_values": new_values,
            "reason": reason,
            **request.as_audit_fields(),
        }

    def _write(
        self,
        *,
        registry: DocumentRegistry | None,
        document_type_code: str,
        action: AuditAction,
        actor: Actor,
        seq: int,
        prev_hash: str | None,
        old_values: Mapping[str, Any] | None,
        new_values: Mapping[str, Any] | None,
        reason: str | None,
        request: RequestContext,
        metadata: Mapping[str, Any] | None,
    ) -> DocumentAuditTrail:
        registry_id = registry.id if registry is not None else None
        performed_at = self._clock.now_utc()
        old_json = to_json_safe(dict(old_values)) if old_values is not None else None
        new_json = to_json_safe(dict(new_values)) if new_values is not None else None

        payload_hash = hash_payload(
            self._payload(
                document_type_code, action, actor, performed_at,
                old_json, new_json, reason, request,
            )
        )
        entry_hash = hash_audit_entry(
            str(registry_id) if registry_id is not None else None,
            seq,
            action.value,
            payload_hash,
            prev_hash,
        )

        audit_metadata = {"audit_version": AUDIT_VERSION}
        if metadata:
            audit_metadata.update(to_json_safe(dict(metadata)))

        row = DocumentAuditTrail(
            registry_id=registry_id,
            document_type_code=document_type_code,
            action=action.value,
            old_values=old_json,
            new_values=new_json,
            reason=reason,
            performed_by_id=actor.actor_id,
            performed_by_name=actor.full_name,
            performed_at=performed_at,
            audit_metadata=audit_metadata,
            seq=seq,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
            **request.as_audit_fields(),
        )

        if registry is not None:
            registry.audit_count = seq
            registry.last_audit_hash = entry_hash

        try:
            self.session.add(row)
            self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "registry_id": str(registry_id) if registry_id else None,
                    "action": action.value,
                    "error": type(exc).__name__,
                },
            )
            raise AuditWriteFailure(
                str(registry_id) if registry_id else None, action.value, str(exc)
            ) from exc

        logger.info(
            "audit_entry_recorded",
            extra={
                "registry_id": str(registry_id) if registry_id else None,
                "document_type": document_type_code,
                "action": action.value,
                "seq": seq,
            },
        )
        return row

    def record(
        self,
        registry: DocumentRegistry,
        action: AuditAction,
        actor: Actor,
        *,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        reason: str | None = None,
        request: RequestContext | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> DocumentAuditTrail:
        """
        Append one audit row to ``registry``'s chain.

        Preconditions:
            - ``registry`` is locked by the current transaction or was
              created by it.
        Raises:
            AuditWriteFailure: the row could not be written.
        """
        return self._write(
            registry=registry,
            document_type_code=registry.document_type_code,
            action=action,
            actor=actor,
            seq=(registry.audit_count or 0) + 1,
            prev_hash=registry.last_audit_hash,
            old_values=old_values,
            new_values=new_values,
            reason=reason,
            request=request or EMPTY_REQUEST,
            metadata=metadata,
        )

    def record_type_event(
        self,
        document_type_code: str,
        action: AuditAction,
        actor: Actor,
        *,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        reason: str | None = None,
        request: RequestContext | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> DocumentAuditTrail:
        """
        Append a type-level row (no registry anchor).

        Type-level rows chain per document type code.  The caller holds the
        DocumentType row lock.
        """
        last = self.session.execute(
            select(DocumentAuditTrail)
            .where(
                DocumentAuditTrail.registry_id.is_(None),
                DocumentAuditTrail.document_type_code == document_type_code,
            )
            .order_by(DocumentAuditTrail.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return self._write(
            registry=None,
            document_type_code=document_type_code,
            action=action,
            actor=actor,
            seq=(last.seq + 1) if last else 1,
            prev_hash=last.hash if last else None,
            old_values=old_values,
            new_values=new_values,
            reason=reason,
            request=request or EMPTY_REQUEST,
            metadata=metadata,
        )

    # -------------------------------------------------------------------------
    # Chain validation
    # -------------------------------------------------------------------------

    def validate_chain(self, registry_id: UUID) -> bool:
        """
        Re-derive one registry's audit chain.

        Postconditions:
            - Returns True only if seq runs 1..n without holes, every stored
              hash matches its recomputed value, and every prev_hash matches
              its predecessor's hash.

        Raises:
            AuditChainBrokenError: at the first row that does not verify.
        """
        rows = self.session.execute(
            select(DocumentAuditTrail)
            .where(DocumentAuditTrail.registry_id == registry_id)
            .order_by(DocumentAuditTrail.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for position, row in enumerate(rows, start=1):
            if row.seq != position:
                logger.critical(
                    "audit_chain_broken",
                    extra={"registry_id": str(registry_id), "audit_id": str(row.id), "seq": row.seq},
                )
                raise AuditChainBrokenError(str(row.id), f"seq {position}", f"seq {row.seq}")

            if row.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"registry_id": str(registry_id), "audit_id": str(row.id), "seq": row.seq},
                )
                raise AuditChainBrokenError(
                    str(row.id), expected_prev or "None", row.prev_hash or "None"
                )

            payload_hash = hash_payload(
                {
                    "document_type_code": row.document_type_code,
                    "action": row.action,
                    "performed_by_id": str(row.performed_by_id),
                    "performed_at": row.performed_at,
                    "old_values": row.old_values,
                    "new_values": row.new_values,
                    "reason": row.reason,
                    "ip_address": row.ip_address,
                    "user_agent": row.user_agent,
                    "session_id": row.session_id,
                    "request_id": row.request_id,
                }
            )
            expected_hash = hash_audit_entry(
                str(registry_id), row.seq, row.action, payload_hash, row.prev_hash
            )
            if payload_hash != row.payload_hash or expected_hash != row.hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"registry_id": str(registry_id), "audit_id": str(row.id), "seq": row.seq},
                )
                raise AuditChainBrokenError(str(row.id), expected_hash, row.hash)

            expected_prev = row.hash

        logger.info(
            "audit_chain_valid",
            extra={"registry_id": str(registry_id), "entry_count": len(rows)},
        )
        return True
