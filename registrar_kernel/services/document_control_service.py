"""
DocumentControlService -- the registrar's inbound interface.

Responsibility:
    Single entry point for the business-document layer: issuing numbers
    (generate, reserve, link, bulk), protection state changes (status,
    lock, unlock, void), audit recording and queries, and the financial
    protection rules.  Wires the kernel services to one session, one clock,
    one site lookup and one policy.

Architecture position:
    Kernel > Services -- facade over NumberingService, RegistryService,
    DocumentTypeService, AuditTrailService and the selectors.  Outer layers
    call only this class.

Invariants enforced:
    - One inbound call == one transaction: commit on success, rollback on
      any failure (when auto_commit=True).  A number, its registry row and
      its audit rows are never committed separately.
    - Every call runs inside ``LogContext.bind`` so all log records carry
      the correlation id, actor, registry and document type.
    - Lock-wait timeouts surface as ContentionError on every path,
      including the commit itself.

Failure modes:
    - Every RegistrarError raised by the services propagates unchanged
      after rollback and a ``registrar_operation_rejected`` WARNING record.
    - Unexpected exceptions propagate after rollback and a
      ``registrar_operation_failed`` ERROR record.

Audit relevance:
    Mutating calls write exactly one audit row each (bulk: one per number).
    ``log_access`` and ``log_print`` record read-side events.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.dtos import (
    AuditEntry,
    AuditSearchCriteria,
    AuditSearchPage,
    AuditSummary,
    ComplianceReport,
    GenerationResult,
    NumberValidation,
    RegistryInfo,
    SequenceIntegrityReport,
)
from registrar_kernel.domain.financial import AUTO_LOCK_REASON, AmountChange, FinancialProtection
from registrar_kernel.domain.protection import ProtectionDecision, ProtectionPolicy
from registrar_kernel.domain.values import (
    DEFAULT_POLICY,
    Actor,
    DocumentRef,
    RegistrarPolicy,
    RegistryStatus,
    RequestContext,
)
from registrar_kernel.exceptions import (
    ContentionError,
    RegistrarError,
    StatusProtectedError,
    VoidAuthorizationError,
)
from registrar_kernel.logging_config import LogContext, get_logger
from registrar_kernel.selectors.audit_selector import AuditSelector
from registrar_kernel.selectors.registry_selector import RegistrySelector
from registrar_kernel.services.audit_service import AuditTrailService
from registrar_kernel.services.numbering_service import NumberingService
from registrar_kernel.services.registry_service import RegistryService
from registrar_kernel.services.sequence_store import is_lock_timeout
from registrar_kernel.services.site_lookup import SiteLookup, SqlSiteLookup

logger = get_logger("services.document_control")


class DocumentControlService:
    """
    Facade for controlled document numbering and protection.

    Contract:
        Every public method is one atomic operation.  Mutators take an
        explicit ``actor``; audit-writing methods take an optional
        ``request`` for IP/user-agent enrichment.

    Guarantees:
        - Commit on success, rollback on failure (when auto_commit=True).
        - Read methods also end their transaction so no lock outlives the
          call.

    Non-goals:
        - Does NOT own the status graph of any document type.
        - Does NOT authenticate actors; callers pass an authenticated Actor.

    Usage:
        control = DocumentControlService(session, site_lookup=lookup)
        result = control.generate("PO", actor, site_code="HQ")
        control.void(result.registry_id, "duplicate entry", actor)
    """

    def __init__(
        self,
        session: Session,
        *,
        clock: Clock | None = None,
        site_lookup: SiteLookup | None = None,
        policy: RegistrarPolicy | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or TransactionClock(session)
        self._policy = policy or DEFAULT_POLICY
        self._auto_commit = auto_commit

        self._audit = AuditTrailService(session, self._clock)
        self._numbering = NumberingService(
            session,
            self._clock,
            site_lookup or SqlSiteLookup(session),
            self._policy,
            self._audit,
        )
        self._registry = RegistryService(session, self._clock, self._audit, ProtectionPolicy())
        self._registry_selector = RegistrySelector(session)
        self._audit_selector = AuditSelector(session, self._policy)
        self._financial = FinancialProtection(self._policy)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def policy(self) -> RegistrarPolicy:
        return self._policy

    @property
    def financial(self) -> FinancialProtection:
        return self._financial

    # -------------------------------------------------------------------------
    # Transaction envelope
    # -------------------------------------------------------------------------

    @contextmanager
    def _operation(
        self,
        operation: str,
        *,
        actor: Actor | None = None,
        registry_id: UUID | None = None,
        document_type: str | None = None,
        request: RequestContext | None = None,
    ) -> Iterator[None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id) if actor else None,
            registry_id=str(registry_id) if registry_id else None,
            document_type=document_type,
            request_id=request.request_id if request else None,
        ):
            t0 = time.monotonic()
            try:
                yield
                if self._auto_commit:
                    self._session.commit()
            except OperationalError as exc:
                if self._auto_commit:
                    self._session.rollback()
                if not is_lock_timeout(exc):
                    logger.error(
                        "registrar_operation_failed",
                        extra={"operation": operation},
                        exc_info=True,
                    )
                    raise
                logger.warning(
                    "registrar_operation_contended",
                    extra={"operation": operation, "timeout_ms": self._policy.lock_timeout_ms},
                )
                raise ContentionError(
                    document_type or operation, "transaction", self._policy.lock_timeout_ms
                ) from exc
            except RegistrarError:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "registrar_operation_rejected",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    "registrar_operation_failed",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise

            logger.debug(
                "registrar_operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )

    # -------------------------------------------------------------------------
    # Numbering
    # -------------------------------------------------------------------------

    def generate(
        self,
        type_code: str,
        actor: Actor,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
        document: DocumentRef | None = None,
        initial_status: str = RegistryStatus.DRAFT,
        metadata: Mapping[str, Any] | None = None,
        request: RequestContext | None = None,
    ) -> GenerationResult:
        with self._operation("generate", actor=actor, document_type=type_code, request=request):
            return self._numbering.generate(
                type_code,
                actor,
                site_code=site_code,
                modifiers=modifiers,
                document=document,
                initial_status=initial_status,
                metadata=metadata,
                request=request,
            )

    def reserve(
        self,
        type_code: str,
        actor: Actor,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
        metadata: Mapping[str, Any] | None = None,
        request: RequestContext | None = None,
    ) -> GenerationResult:
        with self._operation("reserve", actor=actor, document_type=type_code, request=request):
            return self._numbering.reserve(
                type_code,
                actor,
                site_code=site_code,
                modifiers=modifiers,
                metadata=metadata,
                request=request,
            )

    def link(
        self,
        registry_id: UUID,
        document: DocumentRef,
        actor: Actor,
        *,
        status: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        with self._operation("link", actor=actor, registry_id=registry_id, request=request):
            return self._numbering.link(
                registry_id, document, actor, status=status, request=request
            )

    def bulk_generate(
        self,
        type_code: str,
        count: int,
        actor: Actor,
        *,
        site_code: str | None = None,
        request: RequestContext | None = None,
    ) -> list[GenerationResult]:
        with self._operation(
            "bulk_generate", actor=actor, document_type=type_code, request=request
        ):
            return self._numbering.bulk_generate(
                type_code, count, actor, site_code=site_code, request=request
            )

    def preview(
        self,
        type_code: str,
        *,
        site_code: str | None = None,
        modifiers: Iterable[str] | str | None = None,
    ) -> str:
        with self._operation("preview", document_type=type_code):
            return self._numbering.preview(type_code, site_code=site_code, modifiers=modifiers)

    def validate_document_number(
        self, document_number: str, type_code: str | None = None
    ) -> NumberValidation:
        with self._operation("validate_document_number", document_type=type_code):
            return self._numbering.validate_document_number(document_number, type_code)

    def check_sequence_integrity(
        self,
        type_code: str,
        *,
        year: int | None = None,
        site_code: str | None = None,
        month: int | None = None,
    ) -> SequenceIntegrityReport:
        with self._operation("check_sequence_integrity", document_type=type_code):
            return self._numbering.check_sequence_integrity(
                type_code, year=year, site_code=site_code, month=month
            )

    def reset_numbering(
        self,
        type_code: str,
        actor: Actor,
        *,
        start: int | None = None,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> int:
        with self._operation(
            "reset_numbering", actor=actor, document_type=type_code, request=request
        ):
            return self._numbering.document_types.reset_numbering(
                type_code, actor, start=start, reason=reason, request=request
            )

    # -------------------------------------------------------------------------
    # Protection
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
        with self._operation(
            "update_status", actor=actor, registry_id=registry_id, request=request
        ):
            return self._registry.update_status(
                registry_id, new_status, actor, reason=reason, request=request
            )

    def lock(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        with self._operation("lock", actor=actor, registry_id=registry_id, request=request):
            return self._registry.lock(registry_id, actor, reason=reason, request=request)

    def unlock(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        reason: str | None = None,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        with self._operation("unlock", actor=actor, registry_id=registry_id, request=request):
            return self._registry.unlock(registry_id, actor, reason=reason, request=request)

    def void(
        self,
        registry_id: UUID,
        reason: str,
        actor: Actor,
        *,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        with self._operation("void", actor=actor, registry_id=registry_id, request=request):
            return self._registry.void(registry_id, reason, actor, request=request)

    def can_edit(self, registry_id: UUID) -> bool:
        with self._operation("can_edit", registry_id=registry_id):
            return self._registry.can_edit(registry_id)

    def protection_status(self, registry_id: UUID) -> ProtectionDecision:
        with self._operation("protection_status", registry_id=registry_id):
            return self._registry.decide(self._registry.get(registry_id))

    # -------------------------------------------------------------------------
    # Audit
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
    ) -> AuditEntry | None:
        with self._operation(
            "record_update", actor=actor, registry_id=registry_id, request=request
        ):
            return self._registry.record_update(
                registry_id, old_values, new_values, actor, reason=reason, request=request
            )

    def log_access(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        access_type: str = "view",
        request: RequestContext | None = None,
    ) -> AuditEntry:
        with self._operation("log_access", actor=actor, registry_id=registry_id, request=request):
            return self._registry.record_access(
                registry_id, actor, request=request, metadata={"access_type": access_type}
            )

    def log_print(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        print_format: str = "PDF",
        recipient: str | None = None,
        request: RequestContext | None = None,
    ) -> AuditEntry:
        with self._operation("log_print", actor=actor, registry_id=registry_id, request=request):
            metadata = {"format": print_format}
            if recipient:
                metadata["recipient"] = recipient
            return self._registry.record_print(
                registry_id, actor, request=request, metadata=metadata
            )

    def get_history(self, registry_id: UUID, include_access: bool = True) -> list[AuditEntry]:
        with self._operation("get_history", registry_id=registry_id):
            return self._audit_selector.history(registry_id, include_access=include_access)

    def get_audit_summary(self, registry_id: UUID) -> AuditSummary:
        with self._operation("get_audit_summary", registry_id=registry_id):
            return self._audit_selector.summary(registry_id)

    def compliance_report(
        self,
        type_code: str | None = None,
        *,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> ComplianceReport:
        with self._operation("compliance_report", document_type=type_code):
            return self._audit_selector.compliance_report(
                type_code, date_from, date_to, generated_at=self._clock.now_utc()
            )

    def search_audit_trail(self, criteria: AuditSearchCriteria) -> AuditSearchPage:
        with self._operation("search_audit_trail"):
            return self._audit_selector.search(criteria)

    def validate_chain(self, registry_id: UUID) -> bool:
        with self._operation("validate_chain", registry_id=registry_id):
            return self._audit.validate_chain(registry_id)

    def get_registry(self, registry_id: UUID) -> RegistryInfo | None:
        with self._operation("get_registry", registry_id=registry_id):
            return self._registry_selector.get(registry_id)

    def find_for_document(self, document: DocumentRef) -> RegistryInfo | None:
        with self._operation("find_for_document"):
            return self._registry_selector.find_for_document(document)

    # -------------------------------------------------------------------------
    # Financial documents
    # -------------------------------------------------------------------------

    def void_financial_document(
        self,
        registry_id: UUID,
        reason: str,
        actor: Actor,
        *,
        amount: Decimal,
        approval_required: bool = True,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        """
        Void a financial document.

        Above the protection threshold the actor needs an authorized role.
        For statuses with financial impact the reason is prefixed with
        ``FINANCIAL IMPACT: ``.
        """
        with self._operation(
            "void_financial_document", actor=actor, registry_id=registry_id, request=request
        ):
            registry = self._registry.get(registry_id)
            if not self._financial.can_void(amount, actor, approval_required):
                raise VoidAuthorizationError(
                    str(registry.id),
                    registry.full_document_number,
                    list(self._policy.authorized_void_roles),
                )
            reason = (reason or "").strip()
            if reason:
                reason = self._financial.void_reason(reason, registry.status)
            return self._registry.void(registry_id, reason, actor, request=request)

    def apply_amount_change(
        self,
        registry_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        actor: Actor,
        *,
        request: RequestContext | None = None,
    ) -> AmountChange:
        """
        Check and record an amount change on a financial document.

        Raises:
            StatusProtectedError: amounts are frozen in the current status.
            ProtectionViolation: the document cannot be edited at all.
        """
        with self._operation(
            "apply_amount_change", actor=actor, registry_id=registry_id, request=request
        ):
            registry = self._registry.get(registry_id)
            change = self._financial.assess_amount_change(
                registry.status, old_amount, new_amount
            )
            if not change.allowed:
                raise StatusProtectedError(
                    str(registry.id), registry.full_document_number, registry.status
                )
            if change.old_amount != change.new_amount:
                old_values, new_values = change.audit_values()
                reason = None
                if change.significant:
                    reason = (
                        f"Significant amount change: {change.change_percentage}% variation"
                    )
                    logger.warning(
                        "significant_amount_change",
                        extra={
                            "registry_id": str(registry.id),
                            "change_percentage": str(change.change_percentage),
                        },
                    )
                self._registry.record_update(
                    registry_id, old_values, new_values, actor, reason=reason, request=request
                )
            return change

    def apply_amount_protection(
        self,
        registry_id: UUID,
        amount: Decimal,
        actor: Actor,
        *,
        request: RequestContext | None = None,
    ) -> RegistryInfo:
        """Auto-lock an approved document whose amount exceeds twice the threshold."""
        with self._operation(
            "apply_amount_protection", actor=actor, registry_id=registry_id, request=request
        ):
            registry = self._registry.get(registry_id)
            if self._financial.requires_auto_lock(amount, registry.status, registry.is_locked):
                return self._registry.lock(
                    registry_id, actor, reason=AUTO_LOCK_REASON, request=request
                )
            return RegistryInfo.from_model(registry)

    def financial_compliance_score(self, registry_id: UUID) -> int:
        with self._operation("financial_compliance_score", registry_id=registry_id):
            return self._financial.compliance_score(self._audit_selector.history(registry_id))
