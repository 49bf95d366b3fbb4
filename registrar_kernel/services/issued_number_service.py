"""
IssuedNumberService -- legacy issued-number tracking.

Responsibility:
    Issues numbers into the simple ``issued_document_numbers`` table
    (status active/cancelled/voided) for callers that predate the registry.
    Shares the sequence store and formatter with NumberingService, so the
    two paths never hand out the same counter value.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - ``document_number`` is unique (unique index).
    - Status only moves active -> cancelled -> voided, or active -> voided.

Failure modes:
    - ConfigurationError subclasses from type/site resolution.
    - CollisionError when the rendered number already exists.
    - InvalidRequestError on a status transition that is not allowed.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from registrar_kernel.domain.clock import Clock, TransactionClock
from registrar_kernel.domain.dtos import IssuedNumberInfo
from registrar_kernel.domain.pattern import PatternFormatter, PatternValues
from registrar_kernel.domain.values import DEFAULT_POLICY, Actor, DocumentRef, RegistrarPolicy
from registrar_kernel.exceptions import CollisionError, InvalidRequestError, RegistryNotFoundError
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.issued_number import IssuedDocumentNumber, IssuedNumberStatus
from registrar_kernel.services.base import BaseService
from registrar_kernel.services.document_type_service import DocumentTypeService
from registrar_kernel.services.sequence_store import DocumentSequenceService
from registrar_kernel.services.site_lookup import SiteLookup, SqlSiteLookup, resolve_site_for

logger = get_logger("services.issued_number")

_ALLOWED_TRANSITIONS = {
    IssuedNumberStatus.ACTIVE: frozenset({IssuedNumberStatus.CANCELLED, IssuedNumberStatus.VOIDED}),
    IssuedNumberStatus.CANCELLED: frozenset({IssuedNumberStatus.VOIDED}),
    IssuedNumberStatus.VOIDED: frozenset(),
}


class IssuedNumberService(BaseService[IssuedDocumentNumber]):
    """
    Issue, cancel and void legacy document numbers.

    Non-goals:
        - No audit trail; the registry path is the audited one.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        site_lookup: SiteLookup | None = None,
        policy: RegistrarPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or TransactionClock(session)
        policy = policy or DEFAULT_POLICY
        self._site_lookup = site_lookup or SqlSiteLookup(session)
        self._sequences = DocumentSequenceService(
            session, self._clock, lock_timeout_ms=policy.lock_timeout_ms
        )
        self._types = DocumentTypeService(session, self._clock, sequences=self._sequences)
        self._formatter = PatternFormatter()

    def issue(
        self,
        type_code: str,
        document: DocumentRef,
        actor: Actor,
        *,
        site_code: str | None = None,
    ) -> IssuedNumberInfo:
        document_type = self._types.get_active(type_code)
        site = resolve_site_for(document_type, site_code, self._site_lookup)
        allocation = self._sequences.allocate_next(
            document_type, site.site_id if site else None, actor_id=actor.actor_id
        )
        number = self._formatter.render(
            allocation.pattern,
            PatternValues(
                code=document_type.code,
                year=allocation.year,
                month=allocation.month,
                day=allocation.day,
                sequence=allocation.sequence,
                site=site.code if site else None,
            ),
            allocation.pad_width,
            allocation.prefix,
            allocation.suffix,
        )

        row = IssuedDocumentNumber(
            document_number=number,
            issued_date=self._clock.now_utc().date(),
            documentable_type=document.kind.value,
            documentable_id=document.id,
            status=IssuedNumberStatus.ACTIVE,
            document_type_id=document_type.id,
            pattern_id=allocation.counter_id,
            created_by_id=actor.actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.critical(
                "issued_number_collision",
                extra={"document_number": number, "document_type": type_code},
            )
            raise CollisionError(number, type_code) from exc

        logger.info(
            "issued_number_created",
            extra={"document_type": type_code, "document_number": number},
        )
        return IssuedNumberInfo.from_model(row)

    def _transition(self, number_id: UUID, status: str, actor: Actor) -> IssuedNumberInfo:
        row = self.session.execute(
            select(IssuedDocumentNumber)
            .where(IssuedDocumentNumber.id == number_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise RegistryNotFoundError(str(number_id))
        if status not in _ALLOWED_TRANSITIONS[row.status]:
            raise InvalidRequestError(
                "status", f"Issued number {row.document_number} cannot move from {row.status} to {status}"
            )

        old_status = row.status
        row.status = status
        row.updated_by_id = actor.actor_id
        self.session.flush()
        logger.info(
            "issued_number_status_changed",
            extra={
                "document_number": row.document_number,
                "from_status": old_status,
                "to_status": status,
            },
        )
        return IssuedNumberInfo.from_model(row)

    def cancel(self, number_id: UUID, actor: Actor) -> IssuedNumberInfo:
        return self._transition(number_id, IssuedNumberStatus.CANCELLED, actor)

    def void(self, number_id: UUID, actor: Actor) -> IssuedNumberInfo:
        return self._transition(number_id, IssuedNumberStatus.VOIDED, actor)

    def number_exists(self, document_number: str) -> bool:
        return (
            self.session.execute(
                select(IssuedDocumentNumber.id).where(
                    IssuedDocumentNumber.document_number == document_number
                )
            ).first()
            is not None
        )

    def get_for_document(self, document: DocumentRef) -> list[IssuedNumberInfo]:
        rows = self.session.execute(
            select(IssuedDocumentNumber)
            .where(
                IssuedDocumentNumber.documentable_type == document.kind.value,
                IssuedDocumentNumber.documentable_id == document.id,
            )
            .order_by(IssuedDocumentNumber.created_at)
        ).scalars().all()
        return [IssuedNumberInfo.from_model(row) for row in rows]
