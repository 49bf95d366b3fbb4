"""
Module: registrar_kernel.selectors.audit_selector
Responsibility: Read-only queries over the document audit trail: ordered
    history per registry, per-registry summaries, compliance reports across
    many registries, and paginated forensic search.
Architecture position: Kernel > Selectors.  Compliance heuristics come from
    domain/compliance.py (pure); this module only fetches the rows.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - History is ordered oldest-first by the per-registry audit sequence.
    - Compliance flags are advisory; nothing here blocks an operation.

Failure modes:
    - Returns empty results when nothing matches.
"""

from collections import Counter, defaultdict
from datetime import datetime
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from registrar_kernel.domain.compliance import compliance_flags
from registrar_kernel.domain.dtos import (
    AuditEntry,
    AuditSearchCriteria,
    AuditSearchPage,
    AuditSummary,
    ComplianceReport,
    ComplianceReportRow,
)
from registrar_kernel.domain.values import (
    DEFAULT_POLICY,
    PROTECTION_ACTIONS,
    AuditAction,
    RegistrarPolicy,
)
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.selectors.base import BaseSelector

MAX_PAGE_SIZE = 500


class AuditSelector(BaseSelector[DocumentAuditTrail]):
    """
    Selector for audit trail queries.

    Contract:
        ``history`` and ``summary`` look at one registry; ``compliance_report``
        and ``search`` look across the trail.
    """

    def __init__(self, session: Session, policy: RegistrarPolicy | None = None):
        super().__init__(session)
        self.policy = policy or DEFAULT_POLICY

    def history(self, registry_id: UUID, include_access: bool = True) -> list[AuditEntry]:
        stmt = select(DocumentAuditTrail).where(DocumentAuditTrail.registry_id == registry_id)
        if not include_access:
            stmt = stmt.where(DocumentAuditTrail.action != AuditAction.ACCESS.value)
        stmt = stmt.order_by(DocumentAuditTrail.seq)
        return [AuditEntry.from_model(row) for row in self.session.execute(stmt).scalars()]

    def type_events(self, document_type_code: str) -> list[AuditEntry]:
        """Type-level rows (numbering resets) for one document type, oldest first."""
        rows = self.session.execute(
            select(DocumentAuditTrail)
            .where(
                DocumentAuditTrail.registry_id.is_(None),
                DocumentAuditTrail.document_type_code == document_type_code,
            )
            .order_by(DocumentAuditTrail.seq)
        ).scalars()
        return [AuditEntry.from_model(row) for row in rows]

    def summary(self, registry_id: UUID) -> AuditSummary:
        entries = self.history(registry_id, include_access=True)
        breakdown = Counter(e.action.value for e in entries)
        return AuditSummary(
            registry_id=registry_id,
            total_entries=len(entries),
            action_breakdown=dict(breakdown),
            unique_actors=len({e.performed_by_id for e in entries}),
            first_action_at=entries[0].performed_at if entries else None,
            last_action_at=entries[-1].performed_at if entries else None,
            protection_actions=sum(1 for e in entries if e.action in PROTECTION_ACTIONS),
            compliance_flags=compliance_flags(entries, self.policy),
        )

    def compliance_report(
        self,
        document_type_code: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        generated_at: datetime | None = None,
    ) -> ComplianceReport:
        """
        Audit activity and compliance flags over a slice of the trail.

        Flags are computed per registry so one document's activity never
        flags another.
        """
        stmt = select(DocumentAuditTrail)
        if document_type_code:
            stmt = stmt.where(DocumentAuditTrail.document_type_code == document_type_code)
        if date_from is not None:
            stmt = stmt.where(DocumentAuditTrail.performed_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(DocumentAuditTrail.performed_at <= date_to)
        stmt = stmt.order_by(DocumentAuditTrail.performed_at, DocumentAuditTrail.seq)
        entries = [AuditEntry.from_model(row) for row in self.session.execute(stmt).scalars()]

        tz = ZoneInfo(self.policy.business_hours.timezone)
        hourly = Counter(e.performed_at.astimezone(tz).hour for e in entries)

        by_actor: dict[UUID, list[AuditEntry]] = defaultdict(list)
        by_registry: dict[UUID, list[AuditEntry]] = defaultdict(list)
        for entry in entries:
            by_actor[entry.performed_by_id].append(entry)
            if entry.registry_id is not None:
                by_registry[entry.registry_id].append(entry)

        actor_activity = {
            str(actor_id): {
                "total_actions": len(actions),
                "action_types": sorted({a.action.value for a in actions}),
            }
            for actor_id, actions in by_actor.items()
        }

        registries = {}
        if by_registry:
            registries = {
                r.id: r
                for r in self.session.execute(
                    select(DocumentRegistry).where(DocumentRegistry.id.in_(list(by_registry)))
                ).scalars()
            }

        rows: list[ComplianceReportRow] = []
        flag_counts: Counter[str] = Counter()
        for registry_id, registry_entries in by_registry.items():
            flags = compliance_flags(registry_entries, self.policy)
            if not flags:
                continue
            registry = registries.get(registry_id)
            flag_counts.update(f.flag for f in flags)
            rows.append(
                ComplianceReportRow(
                    registry_id=registry_id,
                    full_document_number=registry.full_document_number if registry else "",
                    document_type_code=registry_entries[0].document_type_code,
                    status=registry.status if registry else "",
                    audit_entries=len(registry_entries),
                    compliance_flags=flags,
                )
            )
        rows.sort(key=lambda r: r.full_document_number)

        return ComplianceReport(
            document_type_code=document_type_code,
            date_from=date_from,
            date_to=date_to,
            total_actions=len(entries),
            unique_documents=len(by_registry),
            unique_actors=len(by_actor),
            action_breakdown=dict(Counter(e.action.value for e in entries)),
            hourly_distribution=dict(sorted(hourly.items())),
            actor_activity=actor_activity,
            flag_counts=dict(flag_counts),
            rows=tuple(rows),
            generated_at=generated_at,
        )

    def search(self, criteria: AuditSearchCriteria) -> AuditSearchPage:
        """Forensic search, newest first, paginated."""
        filters = []
        if criteria.performed_by_id is not None:
            filters.append(DocumentAuditTrail.performed_by_id == criteria.performed_by_id)
        if criteria.action is not None:
            filters.append(DocumentAuditTrail.action == AuditAction(criteria.action).value)
        if criteria.document_type_code:
            filters.append(DocumentAuditTrail.document_type_code == criteria.document_type_code)
        if criteria.ip_address:
            filters.append(DocumentAuditTrail.ip_address == criteria.ip_address)
        if criteria.date_from is not None:
            filters.append(DocumentAuditTrail.performed_at >= criteria.date_from)
        if criteria.date_to is not None:
            filters.append(DocumentAuditTrail.performed_at <= criteria.date_to)
        if criteria.full_document_number:
            filters.append(
                DocumentAuditTrail.registry_id.in_(
                    select(DocumentRegistry.id).where(
                        DocumentRegistry.full_document_number.contains(
                            criteria.full_document_number, autoescape=True
                        )
                    )
                )
            )

        page = max(criteria.page, 1)
        per_page = min(max(criteria.per_page, 1), MAX_PAGE_SIZE)

        total = self.session.execute(
            select(func.count(DocumentAuditTrail.id)).where(*filters)
        ).scalar_one()
        rows = self.session.execute(
            select(DocumentAuditTrail)
            .where(*filters)
            .order_by(DocumentAuditTrail.performed_at.desc(), DocumentAuditTrail.seq.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars()

        return AuditSearchPage(
            entries=tuple(AuditEntry.from_model(row) for row in rows),
            total=total,
            page=page,
            per_page=per_page,
        )
