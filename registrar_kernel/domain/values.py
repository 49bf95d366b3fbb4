"""
Values -- Immutable domain value objects for the registrar.

Responsibility:
    Provides the value types every other layer speaks in: reset cycles, audit
    actions, the typed document reference (DocumentKind + DocumentRef), the
    explicit caller context (Actor, RequestContext), and the RegistrarPolicy
    knobs (lock timeout, business hours, compliance thresholds, financial
    protection threshold).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by models, services, selectors and config bridges.

Invariants enforced:
    - DocumentRef.id is never empty; persisted as a generic (type-tag, id)
      pair but typed at the application boundary.
    - Actor.actor_id is always a UUID; audit rows never carry a null actor.
    - RegistrarPolicy values are validated at construction.

Failure modes:
    - ValueError on construction with empty ids, negative thresholds, or an
      inverted business-hours window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ResetCycle(str, Enum):
    """Cadence at which a sequence counter restarts from its starting number."""

    NEVER = "never"
    YEARLY = "yearly"
    MONTHLY = "monthly"


class AuditAction(str, Enum):
    """Types of auditable registry actions."""

    CREATE = "create"
    UPDATE = "update"
    STATUS_CHANGE = "status_change"
    LOCK = "lock"
    UNLOCK = "unlock"
    VOID = "void"
    ACCESS = "access"
    PRINT = "print"
    LINK = "link"
    NUMBERING_RESET = "numbering_reset"


# Actions that change the protection state of a document
PROTECTION_ACTIONS = frozenset({AuditAction.LOCK, AuditAction.UNLOCK, AuditAction.VOID})


class RegistryStatus:
    """Status values owned by the registrar itself.

    Every other status (draft, submitted, approved, ...) belongs to the
    consuming document type.
    """

    DRAFT = "draft"
    RESERVED = "reserved"
    VOIDED = "voided"


class DocumentKind(str, Enum):
    """
    Known document kinds that can own a registry row.

    Contract:
        The value is the type-tag persisted in ``documentable_type``.
        RESERVED and PENDING mark rows issued before their owning document
        exists (reserve-then-link).
    """

    PURCHASE_REQUEST = "purchase_request"
    PURCHASE_ORDER = "purchase_order"
    MATERIAL_RECEIVED_NOTE = "material_received_note"
    MATERIAL_REQUEST_ISSUANCE = "material_request_issuance"
    STOCK_ADJUSTMENT = "stock_adjustment"
    STOCK_TRANSFER = "stock_transfer"
    PHYSICAL_COUNT = "physical_count"
    DELIVERY_ORDER = "delivery_order"
    VENDOR_QUOTATION = "vendor_quotation"
    INVOICE = "invoice"
    BUDGET_TRANSFER = "budget_transfer"
    BUDGET_ADJUSTMENT = "budget_adjustment"
    BUDGET_REALLOCATION = "budget_reallocation"
    RESERVED = "reserved"
    PENDING = "pending"

    @property
    def is_placeholder(self) -> bool:
        return self in (DocumentKind.RESERVED, DocumentKind.PENDING)


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """
    Typed reference to the business document owning a registry row.

    Guarantees:
        - kind is a DocumentKind (never a free string).
        - id is a non-empty string (UUIDs and integers are normalized).
    """

    kind: DocumentKind
    id: str

    def __post_init__(self) -> None:
        if not isinstance(self.kind, DocumentKind):
            object.__setattr__(self, "kind", DocumentKind(self.kind))
        normalized = str(self.id).strip() if self.id is not None else ""
        if not normalized:
            raise ValueError("DocumentRef.id must not be empty")
        if self.kind.is_placeholder:
            raise ValueError(f"{self.kind.value!r} is a placeholder kind, not a document")
        object.__setattr__(self, "id", normalized)

    @classmethod
    def of(cls, kind: DocumentKind | str, id: UUID | int | str) -> DocumentRef:
        return cls(kind=DocumentKind(kind), id=str(id))


@dataclass(frozen=True, slots=True)
class Actor:
    """
    Authenticated actor performing an operation.

    Passed explicitly into every mutating service call; there is no ambient
    "current user".
    """

    actor_id: UUID
    full_name: str | None = None
    roles: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.actor_id, UUID):
            object.__setattr__(self, "actor_id", UUID(str(self.actor_id)))
        object.__setattr__(self, "roles", frozenset(r.lower() for r in self.roles))

    def has_any_role(self, roles: frozenset[str] | set[str] | tuple[str, ...]) -> bool:
        return bool(self.roles & {r.lower() for r in roles})


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Request metadata used to enrich audit rows."""

    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    request_id: str | None = None

    def as_audit_fields(self) -> dict[str, str | None]:
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "request_id": self.request_id,
        }


EMPTY_REQUEST = RequestContext()


@dataclass(frozen=True, slots=True)
class BusinessHours:
    """
    Business-hours window for the after-hours compliance flag.

    An action at exactly ``start`` or exactly ``end`` is inside the window.
    """

    start: time = time(7, 0)
    end: time = time(19, 0)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"Business hours start {self.start} must be before end {self.end}"
            )


DEFAULT_AUTHORIZED_VOID_ROLES = frozenset({"cfo", "finance_manager", "ceo", "finance_admin"})

DEFAULT_FINANCIAL_STATUSES = frozenset(
    {"approved", "sent_to_vendor", "posted_to_ledger", "invoiced", "paid"}
)

DEFAULT_AMOUNT_LOCKED_STATUSES = frozenset(
    {"approved", "sent_to_vendor", "posted_to_ledger", "invoiced"}
)


@dataclass(frozen=True)
class RegistrarPolicy:
    """
    Runtime policy knobs for the registrar.

    Contract:
        Built from configuration (see registrar_config) or used with its
        defaults.  Services receive it by constructor injection.

    Guarantees:
        - lock_timeout_ms > 0: counter lock waits are always bounded.
        - bulk_generation_limit >= 1.
    """

    lock_timeout_ms: int = 5000
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    max_status_changes_per_actor: int = 5
    max_distinct_ips: int = 10
    financial_threshold: Decimal = Decimal("50000")
    significant_change_ratio: Decimal = Decimal("0.10")
    authorized_void_roles: frozenset[str] = DEFAULT_AUTHORIZED_VOID_ROLES
    financial_statuses: frozenset[str] = DEFAULT_FINANCIAL_STATUSES
    amount_locked_statuses: frozenset[str] = DEFAULT_AMOUNT_LOCKED_STATUSES
    bulk_generation_limit: int = 1000

    def __post_init__(self) -> None:
        if self.lock_timeout_ms <= 0:
            raise ValueError("lock_timeout_ms must be positive")
        if self.financial_threshold < 0:
            raise ValueError("financial_threshold must not be negative")
        if self.bulk_generation_limit < 1:
            raise ValueError("bulk_generation_limit must be at least 1")
        if self.max_status_changes_per_actor < 0 or self.max_distinct_ips < 0:
            raise ValueError("compliance thresholds must not be negative")


DEFAULT_POLICY = RegistrarPolicy()
