"""
Financial document protection -- Amount-based rules layered on ProtectionPolicy.

Responsibility:
    Pure decisions for documents that carry a monetary amount: protection
    level, whether the amount may change in the current status, whether a
    change is significant, whether a high-value document must be auto-locked,
    whether the voiding actor is authorized, the void-reason prefix for
    documents with financial impact, and an advisory compliance score.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The
    DocumentControlService applies these decisions and records the audit
    rows; nothing here touches the database.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Voiding a document above the protection threshold requires one of the
      authorized roles.
    - Amount changes are rejected in amount-locked statuses.

Failure modes:
    - ZeroDivision is impossible: a change from zero is reported as a 100%
      change when the new amount differs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Sequence

from registrar_kernel.domain.compliance import is_outside_business_hours
from registrar_kernel.domain.dtos import AuditEntry
from registrar_kernel.domain.values import Actor, AuditAction, RegistrarPolicy

FINANCIAL_IMPACT_PREFIX = "FINANCIAL IMPACT: "
AMOUNT_CHANGE_FLAG = "amount_change_flag"
AUTO_LOCK_REASON = "Auto-locked: High-value financial document"


class ProtectionLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


@dataclass(frozen=True, slots=True)
class AmountChange:
    """Assessment of an amount change on a financial document."""

    old_amount: Decimal
    new_amount: Decimal
    change_percentage: Decimal
    allowed: bool
    significant: bool

    def audit_values(self) -> tuple[dict, dict]:
        """
        Old/new value maps for the ``update`` audit row of an amount change.

        The flag key appears on the new side only, so unchanged-field
        elimination keeps it.
        """
        new_values: dict = {
            "amount": str(self.new_amount),
            "change_percentage": str(self.change_percentage),
        }
        if self.significant:
            new_values[AMOUNT_CHANGE_FLAG] = "significant"
        return {"amount": str(self.old_amount)}, new_values


class FinancialProtection:
    """
    Amount-based protection rules.

    Contract:
        Constructed from a RegistrarPolicy (threshold, authorized roles,
        financial and amount-locked status sets).  All methods are pure.
    """

    def __init__(self, policy: RegistrarPolicy | None = None):
        self.policy = policy or RegistrarPolicy()

    @property
    def threshold(self) -> Decimal:
        return self.policy.financial_threshold

    def exceeds_threshold(self, amount: Decimal) -> bool:
        return Decimal(amount) > self.threshold

    def protection_level(self, amount: Decimal) -> ProtectionLevel:
        amount = Decimal(amount)
        if amount < self.threshold * Decimal("0.1"):
            return ProtectionLevel.LOW
        if amount < self.threshold:
            return ProtectionLevel.MEDIUM
        if amount < self.threshold * 2:
            return ProtectionLevel.HIGH
        return ProtectionLevel.CRITICAL

    def has_financial_impact(self, status: str) -> bool:
        return status in self.policy.financial_statuses

    def can_change_amount(self, status: str) -> bool:
        return status not in self.policy.amount_locked_statuses

    def assess_amount_change(
        self, status: str, old_amount: Decimal, new_amount: Decimal
    ) -> AmountChange:
        old_amount = Decimal(old_amount)
        new_amount = Decimal(new_amount)
        if old_amount == new_amount:
            pct = Decimal("0")
        elif old_amount == 0:
            pct = Decimal("100")
        else:
            pct = abs((new_amount - old_amount) / old_amount * 100)
        pct = pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return AmountChange(
            old_amount=old_amount,
            new_amount=new_amount,
            change_percentage=pct,
            allowed=old_amount == new_amount or self.can_change_amount(status),
            significant=pct > self.policy.significant_change_ratio * 100,
        )

    def requires_auto_lock(self, amount: Decimal, status: str, is_locked: bool) -> bool:
        return (
            not is_locked
            and status == "approved"
            and Decimal(amount) > self.threshold * 2
        )

    def can_void(self, amount: Decimal, actor: Actor, approval_required: bool = True) -> bool:
        if not approval_required or not self.exceeds_threshold(amount):
            return True
        return actor.has_any_role(self.policy.authorized_void_roles)

    def void_reason(self, reason: str, status: str) -> str:
        if self.has_financial_impact(status) and not reason.startswith(FINANCIAL_IMPACT_PREFIX):
            return FINANCIAL_IMPACT_PREFIX + reason
        return reason

    def compliance_score(self, entries: Sequence[AuditEntry]) -> int:
        """
        Advisory score: 100, minus 5 per significant amount change, minus 2
        per after-hours action, floored at 0.
        """
        amount_changes = sum(
            1
            for e in entries
            if e.action is AuditAction.UPDATE
            and e.new_values
            and AMOUNT_CHANGE_FLAG in e.new_values
        )
        after_hours = sum(
            1 for e in entries if is_outside_business_hours(e, self.policy.business_hours)
        )
        return max(0, 100 - amount_changes * 5 - after_hours * 2)
