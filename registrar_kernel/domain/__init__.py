"""
Pure domain layer.

This package contains value objects, DTOs and decision logic with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

The two sanctioned exceptions are SystemClock and TransactionClock in
clock.py.  Everything else is immutable and deterministic.
"""

from registrar_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
    TransactionClock,
)
from registrar_kernel.domain.pattern import PatternFormatter, PatternValues
from registrar_kernel.domain.protectable import (
    ControlledDocument,
    Protectable,
    RegistryLink,
)
from registrar_kernel.domain.protection import (
    ProtectionDecision,
    ProtectionPolicy,
    ProtectionRules,
    ProtectionState,
)
from registrar_kernel.domain.values import (
    DEFAULT_POLICY,
    Actor,
    AuditAction,
    BusinessHours,
    DocumentKind,
    DocumentRef,
    RegistrarPolicy,
    RegistryStatus,
    RequestContext,
    ResetCycle,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SequentialClock",
    "SystemClock",
    "TransactionClock",
    # Pattern language
    "PatternFormatter",
    "PatternValues",
    # Protection
    "ControlledDocument",
    "Protectable",
    "RegistryLink",
    "ProtectionDecision",
    "ProtectionPolicy",
    "ProtectionRules",
    "ProtectionState",
    # Values
    "DEFAULT_POLICY",
    "Actor",
    "AuditAction",
    "BusinessHours",
    "DocumentKind",
    "DocumentRef",
    "RegistrarPolicy",
    "RegistryStatus",
    "RequestContext",
    "ResetCycle",
]
