"""Selectors for the registrar kernel (read side)."""

from registrar_kernel.selectors.audit_selector import AuditSelector
from registrar_kernel.selectors.registry_selector import RegistrySelector

__all__ = [
    "AuditSelector",
    "RegistrySelector",
]
