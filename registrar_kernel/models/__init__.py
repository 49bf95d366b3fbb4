"""ORM models for the registrar kernel."""

from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.issued_number import IssuedDocumentNumber, IssuedNumberStatus
from registrar_kernel.models.number_pattern import (
    GLOBAL_SCOPE,
    DocumentNumberPattern,
    scope_key_for,
)
from registrar_kernel.models.registry import AUDIT_BOOKKEEPING_FIELDS, DocumentRegistry
from registrar_kernel.models.site import Site

__all__ = [
    "AUDIT_BOOKKEEPING_FIELDS",
    "DocumentAuditTrail",
    "DocumentNumberPattern",
    "DocumentRegistry",
    "DocumentType",
    "GLOBAL_SCOPE",
    "IssuedDocumentNumber",
    "IssuedNumberStatus",
    "Site",
    "scope_key_for",
]
