"""Services for the registrar kernel (write side)."""

from registrar_kernel.services.audit_service import AuditTrailService
from registrar_kernel.services.document_control_service import DocumentControlService
from registrar_kernel.services.document_type_service import DocumentTypeService
from registrar_kernel.services.issued_number_service import IssuedNumberService
from registrar_kernel.services.numbering_service import NumberingService
from registrar_kernel.services.registry_service import RegistryService
from registrar_kernel.services.sequence_store import DocumentSequenceService
from registrar_kernel.services.site_lookup import (
    SiteLookup,
    SiteRef,
    SqlSiteLookup,
    StaticSiteLookup,
)

__all__ = [
    "AuditTrailService",
    "DocumentControlService",
    "DocumentSequenceService",
    "DocumentTypeService",
    "IssuedNumberService",
    "NumberingService",
    "RegistryService",
    "SiteLookup",
    "SiteRef",
    "SqlSiteLookup",
    "StaticSiteLookup",
]
