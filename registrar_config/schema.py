"""
Registrar configuration schema.

Defines the human-authored, reviewable source artifact for registrar
configuration.  YAML files under ``registrar_config/sets/`` are parsed into
these types by the loader and translated into kernel inputs by the bridges.

Key distinction:
  RegistrarSettings  = source artifact (human-authored, versioned)
  RegistrarPolicy    = runtime artifact (kernel-owned, validated on build)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time

# ---------------------------------------------------------------------------
# Document type catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentTypeDef:
    """One controlled document type as declared in the catalog."""

    code: str
    name: str
    numbering_pattern: str
    description: str | None = None
    reset_cycle: str = "yearly"  # never, yearly, monthly
    starting_number: int = 1
    number_length: int = 5
    increment_by: int = 1
    supports_modifiers: bool = False
    modifier_separator: str | None = None
    modifier_options: dict[str, str] = field(default_factory=dict)
    requires_site_code: bool = False
    requires_year: bool = True
    requires_month: bool = False
    protect_after_status: str | None = None
    void_only_statuses: tuple[str, ...] = ()
    is_active: bool = True


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusinessHoursDef:
    """Business-hours window used by the after-hours compliance flag."""

    start: time = time(7, 0)
    end: time = time(19, 0)
    timezone: str = "UTC"


@dataclass(frozen=True)
class RegistrarSettings:
    """
    Runtime knobs for the registrar, plus the document type catalog.

    ``checksum`` is computed over the raw YAML of both files, so two loads
    of the same files always report the same value.
    """

    lock_timeout_ms: int = 5000
    business_hours: BusinessHoursDef = field(default_factory=BusinessHoursDef)
    max_status_changes_per_actor: int = 5
    max_distinct_ips: int = 10
    financial_threshold: str = "50000"
    significant_change_ratio: str = "0.10"
    authorized_void_roles: tuple[str, ...] = ()
    financial_statuses: tuple[str, ...] = ()
    amount_locked_statuses: tuple[str, ...] = ()
    bulk_generation_limit: int = 1000
    document_types: tuple[DocumentTypeDef, ...] = ()
    checksum: str = ""

    def document_type(self, code: str) -> DocumentTypeDef | None:
        for definition in self.document_types:
            if definition.code == code:
                return definition
        return None
