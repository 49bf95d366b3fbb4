"""
Configuration Loader (``registrar_config.loader``).

Responsibility
--------------
Loads the registrar's YAML files and parses them into typed
``registrar_config.schema`` dataclass instances.  Services never call
this directly; the single public entry point for runtime config is
``registrar_config.get_registrar_settings()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  It has no dependency on the
kernel's services or models.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* Document type codes are unique within the catalog.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in parsed dict  -> ``KeyError`` propagates.
* Invalid time or duplicate code  -> ``ValueError``.

Audit relevance
---------------
The checksum of the loaded files is logged on every load so an auditor can
tie a numbering run to the exact catalog that governed it.
"""

from __future__ import annotations

import hashlib
import json
from datetime import time
from pathlib import Path
from typing import Any

import yaml

from registrar_config.schema import BusinessHoursDef, DocumentTypeDef, RegistrarSettings

SETTINGS_FILE = "settings.yaml"
DOCUMENT_TYPES_FILE = "document_types.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_time(value: Any) -> time:
    """
    Parse a wall-clock time from YAML.

    Times must be quoted in YAML ("07:00"); unquoted values such as 19:00
    are read by YAML 1.1 as base-60 integers.
    """
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise ValueError(f"Cannot parse time from {value!r}; quote it as \"HH:MM\"")


def parse_business_hours(data: dict[str, Any]) -> BusinessHoursDef:
    """Parse a BusinessHoursDef from a dict."""
    defaults = BusinessHoursDef()
    return BusinessHoursDef(
        start=parse_time(data["start"]) if "start" in data else defaults.start,
        end=parse_time(data["end"]) if "end" in data else defaults.end,
        timezone=data.get("timezone", defaults.timezone),
    )


def parse_document_type(data: dict[str, Any]) -> DocumentTypeDef:
    """
    Parse a ``DocumentTypeDef`` from a dict.

    Preconditions:
        - ``data`` must contain ``code``, ``name`` and ``numbering_pattern``.
    Raises:
        KeyError: if required keys are missing.
    """
    return DocumentTypeDef(
        code=data["code"],
        name=data["name"],
        numbering_pattern=data["numbering_pattern"],
        description=data.get("description"),
        reset_cycle=data.get("reset_cycle", "yearly"),
        starting_number=int(data.get("starting_number", 1)),
        number_length=int(data.get("number_length", 5)),
        increment_by=int(data.get("increment_by", 1)),
        supports_modifiers=bool(data.get("supports_modifiers", False)),
        modifier_separator=data.get("modifier_separator"),
        modifier_options=dict(data.get("modifier_options") or {}),
        requires_site_code=bool(data.get("requires_site_code", False)),
        requires_year=bool(data.get("requires_year", True)),
        requires_month=bool(data.get("requires_month", False)),
        protect_after_status=data.get("protect_after_status"),
        void_only_statuses=tuple(data.get("void_only_statuses") or ()),
        is_active=bool(data.get("is_active", True)),
    )


def load_document_types(data: dict[str, Any]) -> tuple[DocumentTypeDef, ...]:
    """
    Parse the ``document_types`` list of a catalog file.

    Raises:
        ValueError: if a code appears twice.
    """
    definitions = tuple(parse_document_type(item) for item in data.get("document_types", []))
    seen: set[str] = set()
    for definition in definitions:
        if definition.code in seen:
            raise ValueError(f"Duplicate document type code in catalog: {definition.code}")
        seen.add(definition.code)
    return definitions


def load_settings(config_dir: Path) -> RegistrarSettings:
    """
    Load ``settings.yaml`` and ``document_types.yaml`` from ``config_dir``.

    ``document_types.yaml`` is optional; ``settings.yaml`` is not.
    """
    settings_data = load_yaml_file(config_dir / SETTINGS_FILE)
    types_path = config_dir / DOCUMENT_TYPES_FILE
    types_data = load_yaml_file(types_path) if types_path.exists() else {}

    registrar = settings_data.get("registrar", {})
    compliance = settings_data.get("compliance", {})
    financial = settings_data.get("financial", {})

    return RegistrarSettings(
        lock_timeout_ms=int(registrar.get("lock_timeout_ms", 5000)),
        bulk_generation_limit=int(registrar.get("bulk_generation_limit", 1000)),
        business_hours=parse_business_hours(compliance.get("business_hours", {})),
        max_status_changes_per_actor=int(compliance.get("max_status_changes_per_actor", 5)),
        max_distinct_ips=int(compliance.get("max_distinct_ips", 10)),
        financial_threshold=str(financial.get("threshold", "50000")),
        significant_change_ratio=str(financial.get("significant_change_ratio", "0.10")),
        authorized_void_roles=tuple(financial.get("authorized_void_roles") or ()),
        financial_statuses=tuple(financial.get("financial_statuses") or ()),
        amount_locked_statuses=tuple(financial.get("amount_locked_statuses") or ()),
        document_types=load_document_types(types_data),
        checksum=compute_checksum({"settings": settings_data, "document_types": types_data}),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
