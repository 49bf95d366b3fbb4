"""
registrar_config -- single public entrypoint for registrar configuration.

Responsibility:
    Provides the ONLY way to obtain registrar configuration at runtime
    through ``get_registrar_settings()``.  No other component may read the
    configuration files directly.  Returns a frozen ``RegistrarSettings``
    holding the runtime knobs (lock timeout, business hours, compliance and
    financial thresholds, bulk limit) and the document type catalog.

Architecture position:
    Configuration -- YAML-driven, validated on load.  This package sits
    above ``registrar_kernel``.  The kernel MUST NEVER import from
    ``registrar_config``; ``bridges`` translates settings into
    kernel-compatible inputs (``RegistrarPolicy`` and registered
    ``DocumentType`` rows).

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_registrar_settings()``.
    - Deterministic: the same YAML files always produce the same checksum.
    - Policy validation happens before settings are returned, so a bad
      threshold or an inverted business-hours window fails at load.

Failure modes:
    - ``FileNotFoundError`` -- the configuration directory or its
      ``settings.yaml`` is missing.
    - ``ValueError`` / ``KeyError`` -- malformed or incomplete entries.

Audit relevance:
    Every successful ``get_registrar_settings()`` call emits a
    ``registrar_config_loaded`` log entry containing the checksum and the
    catalog size.  This ties every issued number back to the configuration
    version that governed it.
"""

from __future__ import annotations

from pathlib import Path

from registrar_config.bridges import to_policy
from registrar_config.loader import load_settings
from registrar_config.schema import BusinessHoursDef, DocumentTypeDef, RegistrarSettings
from registrar_kernel.logging_config import get_logger

__all__ = [
    "BusinessHoursDef",
    "DocumentTypeDef",
    "RegistrarSettings",
    "get_registrar_settings",
]

_logger = get_logger("config")

# Default configuration directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_registrar_settings(config_dir: Path | None = None) -> RegistrarSettings:
    """The ONLY public configuration entrypoint.

    Contract:
        Loads ``settings.yaml`` and ``document_types.yaml`` from
        ``config_dir`` (default: ``registrar_config/sets/``) and returns
        the parsed, validated settings.

    Guarantees:
        - ``to_policy(settings)`` succeeds for the returned value.
        - A ``registrar_config_loaded`` log entry is emitted on every
          successful call.

    Non-goals:
        - This function does NOT cache settings across calls.
        - It does NOT touch the database; see ``bridges.bootstrap``.

    Raises:
        FileNotFoundError: If the directory or settings file is missing.
        ValueError: If validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Configuration directory not found: {sets_dir}")

    settings = load_settings(sets_dir)

    # Fail at load time rather than at first use.
    to_policy(settings)

    _logger.info(
        "registrar_config_loaded",
        extra={
            "config_dir": str(sets_dir),
            "checksum": settings.checksum,
            "document_type_count": len(settings.document_types),
            "lock_timeout_ms": settings.lock_timeout_ms,
        },
    )
    return settings
