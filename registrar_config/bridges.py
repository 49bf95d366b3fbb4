"""
Config → Kernel Bridges.

Functions that convert RegistrarSettings into kernel-compatible inputs.
These live in registrar_config (the producer) because the kernel must
NEVER import registrar_config.

Usage:
    from registrar_config import get_registrar_settings
    from registrar_config.bridges import bootstrap, to_policy

    settings = get_registrar_settings()
    policy = to_policy(settings)
    with session_scope() as session:
        bootstrap(session, settings, system_actor)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from registrar_config.schema import DocumentTypeDef, RegistrarSettings
from registrar_kernel.db.immutability import register_immutability_listeners
from registrar_kernel.domain.clock import Clock
from registrar_kernel.domain.values import (
    DEFAULT_AMOUNT_LOCKED_STATUSES,
    DEFAULT_AUTHORIZED_VOID_ROLES,
    DEFAULT_FINANCIAL_STATUSES,
    Actor,
    BusinessHours,
    RegistrarPolicy,
)
from registrar_kernel.logging_config import get_logger
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.services.document_type_service import DocumentTypeService

logger = get_logger("config.bridges")


def to_policy(settings: RegistrarSettings) -> RegistrarPolicy:
    """
    Build the kernel's RegistrarPolicy from loaded settings.

    Empty role or status lists fall back to the kernel defaults.

    Raises:
        ValueError: from RegistrarPolicy/BusinessHours validation.
    """
    hours = settings.business_hours
    return RegistrarPolicy(
        lock_timeout_ms=settings.lock_timeout_ms,
        business_hours=BusinessHours(start=hours.start, end=hours.end, timezone=hours.timezone),
        max_status_changes_per_actor=settings.max_status_changes_per_actor,
        max_distinct_ips=settings.max_distinct_ips,
        financial_threshold=Decimal(settings.financial_threshold),
        significant_change_ratio=Decimal(settings.significant_change_ratio),
        authorized_void_roles=(
            frozenset(r.lower() for r in settings.authorized_void_roles)
            or DEFAULT_AUTHORIZED_VOID_ROLES
        ),
        financial_statuses=frozenset(settings.financial_statuses) or DEFAULT_FINANCIAL_STATUSES,
        amount_locked_statuses=(
            frozenset(settings.amount_locked_statuses) or DEFAULT_AMOUNT_LOCKED_STATUSES
        ),
        bulk_generation_limit=settings.bulk_generation_limit,
    )


def install_document_types(
    session: Session,
    definitions: Iterable[DocumentTypeDef],
    actor: Actor,
    clock: Clock | None = None,
) -> list[DocumentType]:
    """
    Upsert every catalog entry through DocumentTypeService.register.

    Flushes but does not commit; the caller owns the transaction.
    """
    service = DocumentTypeService(session, clock)
    installed = []
    for definition in definitions:
        installed.append(
            service.register(
                definition.code,
                definition.name,
                definition.numbering_pattern,
                actor,
                description=definition.description,
                reset_cycle=definition.reset_cycle,
                starting_number=definition.starting_number,
                number_length=definition.number_length,
                increment_by=definition.increment_by,
                supports_modifiers=definition.supports_modifiers,
                modifier_separator=definition.modifier_separator,
                modifier_options=definition.modifier_options,
                requires_site_code=definition.requires_site_code,
                requires_year=definition.requires_year,
                requires_month=definition.requires_month,
                protect_after_status=definition.protect_after_status,
                void_only_statuses=definition.void_only_statuses,
                is_active=definition.is_active,
            )
        )
    return installed


def bootstrap(
    session: Session,
    settings: RegistrarSettings,
    actor: Actor,
    clock: Clock | None = None,
) -> RegistrarPolicy:
    """
    Prepare a database session for registrar work.

    Registers the ORM immutability listeners, installs the document type
    catalog and returns the policy built from ``settings``.
    """
    register_immutability_listeners()
    policy = to_policy(settings)
    installed = install_document_types(session, settings.document_types, actor, clock)
    logger.info(
        "registrar_bootstrapped",
        extra={
            "checksum": settings.checksum,
            "document_type_count": len(installed),
        },
    )
    return policy
