"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

An issued document number is a legal artifact.  Auditors must be able to
reconstruct every number ever handed out, what happened to it, and who did
it.  Voided numbers are never reclaimed and their audit history is never
rewritten.

This module is the FIRST layer of enforcement:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/*.sql (PostgreSQL triggers)
    - Catches raw SQL, bulk UPDATE statements, direct psql access
    - Fires AT the database level, independent of application code

See also:
  - db/triggers.py - Loads and installs PostgreSQL triggers
  - db/sql/*.sql - The actual trigger SQL

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|---------------------------------------------------
DocumentAuditTrail     | ALWAYS immutable: no UPDATE, no DELETE
DocumentRegistry       | Never deleted; once voided, frozen except audit
                       | bookkeeping (updated_at, updated_by_id,
                       | audit_count, last_audit_hash)
DocumentType           | code immutable once any registry row uses it;
                       | numbering configuration validated on every save
DocumentNumberPattern  | pattern validated against its own number_length
                       | and reset_interval on every save

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY CHECK "WAS VOIDED" NOT "IS VOIDED"?
   The void operation itself must set is_voided=True together with status,
   previous_status and the void_* fields.  We allow the False->True
   transition and block every change AFTER it, using attribute history.

2. WHY INLINE IMPORTS?
   Models import from db, db imports from models.  Inline imports defer
   resolution until the listener runs.

3. WHY VALIDATE CONFIGURATION HERE AS WELL AS IN THE SERVICE?
   Document types can be edited by any code holding a session.  A pattern
   whose '#' count disagrees with number_length would issue numbers that
   look valid but sort wrongly, so the check runs at save time no matter
   which path did the save.

===============================================================================
USAGE
===============================================================================

Called once during application startup:

    from registrar_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    from registrar_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect, text
from sqlalchemy.orm.attributes import get_history

from registrar_kernel.exceptions import ImmutabilityViolationError
from registrar_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Audit trail: append-only
# =============================================================================


def _check_audit_trail_immutability(mapper, connection, target):
    """Audit trail rows are never modified."""
    _block(
        "DocumentAuditTrail",
        target.id,
        "UPDATE",
        "Audit trail entries are immutable and cannot be modified",
    )


def _check_audit_trail_delete(mapper, connection, target):
    """Audit trail rows are never deleted."""
    _block(
        "DocumentAuditTrail",
        target.id,
        "DELETE",
        "Audit trail entries cannot be deleted",
    )


# =============================================================================
# Registry: never deleted, frozen once voided
# =============================================================================


def _was_voided_before(target) -> bool:
    """
    True when the row was already voided before the pending change.

    is_voided changing False -> True is the void operation itself and is
    allowed; True -> anything, or unchanged True, means the row was voided.
    """
    history = get_history(target, "is_voided")
    if history.deleted:
        return bool(history.deleted[0])
    if not history.added:
        return bool(target.is_voided)
    return False


def _check_registry_immutability(mapper, connection, target):
    """
    Block edits to voided registry rows.

    Audit bookkeeping fields still advance so access and print events on a
    voided document keep chaining.
    """
    from registrar_kernel.models.registry import AUDIT_BOOKKEEPING_FIELDS

    if not _was_voided_before(target):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in AUDIT_BOOKKEEPING_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "DocumentRegistry",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on voided document "
                f"{target.full_document_number}",
                field=attr.key,
            )


def _check_registry_delete(mapper, connection, target):
    """Registry rows are never deleted; voiding is the only way out."""
    _block(
        "DocumentRegistry",
        target.id,
        "DELETE",
        f"Document registry {target.full_document_number} cannot be deleted; void it instead",
    )


# =============================================================================
# Document type configuration
# =============================================================================


def _validate_document_type(target) -> None:
    from registrar_kernel.domain.pattern import PatternFormatter

    PatternFormatter().validate(
        target.numbering_pattern,
        target.number_length,
        reset_cycle=target.reset_cycle,
        requires_site_code=target.requires_site_code,
        type_code=target.code,
    )


def _document_type_code_in_use(connection, code: str) -> bool:
    result = connection.execute(
        text("SELECT 1 FROM document_registries WHERE document_type_code = :code LIMIT 1"),
        {"code": code},
    ).first()
    return result is not None


def _check_document_type_insert(mapper, connection, target):
    _validate_document_type(target)


def _check_document_type_update(mapper, connection, target):
    """
    Re-validate numbering configuration; keep ``code`` stable once used.

    Registry rows and audit rows carry the code as text, so renaming a
    referenced type would orphan its history.
    """
    code_history = get_history(target, "code")
    if code_history.deleted:
        old_code = code_history.deleted[0]
        if old_code != target.code and _document_type_code_in_use(connection, old_code):
            _block(
                "DocumentType",
                target.id,
                "UPDATE",
                f"Document type code '{old_code}' is referenced by issued documents",
                field="code",
            )
    _validate_document_type(target)


def _check_number_pattern_save(mapper, connection, target):
    from registrar_kernel.domain.pattern import PatternFormatter

    PatternFormatter().validate(
        target.pattern,
        target.number_length,
        reset_cycle=target.reset_interval,
    )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from registrar_kernel.models.audit_trail import DocumentAuditTrail
    from registrar_kernel.models.document_type import DocumentType
    from registrar_kernel.models.number_pattern import DocumentNumberPattern
    from registrar_kernel.models.registry import DocumentRegistry

    return [
        (DocumentAuditTrail, "before_update", _check_audit_trail_immutability),
        (DocumentAuditTrail, "before_delete", _check_audit_trail_delete),
        (DocumentRegistry, "before_update", _check_registry_immutability),
        (DocumentRegistry, "before_delete", _check_registry_delete),
        (DocumentType, "before_insert", _check_document_type_insert),
        (DocumentType, "before_update", _check_document_type_update),
        (DocumentNumberPattern, "before_insert", _check_number_pattern_save),
        (DocumentNumberPattern, "before_update", _check_number_pattern_save),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.  Call
    after all models are imported and before any database operations.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate immutability rules
    on purpose, for example to verify that the database triggers or the
    audit chain validator catch tampering on their own.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
    logger.debug("immutability_listeners_unregistered")


def immutability_listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, listener_fn)
        for target, event_name, listener_fn in _listeners()
    )
