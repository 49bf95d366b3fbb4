"""
Typed Exception Hierarchy for the Registrar Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the numbering engine must tell three situations apart:

  - "try again"          -> ContentionError (lock wait timed out)
  - "fix your input"     -> ConfigurationError (unknown type, missing site, ...)
  - "document is frozen" -> ProtectionViolation (locked / voided / status)

Every exception carries a class-level `code` (machine-readable, API-safe) and
structured attributes.  Never parse messages.

    try:
        result = control.generate("PO", site_code="HQ", actor=actor)
    except ContentionError as e:
        retry_with_backoff()                      # e.retryable is True
    except ConfigurationError as e:
        return {"error": e.code, "detail": str(e)}
    except ProtectionViolation as e:
        return {"error": e.code, "reason": e.reason.value}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RegistrarError (base)
    |
    +-- ConfigurationError
    |   +-- DocumentTypeNotFoundError
    |   +-- DocumentTypeInactiveError
    |   +-- SiteRequiredError
    |   +-- SiteNotFoundError
    |   +-- InvalidModifierError
    |   +-- PatternConfigurationError
    |   +-- UnknownPatternTokenError
    |   +-- MissingPatternValueError
    |
    +-- ContentionError                (retryable)
    |
    +-- CollisionError                 (fatal bug signal)
    |
    +-- ProtectionViolation
    |   +-- DocumentLockedError
    |   +-- DocumentVoidedError
    |   +-- StatusProtectedError
    |   +-- RegistryAlreadyLinkedError
    |   +-- DocumentAlreadyRegisteredError
    |   +-- LockStateError
    |   +-- VoidAuthorizationError
    |
    +-- AuditError
    |   +-- AuditWriteFailure
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- RegistryNotFoundError
    +-- InvalidRequestError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group without mixing them
   with programming errors.

2. WHY A ProtectionReason ENUM?
   The UI layer explains a rejection to the end user.  The reason value
   is stable ("locked", "voided", "status", ...) while messages are not.

3. WHY IS AuditWriteFailure UNDER AuditError?
   A document change without its audit record is a correctness violation.
   Callers that catch AuditError must roll back; nothing here is best-effort.

===============================================================================
"""

from enum import Enum


class RegistrarError(Exception):
    """
    Base exception for all registrar kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "REGISTRAR_ERROR"
    retryable: bool = False


# Configuration errors


class ConfigurationError(RegistrarError):
    """Request or configuration is invalid; fails synchronously, never partially applied."""

    code: str = "CONFIGURATION_ERROR"


class DocumentTypeNotFoundError(ConfigurationError):
    """No document type with the given code exists."""

    code: str = "DOCUMENT_TYPE_NOT_FOUND"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Document type not found: {type_code}")


class DocumentTypeInactiveError(ConfigurationError):
    """Document type exists but is deactivated."""

    code: str = "DOCUMENT_TYPE_INACTIVE"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Document type is inactive: {type_code}")


class SiteRequiredError(ConfigurationError):
    """Document type numbers per site but no site code was given."""

    code: str = "SITE_REQUIRED"

    def __init__(self, type_code: str):
        self.type_code = type_code
        super().__init__(f"Site code is required for document type {type_code}")


class SiteNotFoundError(ConfigurationError):
    """Site code did not resolve through the site lookup."""

    code: str = "SITE_NOT_FOUND"

    def __init__(self, site_code: str):
        self.site_code = site_code
        super().__init__(f"Site not found: {site_code}")


class InvalidModifierError(ConfigurationError):
    """Modifier is not allowed for the document type."""

    code: str = "INVALID_MODIFIER"

    def __init__(self, type_code: str, modifier: str, allowed: list[str] | None = None):
        self.type_code = type_code
        self.modifier = modifier
        self.allowed = sorted(allowed or [])
        if allowed is None:
            message = f"Document type {type_code} does not support modifiers (got {modifier!r})"
        else:
            message = (
                f"Invalid modifier {modifier!r} for document type {type_code}; "
                f"allowed: {', '.join(self.allowed) or 'none'}"
            )
        super().__init__(message)


class PatternConfigurationError(ConfigurationError):
    """Numbering pattern disagrees with the rest of the type configuration."""

    code: str = "PATTERN_CONFIGURATION"

    def __init__(self, pattern: str, reason: str, type_code: str | None = None):
        self.pattern = pattern
        self.reason = reason
        self.type_code = type_code
        prefix = f"Document type {type_code}: " if type_code else ""
        super().__init__(f"{prefix}invalid numbering pattern {pattern!r}: {reason}")


class UnknownPatternTokenError(ConfigurationError):
    """Pattern contains a token the formatter does not know."""

    code: str = "UNKNOWN_PATTERN_TOKEN"

    def __init__(self, pattern: str, token: str):
        self.pattern = pattern
        self.token = token
        super().__init__(f"Unknown token {{{token}}} in pattern {pattern!r}")


class MissingPatternValueError(ConfigurationError):
    """Pattern references a component that was not resolved (e.g. {SITE} with no site)."""

    code: str = "MISSING_PATTERN_VALUE"

    def __init__(self, pattern: str, token: str):
        self.pattern = pattern
        self.token = token
        super().__init__(f"No value for token {{{token}}} in pattern {pattern!r}")


# Contention / collision


class ContentionError(RegistrarError):
    """
    Counter row lock could not be acquired within the bounded wait.

    Retryable with backoff.  Never degrades to an unlocked read.
    """

    code: str = "CONTENTION"
    retryable: bool = True

    def __init__(self, type_code: str, scope_key: str, timeout_ms: int | None = None):
        self.type_code = type_code
        self.scope_key = scope_key
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Sequence counter for {type_code}/{scope_key} is contended"
            + (f" (lock wait exceeded {timeout_ms} ms)" if timeout_ms else "")
        )


class CollisionError(RegistrarError):
    """
    A formatted document number already exists.

    Unreachable under correct locking; treated as a fatal bug signal.
    """

    code: str = "DOCUMENT_NUMBER_COLLISION"

    def __init__(self, full_document_number: str, type_code: str | None = None):
        self.full_document_number = full_document_number
        self.type_code = type_code
        super().__init__(f"Document number already issued: {full_document_number}")


# Protection violations


class ProtectionReason(str, Enum):
    """Why a protected operation was rejected."""

    LOCKED = "locked"
    VOIDED = "voided"
    STATUS = "status"
    ALREADY_LINKED = "already_linked"
    NOT_LOCKED = "not_locked"
    ALREADY_LOCKED = "already_locked"
    AUTHORIZATION = "authorization"
    DELETE_FORBIDDEN = "delete_forbidden"


class ProtectionViolation(RegistrarError):
    """Operation rejected because of the document's protection state."""

    code: str = "PROTECTION_VIOLATION"

    def __init__(
        self,
        registry_id: str,
        reason: ProtectionReason,
        message: str | None = None,
    ):
        self.registry_id = registry_id
        self.reason = reason
        super().__init__(message or f"Document {registry_id} is protected ({reason.value})")


class DocumentLockedError(ProtectionViolation):
    """Document is locked; no edits or status changes until unlocked."""

    code: str = "DOCUMENT_LOCKED"

    def __init__(self, registry_id: str, document_number: str, lock_reason: str | None = None):
        self.document_number = document_number
        self.lock_reason = lock_reason
        super().__init__(
            registry_id,
            ProtectionReason.LOCKED,
            f"Document {document_number} is locked"
            + (f": {lock_reason}" if lock_reason else ""),
        )


class DocumentVoidedError(ProtectionViolation):
    """Document is voided; voiding is terminal."""

    code: str = "DOCUMENT_VOIDED"

    def __init__(self, registry_id: str, document_number: str):
        self.document_number = document_number
        super().__init__(
            registry_id,
            ProtectionReason.VOIDED,
            f"Document {document_number} is voided",
        )


class StatusProtectedError(ProtectionViolation):
    """Document status is in the type's protected set."""

    code: str = "STATUS_PROTECTED"

    def __init__(self, registry_id: str, document_number: str, status: str):
        self.document_number = document_number
        self.status = status
        super().__init__(
            registry_id,
            ProtectionReason.STATUS,
            f"Document {document_number} cannot be edited in status {status!r}",
        )


class RegistryAlreadyLinkedError(ProtectionViolation):
    """Reserved registry row was already linked to a business document."""

    code: str = "REGISTRY_ALREADY_LINKED"

    def __init__(self, registry_id: str, documentable_type: str, documentable_id: str | None):
        self.documentable_type = documentable_type
        self.documentable_id = documentable_id
        super().__init__(
            registry_id,
            ProtectionReason.ALREADY_LINKED,
            f"Registry {registry_id} is already linked to "
            f"{documentable_type}:{documentable_id}",
        )


class LockStateError(ProtectionViolation):
    """Lock requested on a locked document, or unlock on an unlocked one."""

    code: str = "LOCK_STATE"

    def __init__(self, registry_id: str, document_number: str, is_locked: bool):
        self.document_number = document_number
        self.is_locked = is_locked
        if is_locked:
            reason = ProtectionReason.ALREADY_LOCKED
            message = f"Document {document_number} is already locked"
        else:
            reason = ProtectionReason.NOT_LOCKED
            message = f"Document {document_number} is not locked"
        super().__init__(registry_id, reason, message)


class DocumentAlreadyRegisteredError(ProtectionViolation):
    """Business document already owns a registry row; it may own at most one."""

    code: str = "DOCUMENT_ALREADY_REGISTERED"

    def __init__(self, registry_id: str, documentable_type: str, documentable_id: str):
        self.documentable_type = documentable_type
        self.documentable_id = documentable_id
        super().__init__(
            registry_id,
            ProtectionReason.ALREADY_LINKED,
            f"{documentable_type}:{documentable_id} is already registered "
            f"as registry {registry_id}",
        )


class VoidAuthorizationError(ProtectionViolation):
    """High-value financial document voided by an actor without an authorized role."""

    code: str = "VOID_NOT_AUTHORIZED"

    def __init__(self, registry_id: str, document_number: str, required_roles: list[str]):
        self.document_number = document_number
        self.required_roles = sorted(required_roles)
        super().__init__(
            registry_id,
            ProtectionReason.AUTHORIZATION,
            f"Voiding {document_number} requires one of the roles: "
            f"{', '.join(self.required_roles)}",
        )


# Audit errors


class AuditError(RegistrarError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteFailure(AuditError):
    """
    Audit row could not be written.

    Fatal to the enclosing transaction; never swallowed.
    """

    code: str = "AUDIT_WRITE_FAILURE"

    def __init__(self, registry_id: str | None, action: str, cause: str):
        self.registry_id = registry_id
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to write {action} audit for registry {registry_id}: {cause}")


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_id: str, expected_hash: str, actual_hash: str):
        self.audit_id = audit_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability errors


class ImmutabilityError(RegistrarError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Lookup / request errors


class RegistryNotFoundError(RegistrarError):
    """Registry row with the given ID does not exist."""

    code: str = "REGISTRY_NOT_FOUND"

    def __init__(self, registry_id: str):
        self.registry_id = registry_id
        super().__init__(f"Document registry not found: {registry_id}")


class InvalidRequestError(RegistrarError):
    """Request arguments are malformed (empty reason, count out of range, ...)."""

    code: str = "INVALID_REQUEST"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)
