"""
Protectable -- composable protection capability for business documents.

Responsibility:
    Lets any business document (purchase order, stock transfer, budget
    transfer, ...) expose ``can_edit``/``lock``/``unlock``/``void`` by
    holding a RegistryLink and delegating to a registrar gateway, instead of
    inheriting lifecycle hooks.

Architecture position:
    Kernel > Domain -- no I/O of its own.  The gateway is any object with
    the DocumentControlService method signatures (structural typing), so
    business modules depend on this protocol, not on the services package.

Invariants enforced:
    - A ControlledDocument is bound to at most one registry row; binding a
      second one is refused.
    - Protection decisions are never made here; they are delegated.

Failure modes:
    - RegistryNotLinkedError (a ValueError) when a protection call is made
      before a number was issued or linked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from registrar_kernel.domain.dtos import AuditEntry, GenerationResult, RegistryInfo
from registrar_kernel.domain.values import Actor, DocumentRef, RequestContext


class RegistryNotLinkedError(ValueError):
    """The document has no registry row yet."""


@runtime_checkable
class Protectable(Protocol):
    """What a controlled business document offers its callers."""

    def can_edit(self) -> bool:
        ...

    def lock(self, actor: Actor, reason: str | None = None) -> RegistryInfo:
        ...

    def unlock(self, actor: Actor, reason: str | None = None) -> RegistryInfo:
        ...

    def void(self, actor: Actor, reason: str) -> RegistryInfo:
        ...


class RegistrarGateway(Protocol):
    """The subset of DocumentControlService a ControlledDocument needs."""

    def generate(self, type_code: str, actor: Actor, **kwargs) -> GenerationResult:
        ...

    def link(self, registry_id: UUID, document: DocumentRef, actor: Actor, **kwargs) -> RegistryInfo:
        ...

    def can_edit(self, registry_id: UUID) -> bool:
        ...

    def lock(self, registry_id: UUID, actor: Actor, **kwargs) -> RegistryInfo:
        ...

    def unlock(self, registry_id: UUID, actor: Actor, **kwargs) -> RegistryInfo:
        ...

    def void(self, registry_id: UUID, reason: str, actor: Actor, **kwargs) -> RegistryInfo:
        ...

    def update_status(
        self, registry_id: UUID, new_status: str, actor: Actor, **kwargs
    ) -> RegistryInfo:
        ...

    def get_history(self, registry_id: UUID, include_access: bool = True) -> list[AuditEntry]:
        ...


@dataclass(frozen=True, slots=True)
class RegistryLink:
    """The value a business document stores to reach its registry row."""

    registry_id: UUID
    full_document_number: str
    document_type_code: str

    @classmethod
    def from_result(cls, result: GenerationResult) -> RegistryLink:
        return cls(
            registry_id=result.registry_id,
            full_document_number=result.full_document_number,
            document_type_code=result.document_type_code,
        )


class ControlledDocument:
    """
    Protection capability embedded in a business document.

    Contract:
        Construct with the document's typed reference and document type
        code, then either ``issue_number`` (generate + link in one step) or
        ``attach`` a reserved number.  Every protection call delegates to
        the gateway with this document's registry id.

    Guarantees:
        - Satisfies the Protectable protocol.

    Non-goals:
        - Does NOT cache protection state; every ``can_edit`` asks the
          gateway.

    Usage:
        class PurchaseOrder:
            def __init__(self, po_id, control):
                self.controls = ControlledDocument(
                    DocumentRef.of(DocumentKind.PURCHASE_ORDER, po_id), "PO", control
                )
    """

    def __init__(
        self,
        document: DocumentRef,
        type_code: str,
        gateway: RegistrarGateway,
        link: RegistryLink | None = None,
    ):
        self.document = document
        self.type_code = type_code
        self._gateway = gateway
        self._link = link

    @property
    def link(self) -> RegistryLink | None:
        return self._link

    @property
    def document_number(self) -> str | None:
        return self._link.full_document_number if self._link else None

    def _registry_id(self) -> UUID:
        if self._link is None:
            raise RegistryNotLinkedError(
                f"{self.document.kind.value}:{self.document.id} has no document number"
            )
        return self._link.registry_id

    def _bind(self, link: RegistryLink) -> RegistryLink:
        if self._link is not None and self._link.registry_id != link.registry_id:
            raise ValueError(
                f"{self.document.kind.value}:{self.document.id} already holds "
                f"{self._link.full_document_number}"
            )
        self._link = link
        return link

    def issue_number(
        self,
        actor: Actor,
        *,
        site_code: str | None = None,
        modifiers=None,
        request: RequestContext | None = None,
    ) -> RegistryLink:
        if self._link is not None:
            return self._link
        result = self._gateway.generate(
            self.type_code,
            actor,
            site_code=site_code,
            modifiers=modifiers,
            document=self.document,
            request=request,
        )
        return self._bind(RegistryLink.from_result(result))

    def attach(
        self,
        registry_id: UUID,
        actor: Actor,
        *,
        request: RequestContext | None = None,
    ) -> RegistryLink:
        """Link a previously reserved number to this document."""
        info = self._gateway.link(registry_id, self.document, actor, request=request)
        return self._bind(
            RegistryLink(
                registry_id=info.id,
                full_document_number=info.full_document_number,
                document_type_code=info.document_type_code,
            )
        )

    def can_edit(self) -> bool:
        if self._link is None:
            return True
        return self._gateway.can_edit(self._link.registry_id)

    def lock(self, actor: Actor, reason: str | None = None) -> RegistryInfo:
        return self._gateway.lock(self._registry_id(), actor, reason=reason)

    def unlock(self, actor: Actor, reason: str | None = None) -> RegistryInfo:
        return self._gateway.unlock(self._registry_id(), actor, reason=reason)

    def void(self, actor: Actor, reason: str) -> RegistryInfo:
        return self._gateway.void(self._registry_id(), reason, actor)

    def change_status(
        self, actor: Actor, new_status: str, reason: str | None = None
    ) -> RegistryInfo:
        return self._gateway.update_status(self._registry_id(), new_status, actor, reason=reason)

    def history(self) -> list[AuditEntry]:
        return self._gateway.get_history(self._registry_id())
