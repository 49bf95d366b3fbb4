"""
Reserve-then-link and bulk issuance.

A reserved number has no owning document until it is linked, exactly once.
Bulk issuance reserves a batch of numbers in one transaction.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from registrar_kernel.domain.values import AuditAction, DocumentKind, RegistrarPolicy, RegistryStatus
from registrar_kernel.exceptions import (
    DocumentAlreadyRegisteredError,
    DocumentLockedError,
    DocumentVoidedError,
    InvalidRequestError,
    RegistryAlreadyLinkedError,
    RegistryNotFoundError,
    SiteNotFoundError,
)
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.services.document_control_service import DocumentControlService


@pytest.fixture
def reserved(control, register_type, actor):
    register_type("TEST")
    return control.reserve("TEST", actor)


class TestReserve:
    def test_reserved_row_has_no_owner(self, control, reserved):
        info = control.get_registry(reserved.registry_id)

        assert info.status == RegistryStatus.RESERVED
        assert info.documentable_type == DocumentKind.RESERVED.value
        assert info.is_reserved

    def test_reserve_consumes_a_number(self, control, reserved, actor):
        following = control.generate("TEST", actor)
        assert following.sequence_number == reserved.sequence_number + 1


class TestLink:
    def test_link_moves_reserved_to_draft(self, control, reserved, actor, make_document):
        document = make_document(DocumentKind.PURCHASE_ORDER)

        info = control.link(reserved.registry_id, document, actor)

        assert info.documentable_type == "purchase_order"
        assert info.documentable_id == document.id
        assert info.status == RegistryStatus.DRAFT
        assert info.previous_status == RegistryStatus.RESERVED
        assert info.full_document_number == reserved.full_document_number

    def test_link_with_explicit_status(self, control, reserved, actor, make_document):
        info = control.link(reserved.registry_id, make_document(), actor, status="submitted")
        assert info.status == "submitted"

    def test_link_cannot_set_voided(self, control, reserved, actor, make_document):
        with pytest.raises(InvalidRequestError):
            control.link(reserved.registry_id, make_document(), actor, status="voided")

    def test_link_exactly_once(self, control, reserved, actor, make_document):
        control.link(reserved.registry_id, make_document(), actor)

        with pytest.raises(RegistryAlreadyLinkedError):
            control.link(reserved.registry_id, make_document(), actor)

    def test_generated_for_document_is_already_linked(
        self, control, register_type, actor, make_document
    ):
        register_type("TEST")
        result = control.generate("TEST", actor, document=make_document())

        with pytest.raises(RegistryAlreadyLinkedError):
            control.link(result.registry_id, make_document(), actor)

    def test_document_cannot_own_two_rows(self, control, reserved, actor, make_document):
        document = make_document()
        control.generate("TEST", actor, document=document)

        with pytest.raises(DocumentAlreadyRegisteredError):
            control.link(reserved.registry_id, document, actor)

    def test_voided_reservation_cannot_be_linked(self, control, reserved, actor, make_document):
        control.void(reserved.registry_id, "not needed", actor)

        with pytest.raises(DocumentVoidedError):
            control.link(reserved.registry_id, make_document(), actor)

    def test_locked_reservation_cannot_be_linked(self, control, reserved, actor, make_document):
        control.lock(reserved.registry_id, actor, reason="hold")

        with pytest.raises(DocumentLockedError):
            control.link(reserved.registry_id, make_document(), actor)

    def test_unknown_registry(self, control, actor, make_document):
        with pytest.raises(RegistryNotFoundError):
            control.link(uuid4(), make_document(), actor)

    def test_link_audit_row(self, control, reserved, actor, make_document, session):
        document = make_document()
        control.link(reserved.registry_id, document, actor)

        row = session.execute(
            select(DocumentAuditTrail).where(
                DocumentAuditTrail.registry_id == reserved.registry_id,
                DocumentAuditTrail.action == AuditAction.LINK.value,
            )
        ).scalar_one()
        assert row.old_values["documentable_id"] is None
        assert row.new_values["documentable_id"] == document.id
        assert row.performed_by_id == actor.actor_id


class TestBulkGenerate:
    def test_batch_is_reserved_and_tagged(self, control, register_type, actor):
        register_type("TEST")

        results = control.bulk_generate("TEST", 5, actor)

        assert [r.sequence_number for r in results] == [1, 2, 3, 4, 5]
        infos = [control.get_registry(r.registry_id) for r in results]
        assert {i.status for i in infos} == {RegistryStatus.RESERVED}
        batch_ids = {i.metadata["batch_id"] for i in infos}
        assert len(batch_ids) == 1
        assert [i.metadata["batch_index"] for i in infos] == [1, 2, 3, 4, 5]
        assert all(i.metadata["bulk_generated"] is True for i in infos)

    def test_bulk_rows_can_be_linked(self, control, register_type, actor, make_document):
        register_type("TEST")
        results = control.bulk_generate("TEST", 2, actor)

        info = control.link(results[1].registry_id, make_document(), actor)

        assert info.status == RegistryStatus.DRAFT

    def test_per_site_batch(self, control, standard_types, actor):
        results = control.bulk_generate("PR", 3, actor, site_code="KL")
        assert [r.full_document_number for r in results] == [
            "KL-PR-2024-00001",
            "KL-PR-2024-00002",
            "KL-PR-2024-00003",
        ]

    @pytest.mark.parametrize("count", [0, -1, 1001])
    def test_count_out_of_range(self, control, register_type, actor, count):
        register_type("TEST")
        with pytest.raises(InvalidRequestError):
            control.bulk_generate("TEST", count, actor)

    def test_limit_comes_from_policy(
        self, session, register_type, actor, deterministic_clock, site_lookup
    ):
        register_type("TEST")
        control = DocumentControlService(
            session,
            clock=deterministic_clock,
            site_lookup=site_lookup,
            policy=RegistrarPolicy(bulk_generation_limit=3),
        )

        assert len(control.bulk_generate("TEST", 3, actor)) == 3
        with pytest.raises(InvalidRequestError):
            control.bulk_generate("TEST", 4, actor)

    def test_unknown_site_issues_nothing(self, control, standard_types, actor):
        with pytest.raises(SiteNotFoundError):
            control.bulk_generate("PR", 3, actor, site_code="XX")
        assert control.preview("PR", site_code="HQ") == "HQ-PR-2024-00001"

    def test_completion_is_logged(self, control, register_type, actor, captured_logs):
        register_type("TEST")
        control.bulk_generate("TEST", 2, actor)

        records = [r for r in captured_logs() if r["message"] == "bulk_generation_completed"]
        assert records[0]["count"] == 2
        assert records[0]["document_type"] == "TEST"
