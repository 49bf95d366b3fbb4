"""
Per-registry audit hash chain: linkage, bookkeeping on the registry row,
and detection of rows altered after the fact.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from registrar_kernel.exceptions import AuditChainBrokenError
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.services.audit_service import AuditTrailService


@pytest.fixture
def po(control, standard_types, actor, make_document):
    result = control.generate("PO", actor, site_code="HQ", document=make_document())
    control.update_status(result.registry_id, "submitted", actor)
    control.log_access(result.registry_id, actor)
    control.lock(result.registry_id, actor, reason="review")
    return result


def _rows(session, registry_id):
    return session.execute(
        select(DocumentAuditTrail)
        .where(DocumentAuditTrail.registry_id == registry_id)
        .order_by(DocumentAuditTrail.seq)
    ).scalars().all()


class TestChainLinkage:
    def test_valid_chain(self, control, po):
        assert control.validate_chain(po.registry_id) is True

    def test_prev_hash_links_predecessor(self, control, po):
        history = control.get_history(po.registry_id)

        assert history[0].prev_hash is None
        for previous, current in zip(history, history[1:]):
            assert current.prev_hash == previous.hash
            assert current.seq == previous.seq + 1

    def test_registry_tracks_chain_head(self, control, po, session):
        history = control.get_history(po.registry_id)
        registry = session.get(DocumentRegistry, po.registry_id)

        assert registry.audit_count == len(history) == 4
        assert registry.last_audit_hash == history[-1].hash

    def test_voided_document_keeps_chaining(self, control, po, actor):
        control.void(po.registry_id, "duplicate entry", actor)
        control.log_access(po.registry_id, actor)
        control.log_print(po.registry_id, actor)

        assert control.validate_chain(po.registry_id)
        assert [e.seq for e in control.get_history(po.registry_id)] == [1, 2, 3, 4, 5, 6, 7]

    def test_chains_are_independent(self, control, po, actor):
        other = control.generate("PO", actor, site_code="KL")

        assert control.get_history(other.registry_id)[0].seq == 1
        assert control.get_history(other.registry_id)[0].prev_hash is None
        assert control.validate_chain(other.registry_id)

    def test_empty_chain_is_valid(self, session):
        assert AuditTrailService(session).validate_chain(uuid4()) is True


class TestTamperDetection:
    """
    Alter a loaded row in memory and validate without flushing, so the
    validator sees the tampered values while the immutability listeners
    never get a chance to block the write.
    """

    def test_altered_reason_detected(self, session, po, captured_logs):
        rows = _rows(session, po.registry_id)
        target = rows[1]

        with session.no_autoflush:
            target.reason = "rewritten after the fact"
            with pytest.raises(AuditChainBrokenError) as exc_info:
                AuditTrailService(session).validate_chain(po.registry_id)

        assert exc_info.value.audit_id == str(target.id)
        assert any(
            r["message"] == "audit_chain_broken" and r["level"] == "CRITICAL"
            for r in captured_logs()
        )
        session.expire(target)

    def test_altered_values_detected(self, session, po):
        rows = _rows(session, po.registry_id)
        target = rows[0]

        with session.no_autoflush:
            target.new_values = {**target.new_values, "status": "approved"}
            with pytest.raises(AuditChainBrokenError):
                AuditTrailService(session).validate_chain(po.registry_id)

        session.expire(target)

    def test_broken_link_detected(self, session, po):
        rows = _rows(session, po.registry_id)
        target = rows[2]

        with session.no_autoflush:
            target.prev_hash = "0" * 64
            with pytest.raises(AuditChainBrokenError) as exc_info:
                AuditTrailService(session).validate_chain(po.registry_id)

        assert exc_info.value.actual_hash == "0" * 64
        session.expire(target)

    def test_sequence_hole_detected(self, session, po):
        rows = _rows(session, po.registry_id)
        target = rows[1]

        with session.no_autoflush:
            target.seq = 7
            with pytest.raises(AuditChainBrokenError):
                AuditTrailService(session).validate_chain(po.registry_id)

        session.expire(target)
