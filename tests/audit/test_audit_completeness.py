"""
Every state-changing registry operation leaves exactly one audit row,
attributed to its actor and enriched with the request context.
"""

import pytest

from registrar_kernel.domain.values import AuditAction, RequestContext
from registrar_kernel.exceptions import LockStateError


@pytest.fixture
def po(control, standard_types, actor, make_document):
    return control.generate("PO", actor, site_code="HQ", document=make_document())


def _actions(control, registry_id):
    return [entry.action for entry in control.get_history(registry_id)]


class TestOneRowPerOperation:
    def test_generate_writes_create(self, control, po, actor):
        history = control.get_history(po.registry_id)

        assert len(history) == 1
        create = history[0]
        assert create.action is AuditAction.CREATE
        assert create.performed_by_id == actor.actor_id
        assert create.performed_by_name == actor.full_name
        assert create.new_values["full_document_number"] == po.full_document_number

    @pytest.mark.parametrize(
        "operation, expected",
        [
            ("status", AuditAction.STATUS_CHANGE),
            ("lock", AuditAction.LOCK),
            ("void", AuditAction.VOID),
        ],
    )
    def test_single_row_per_operation(self, control, po, actor, operation, expected):
        if operation == "status":
            control.update_status(po.registry_id, "submitted", actor)
        elif operation == "lock":
            control.lock(po.registry_id, actor, reason="period close")
        else:
            control.void(po.registry_id, "duplicate entry", actor)

        assert _actions(control, po.registry_id) == [AuditAction.CREATE, expected]

    def test_unlock_row(self, control, po, actor, other_actor):
        control.lock(po.registry_id, actor, reason="period close")
        control.unlock(po.registry_id, other_actor, reason="reopened")

        unlock = control.get_history(po.registry_id)[-1]

        assert unlock.action is AuditAction.UNLOCK
        assert unlock.performed_by_id == other_actor.actor_id
        assert unlock.old_values["is_locked"] is True
        assert unlock.old_values["lock_reason"] == "period close"
        assert unlock.new_values == {"is_locked": False}
        assert unlock.reason == "reopened"

    def test_void_row_values(self, control, po, actor):
        control.update_status(po.registry_id, "approved", actor)
        control.void(po.registry_id, "duplicate entry", actor)

        void = control.get_history(po.registry_id)[-1]

        assert void.action is AuditAction.VOID
        assert void.old_values == {"status": "approved", "is_voided": False}
        assert void.new_values["status"] == "voided"
        assert void.new_values["is_voided"] is True
        assert void.reason == "duplicate entry"

    def test_status_change_values(self, control, po, actor):
        control.update_status(po.registry_id, "submitted", actor, reason="ready for approval")

        change = control.get_history(po.registry_id)[-1]

        assert change.old_values == {"status": "draft"}
        assert change.new_values == {"status": "submitted"}
        assert change.reason == "ready for approval"

    def test_rejected_operation_writes_nothing(self, control, po, actor):
        control.lock(po.registry_id, actor)

        with pytest.raises(LockStateError):
            control.lock(po.registry_id, actor)

        assert _actions(control, po.registry_id) == [AuditAction.CREATE, AuditAction.LOCK]

    def test_full_lifecycle(self, control, po, actor):
        control.update_status(po.registry_id, "submitted", actor)
        control.lock(po.registry_id, actor)
        control.unlock(po.registry_id, actor)
        control.record_update(po.registry_id, {"qty": 1}, {"qty": 3}, actor)
        control.log_access(po.registry_id, actor)
        control.void(po.registry_id, "cancelled", actor)
        control.log_print(po.registry_id, actor)

        history = control.get_history(po.registry_id)

        assert [e.action for e in history] == [
            AuditAction.CREATE,
            AuditAction.STATUS_CHANGE,
            AuditAction.LOCK,
            AuditAction.UNLOCK,
            AuditAction.UPDATE,
            AuditAction.ACCESS,
            AuditAction.VOID,
            AuditAction.PRINT,
        ]
        assert [e.seq for e in history] == list(range(1, 9))
        assert all(e.performed_by_id == actor.actor_id for e in history)


class TestRequestEnrichment:
    def test_request_fields_copied(self, control, standard_types, actor):
        request = RequestContext(
            ip_address="192.0.2.10",
            user_agent="Mozilla/5.0",
            session_id="sess-42",
            request_id="req-7",
        )

        result = control.generate("PO", actor, site_code="HQ", request=request)
        control.lock(result.registry_id, actor, request=request)

        for entry in control.get_history(result.registry_id):
            assert entry.ip_address == "192.0.2.10"
            assert entry.user_agent == "Mozilla/5.0"
            assert entry.session_id == "sess-42"
            assert entry.request_id == "req-7"

    def test_missing_request_leaves_fields_empty(self, control, po):
        create = control.get_history(po.registry_id)[0]
        assert create.ip_address is None
        assert create.user_agent is None

    def test_audit_version_stamped(self, control, po):
        create = control.get_history(po.registry_id)[0]
        assert "audit_version" in create.metadata
