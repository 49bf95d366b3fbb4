"""
Amount-based protection applied through the facade.
"""

from decimal import Decimal

import pytest

from registrar_kernel.domain.financial import AMOUNT_CHANGE_FLAG, AUTO_LOCK_REASON
from registrar_kernel.domain.values import AuditAction, DocumentKind
from registrar_kernel.exceptions import StatusProtectedError, VoidAuthorizationError


@pytest.fixture
def po(control, standard_types, actor, make_document):
    return control.generate(
        "PO", actor, site_code="HQ", document=make_document(DocumentKind.PURCHASE_ORDER)
    )


class TestFinancialVoid:
    def test_high_value_void_requires_role(self, control, po, actor):
        with pytest.raises(VoidAuthorizationError) as exc_info:
            control.void_financial_document(
                po.registry_id, "vendor cancelled", actor, amount=Decimal("75000")
            )
        assert "finance_manager" in exc_info.value.required_roles
        assert control.get_registry(po.registry_id).is_voided is False

    def test_authorized_role_can_void(self, control, po, finance_actor):
        info = control.void_financial_document(
            po.registry_id, "vendor cancelled", finance_actor, amount=Decimal("75000")
        )
        assert info.is_voided
        assert info.voided_by_id == finance_actor.actor_id

    def test_low_value_void_by_anyone(self, control, po, actor):
        info = control.void_financial_document(
            po.registry_id, "typo", actor, amount=Decimal("1200")
        )
        assert info.void_reason == "typo"

    def test_financial_impact_prefix(self, control, po, actor, finance_actor):
        control.update_status(po.registry_id, "approved", actor)

        info = control.void_financial_document(
            po.registry_id, "budget withdrawn", finance_actor, amount=Decimal("10")
        )

        assert info.void_reason == "FINANCIAL IMPACT: budget withdrawn"
        assert info.previous_status == "approved"

    def test_approval_can_be_waived(self, control, po, actor):
        info = control.void_financial_document(
            po.registry_id,
            "system migration",
            actor,
            amount=Decimal("900000"),
            approval_required=False,
        )
        assert info.is_voided


class TestAmountChange:
    def test_draft_change_recorded(self, control, po, actor):
        change = control.apply_amount_change(po.registry_id, Decimal("1000"), Decimal("1050"), actor)

        assert change.allowed
        assert not change.significant
        update = control.get_history(po.registry_id)[-1]
        assert update.action is AuditAction.UPDATE
        assert update.old_values == {"amount": "1000"}
        assert update.new_values == {"amount": "1050", "change_percentage": "5.00"}
        assert update.reason is None

    def test_significant_change_flagged(self, control, po, actor, captured_logs):
        change = control.apply_amount_change(po.registry_id, Decimal("1000"), Decimal("1500"), actor)

        assert change.significant
        update = control.get_history(po.registry_id)[-1]
        assert update.new_values[AMOUNT_CHANGE_FLAG] == "significant"
        assert update.reason == "Significant amount change: 50.00% variation"
        assert any(r["message"] == "significant_amount_change" for r in captured_logs())
        assert control.financial_compliance_score(po.registry_id) == 95

    def test_unchanged_amount_writes_nothing(self, control, po, actor):
        control.apply_amount_change(po.registry_id, Decimal("10"), Decimal("10"), actor)
        assert len(control.get_history(po.registry_id)) == 1

    def test_amount_locked_status(self, control, po, actor):
        control.update_status(po.registry_id, "approved", actor)

        with pytest.raises(StatusProtectedError):
            control.apply_amount_change(po.registry_id, Decimal("10"), Decimal("11"), actor)


class TestAutoLock:
    def test_high_value_approved_document_is_locked(self, control, po, actor):
        control.update_status(po.registry_id, "approved", actor)

        info = control.apply_amount_protection(po.registry_id, Decimal("150000"), actor)

        assert info.is_locked
        assert info.lock_reason == AUTO_LOCK_REASON

    def test_below_limit_untouched(self, control, po, actor):
        control.update_status(po.registry_id, "approved", actor)

        info = control.apply_amount_protection(po.registry_id, Decimal("60000"), actor)

        assert not info.is_locked
        assert [e.action for e in control.get_history(po.registry_id)] == [
            AuditAction.CREATE,
            AuditAction.STATUS_CHANGE,
        ]

    def test_already_locked_is_idempotent(self, control, po, actor):
        control.update_status(po.registry_id, "approved", actor)
        control.apply_amount_protection(po.registry_id, Decimal("150000"), actor)

        info = control.apply_amount_protection(po.registry_id, Decimal("150000"), actor)

        assert info.is_locked


class TestComplianceScore:
    def test_clean_document(self, control, po):
        assert control.financial_compliance_score(po.registry_id) == 100

    def test_after_hours_deduction(self, control, po, actor, deterministic_clock):
        deterministic_clock.set_time(deterministic_clock.now_utc().replace(hour=22))
        control.log_access(po.registry_id, actor)

        assert control.financial_compliance_score(po.registry_id) == 98
