"""
Number issuance through the DocumentControlService facade.

Covers sequential allocation, counter prefix/suffix, period resets,
per-site scoping, modifiers and configuration errors.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from registrar_kernel.domain.values import AuditAction, DocumentKind, RegistryStatus, ResetCycle
from registrar_kernel.exceptions import (
    DocumentAlreadyRegisteredError,
    DocumentTypeInactiveError,
    DocumentTypeNotFoundError,
    InvalidModifierError,
    InvalidRequestError,
    PatternConfigurationError,
    SiteNotFoundError,
    SiteRequiredError,
)
from registrar_kernel.models.audit_trail import DocumentAuditTrail
from registrar_kernel.models.registry import DocumentRegistry
from registrar_kernel.services.sequence_store import DocumentSequenceService, period_key
from tests.conftest import TEST_SITES


class TestSequentialGeneration:
    """Numbers for one scope are consecutive and the counter tracks them."""

    def test_twenty_consecutive_numbers(self, control, register_type, actor, session):
        document_type = register_type("TEST")

        numbers = [control.generate("TEST", actor).full_document_number for _ in range(20)]

        assert numbers == [f"TEST-2024-{n:05d}" for n in range(1, 21)]
        counter = DocumentSequenceService(session).get_counter(document_type, None)
        assert counter.next_number == 21

    def test_result_fields(self, control, register_type, actor):
        register_type("TEST")

        result = control.generate("TEST", actor)

        assert result.sequence_number == 1
        assert result.year == 2024
        assert result.month is None
        assert result.site_code is None
        assert result.modifiers == ()
        assert result.document_number == result.full_document_number
        assert result.components["pattern"] == "{CODE}-{YYYY}-{#####}"
        assert result.components["period_key"] is None

    def test_unlinked_generate_is_placeholder(self, control, register_type, actor):
        register_type("TEST")

        result = control.generate("TEST", actor)
        info = control.get_registry(result.registry_id)

        assert info.documentable_type == DocumentKind.RESERVED.value
        assert info.documentable_id is None
        assert info.status == RegistryStatus.DRAFT

    def test_generate_for_document(self, control, register_type, actor, make_document):
        register_type("TEST")
        document = make_document(DocumentKind.INVOICE)

        result = control.generate("TEST", actor, document=document)
        info = control.find_for_document(document)

        assert info.id == result.registry_id
        assert info.documentable_type == "invoice"
        assert info.documentable_id == document.id

    def test_document_registered_once(self, control, register_type, actor, make_document):
        register_type("TEST")
        document = make_document()
        control.generate("TEST", actor, document=document)

        with pytest.raises(DocumentAlreadyRegisteredError):
            control.generate("TEST", actor, document=document)

    def test_increment_and_starting_number(self, control, register_type, actor):
        register_type("INC", "{CODE}-{######}", number_length=6, starting_number=900001, increment_by=5)

        first = control.generate("INC", actor)
        second = control.generate("INC", actor)

        assert first.full_document_number == "INC-900001"
        assert second.full_document_number == "INC-900006"

    def test_create_audit_row(self, control, register_type, actor, session):
        register_type("TEST")

        result = control.generate("TEST", actor)

        rows = session.execute(
            select(DocumentAuditTrail).where(DocumentAuditTrail.registry_id == result.registry_id)
        ).scalars().all()
        assert [r.action for r in rows] == [AuditAction.CREATE.value]
        assert rows[0].performed_by_id == actor.actor_id
        assert rows[0].new_values["full_document_number"] == result.full_document_number

    def test_initial_status_and_metadata(self, control, register_type, actor):
        register_type("TEST")

        result = control.generate(
            "TEST", actor, initial_status="submitted", metadata={"source": "import"}
        )
        info = control.get_registry(result.registry_id)

        assert info.status == "submitted"
        assert info.metadata == {"source": "import"}

    @pytest.mark.parametrize("status", [RegistryStatus.VOIDED, "voided", "", "   "])
    def test_initial_status_cannot_bypass_void(
        self, control, register_type, actor, session, status
    ):
        document_type = register_type("TEST")

        with pytest.raises(InvalidRequestError) as exc_info:
            control.generate("TEST", actor, initial_status=status)

        assert exc_info.value.field == "initial_status"
        assert session.scalar(select(func.count()).select_from(DocumentRegistry)) == 0
        counter = DocumentSequenceService(session).get_counter(document_type, None)
        assert counter is None or counter.next_number == 1


class TestCounterConfiguration:
    def test_prefix_and_suffix(self, control, document_types, register_type, actor, session):
        register_type("TEST")
        document_types.configure_counter(
            "TEST", actor, pattern="{CODE}-{#####}", prefix="PRE-", suffix="-SUF"
        )
        session.commit()

        result = control.generate("TEST", actor)

        assert result.full_document_number == "PRE-TEST-00001-SUF"
        assert result.components["prefix"] == "PRE-"
        assert result.components["suffix"] == "-SUF"

    def test_configured_pattern_is_validated(self, document_types, register_type, actor):
        register_type("TEST")
        with pytest.raises(PatternConfigurationError):
            document_types.configure_counter("TEST", actor, pattern="{CODE}-{###}")

    def test_next_number_override(self, control, document_types, register_type, actor, session):
        register_type("TEST")
        document_types.configure_counter("TEST", actor, next_number=500)
        session.commit()

        assert control.generate("TEST", actor).sequence_number == 500


class TestPeriodReset:
    def test_yearly_reset_on_new_year(
        self, control, document_types, register_type, actor, session, captured_logs
    ):
        register_type("YR", "{CODE}-{YYYY}-{#####}", reset_cycle="yearly")
        document_types.configure_counter("YR", actor, next_number=10, current_year=2023)
        session.commit()

        result = control.generate("YR", actor)

        assert result.sequence_number == 1
        assert result.full_document_number == "YR-2024-00001"
        assert result.components["period_key"] == "2024"
        assert any(r["message"] == "sequence_period_reset" for r in captured_logs())

    def test_same_year_continues(self, control, document_types, register_type, actor, session):
        register_type("YR", "{CODE}-{YYYY}-{#####}", reset_cycle="yearly")
        document_types.configure_counter("YR", actor, next_number=10, current_year=2024)
        session.commit()

        assert control.generate("YR", actor).sequence_number == 10

    def test_clock_behind_stored_period_keeps_period(
        self, control, document_types, register_type, actor, session
    ):
        register_type("YR", "{CODE}-{YYYY}-{#####}", reset_cycle="yearly")
        document_types.configure_counter("YR", actor, next_number=7, current_year=2025)
        session.commit()

        result = control.generate("YR", actor)

        assert result.sequence_number == 7
        assert result.year == 2025

    def test_monthly_reset(
        self, control, register_type, actor, deterministic_clock
    ):
        register_type("MON", "{CODE}-{YYYY}-{MM}-{####}", reset_cycle="monthly", number_length=4)

        june = [control.generate("MON", actor) for _ in range(3)]
        deterministic_clock.set_time(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))
        july = control.generate("MON", actor)

        assert [r.full_document_number for r in june] == [
            "MON-2024-06-0001",
            "MON-2024-06-0002",
            "MON-2024-06-0003",
        ]
        assert july.full_document_number == "MON-2024-07-0001"
        assert july.month == 7

    def test_never_reset_ignores_year_change(self, control, register_type, actor, deterministic_clock):
        register_type("TEST")
        control.generate("TEST", actor)
        deterministic_clock.set_time(datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc))

        result = control.generate("TEST", actor)

        assert result.full_document_number == "TEST-2025-00002"

    @pytest.mark.parametrize(
        "cycle, year, month, expected",
        [
            (ResetCycle.NEVER, 2024, 6, None),
            (ResetCycle.YEARLY, 2024, 6, "2024"),
            (ResetCycle.MONTHLY, 2024, 6, "202406"),
            (ResetCycle.YEARLY, None, None, None),
        ],
    )
    def test_period_key(self, cycle, year, month, expected):
        assert period_key(cycle, year, month) == expected


class TestSites:
    def test_per_site_counters(self, control, standard_types, actor):
        hq = [control.generate("PR", actor, site_code="HQ") for _ in range(2)]
        kl = control.generate("PR", actor, site_code="KL")

        assert [r.full_document_number for r in hq] == ["HQ-PR-2024-00001", "HQ-PR-2024-00002"]
        assert kl.full_document_number == "KL-PR-2024-00001"
        assert kl.site_code == "KL"

    def test_registry_keeps_site_id(self, control, standard_types, actor):
        result = control.generate("PR", actor, site_code="HQ")
        assert control.get_registry(result.registry_id).site_id == TEST_SITES["HQ"]

    def test_site_required(self, control, standard_types, actor):
        with pytest.raises(SiteRequiredError):
            control.generate("PR", actor)

    def test_unknown_site(self, control, standard_types, actor):
        with pytest.raises(SiteNotFoundError):
            control.generate("PR", actor, site_code="XX")

    def test_site_on_global_type_shares_counter(self, control, register_type, actor):
        register_type("TEST")

        first = control.generate("TEST", actor, site_code="HQ")
        second = control.generate("TEST", actor, site_code="KL")

        assert (first.sequence_number, second.sequence_number) == (1, 2)
        assert first.site_code == "HQ"

    def test_monthly_site_type(self, control, standard_types, actor):
        result = control.generate("SA", actor, site_code="HQ")
        assert result.full_document_number == "HQ-SA-2024-06-00001"
        assert result.month == 6

    def test_siteless_catalog_type(self, control, standard_types, actor):
        result = control.generate("INV", actor)
        assert result.full_document_number == "INV-2024-00900001"


class TestModifiers:
    def test_modifier_suffix(self, control, standard_types, actor, session):
        result = control.generate("PO", actor, site_code="HQ", modifiers=["SBW"])

        assert result.full_document_number == "HQ-PO-2024-00001(SBW)"
        assert result.document_number == "HQ-PO-2024-00001"
        assert result.modifiers == ("SBW",)
        registry = session.get(DocumentRegistry, result.registry_id)
        assert registry.modifier == "SBW"

    def test_multiple_modifiers(self, control, standard_types, actor):
        result = control.generate("SA", actor, site_code="KL", modifiers=["A", "PC"])
        assert result.full_document_number == "KL-SA-2024-06-00001(A)(PC)"

    def test_modified_and_plain_numbers_share_the_counter(self, control, standard_types, actor):
        plain = control.generate("PO", actor, site_code="HQ")
        rush = control.generate("PO", actor, site_code="HQ", modifiers="RUSH")
        assert (plain.sequence_number, rush.sequence_number) == (1, 2)

    def test_unknown_modifier(self, control, standard_types, actor, session):
        with pytest.raises(InvalidModifierError):
            control.generate("PO", actor, site_code="HQ", modifiers=["EXPRESS"])
        assert session.execute(select(func.count()).select_from(DocumentRegistry)).scalar() == 0

    def test_type_without_modifiers(self, control, standard_types, actor):
        with pytest.raises(InvalidModifierError):
            control.generate("PR", actor, site_code="HQ", modifiers=["SBW"])


class TestTypeErrors:
    def test_unknown_type(self, control, actor):
        with pytest.raises(DocumentTypeNotFoundError):
            control.generate("NOPE", actor)

    def test_inactive_type(self, control, document_types, register_type, actor, session):
        register_type("OLD")
        document_types.deactivate("OLD", actor)
        session.commit()

        with pytest.raises(DocumentTypeInactiveError):
            control.generate("OLD", actor)

    def test_rejected_generate_consumes_nothing(self, control, register_type, actor, session):
        document_type = register_type("TEST")
        control.generate("TEST", actor)
        with pytest.raises(InvalidModifierError):
            control.generate("TEST", actor, modifiers=["X"])

        counter = DocumentSequenceService(session).get_counter(document_type, None)
        assert counter.next_number == 2

    def test_rejection_is_logged(self, control, actor, captured_logs):
        with pytest.raises(DocumentTypeNotFoundError):
            control.generate("NOPE", actor)
        records = [r for r in captured_logs() if r["message"] == "registrar_operation_rejected"]
        assert records
        assert records[0]["level"] == "WARNING"
        assert records[0]["operation"] == "generate"


class TestRegisterValidation:
    def test_bad_starting_number(self, register_type):
        with pytest.raises(InvalidRequestError):
            register_type("BAD", starting_number=0)

    def test_bad_increment(self, register_type):
        with pytest.raises(InvalidRequestError):
            register_type("BAD", increment_by=0)

    def test_pattern_must_agree_with_cycle(self, register_type):
        with pytest.raises(PatternConfigurationError):
            register_type("BAD", "{CODE}-{#####}", reset_cycle="yearly")
