"""
Read-side numbering helpers: preview, number validation and the
sequence integrity walk.
"""

from datetime import datetime, timezone

import pytest

from registrar_kernel.exceptions import DocumentTypeNotFoundError, SiteRequiredError


class TestPreview:
    def test_preview_does_not_consume(self, control, register_type, actor):
        register_type("TEST")

        assert control.preview("TEST") == "TEST-2024-00001"
        assert control.preview("TEST") == "TEST-2024-00001"
        assert control.generate("TEST", actor).full_document_number == "TEST-2024-00001"
        assert control.preview("TEST") == "TEST-2024-00002"

    def test_preview_with_site_and_modifiers(self, control, standard_types):
        assert control.preview("PO", site_code="KL", modifiers=["RUSH"]) == "KL-PO-2024-00001(RUSH)"

    def test_preview_anticipates_period_reset(
        self, control, document_types, register_type, actor, session
    ):
        register_type("YR", "{CODE}-{YYYY}-{#####}", reset_cycle="yearly")
        document_types.configure_counter("YR", actor, next_number=42, current_year=2023)
        session.commit()

        assert control.preview("YR") == "YR-2024-00001"

    def test_preview_requires_site(self, control, standard_types):
        with pytest.raises(SiteRequiredError):
            control.preview("PR")


class TestValidateDocumentNumber:
    def test_valid_number(self, control, register_type, actor):
        register_type("TEST")
        result = control.generate("TEST", actor)

        validation = control.validate_document_number(result.full_document_number, "TEST")

        assert validation.valid
        assert validation.reason == "valid"
        assert validation.registry_id == result.registry_id
        assert validation.document_type_code == "TEST"

    def test_unknown_number(self, control):
        validation = control.validate_document_number("NOPE-2024-00001")
        assert not validation.valid
        assert validation.reason == "Document number not found in registry"
        assert validation.registry_id is None

    def test_wrong_type(self, control, register_type, actor):
        register_type("TEST")
        result = control.generate("TEST", actor)

        validation = control.validate_document_number(result.full_document_number, "OTHER")

        assert not validation.valid
        assert validation.reason == "Document number belongs to a different document type"

    def test_voided_number(self, control, register_type, actor):
        register_type("TEST")
        result = control.generate("TEST", actor)
        control.void(result.registry_id, "duplicate entry", actor)

        validation = control.validate_document_number(result.full_document_number)

        assert not validation.valid
        assert validation.reason == "Document number has been voided"
        assert validation.status == "voided"


class TestSequenceIntegrity:
    def test_clean_sequence(self, control, register_type, actor):
        register_type("TEST")
        for _ in range(4):
            control.generate("TEST", actor)

        report = control.check_sequence_integrity("TEST")

        assert report.valid
        assert report.total_documents == 4
        assert report.gaps == ()
        assert report.next_expected == 5

    def test_gap_detected(self, control, document_types, register_type, actor, session):
        register_type("TEST")
        control.generate("TEST", actor)
        control.generate("TEST", actor)
        document_types.configure_counter("TEST", actor, next_number=6)
        session.commit()
        control.generate("TEST", actor)

        report = control.check_sequence_integrity("TEST")

        assert not report.valid
        assert len(report.gaps) == 1
        gap = report.gaps[0]
        assert gap.expected_sequence == 3
        assert gap.actual_sequence == 6
        assert gap.gap == 3
        assert gap.full_document_number == "TEST-2024-00006"
        assert report.next_expected == 7

    def test_voids_are_not_gaps(self, control, register_type, actor):
        register_type("TEST")
        results = [control.generate("TEST", actor) for _ in range(3)]
        control.void(results[1].registry_id, "duplicate entry", actor)

        report = control.check_sequence_integrity("TEST")

        assert report.valid
        assert report.voided_documents == 1

    def test_each_year_restarts_the_walk(
        self, control, register_type, actor, deterministic_clock
    ):
        register_type("YR", "{CODE}-{YYYY}-{#####}", reset_cycle="yearly")
        control.generate("YR", actor)
        control.generate("YR", actor)
        deterministic_clock.set_time(datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc))
        control.generate("YR", actor)

        assert control.check_sequence_integrity("YR").valid
        report_2024 = control.check_sequence_integrity("YR", year=2024)
        assert report_2024.total_documents == 2

    def test_per_site_groups(self, control, standard_types, actor):
        control.generate("PR", actor, site_code="HQ")
        control.generate("PR", actor, site_code="KL")
        control.generate("PR", actor, site_code="HQ")

        assert control.check_sequence_integrity("PR").valid
        hq = control.check_sequence_integrity("PR", site_code="HQ")
        assert hq.total_documents == 2
        assert hq.next_expected == 3

    def test_empty_type(self, control, register_type):
        register_type("TEST")
        report = control.check_sequence_integrity("TEST")
        assert report.total_documents == 0
        assert report.next_expected is None
        assert report.valid

    def test_unknown_type(self, control):
        with pytest.raises(DocumentTypeNotFoundError):
            control.check_sequence_integrity("NOPE")
