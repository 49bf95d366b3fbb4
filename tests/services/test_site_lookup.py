"""
Site resolution against the ``sites`` table.
"""

import pytest

from registrar_kernel.exceptions import SiteNotFoundError, SiteRequiredError
from registrar_kernel.models.site import Site
from registrar_kernel.services.document_control_service import DocumentControlService
from registrar_kernel.services.site_lookup import SqlSiteLookup, resolve_site_for


@pytest.fixture
def sites(session):
    johor = Site(code="JB", name="Johor Bahru")
    closed = Site(code="PG", name="Penang", is_active=False)
    session.add_all([johor, closed])
    session.flush()
    return {"JB": johor, "PG": closed}


class TestSqlSiteLookup:
    def test_resolves_active_site(self, session, sites):
        ref = SqlSiteLookup(session).resolve("JB")
        assert ref.site_id == sites["JB"].id
        assert ref.code == "JB"

    def test_inactive_site_not_found(self, session, sites):
        with pytest.raises(SiteNotFoundError):
            SqlSiteLookup(session).resolve("PG")

    def test_unknown_site(self, session, sites):
        with pytest.raises(SiteNotFoundError):
            SqlSiteLookup(session).resolve("XX")


class TestResolveSiteFor:
    def test_blank_code_on_per_site_type(self, session, standard_types):
        with pytest.raises(SiteRequiredError):
            resolve_site_for(standard_types["PR"], "  ", SqlSiteLookup(session))

    def test_optional_site_still_validated(self, session, register_type):
        document_type = register_type("TEST")
        with pytest.raises(SiteNotFoundError):
            resolve_site_for(document_type, "XX", SqlSiteLookup(session))

    def test_no_site_for_global_type(self, session, register_type):
        document_type = register_type("TEST")
        assert resolve_site_for(document_type, None, SqlSiteLookup(session)) is None


class TestFacadeDefaultLookup:
    def test_generate_with_table_sites(
        self, session, sites, standard_types, actor, deterministic_clock
    ):
        control = DocumentControlService(session, clock=deterministic_clock)

        result = control.generate("PR", actor, site_code="JB")

        assert result.full_document_number == "JB-PR-2024-00001"
        assert control.get_registry(result.registry_id).site_id == sites["JB"].id
