"""
SiteLookup -- injected resolution of site codes to site identities.

Responsibility:
    Resolves the ``site_code`` a caller passes to ``generate`` into the
    ``(site_id, code)`` pair stored on counter and registry rows.  Sites are
    owned by the organization directory; the registrar only consumes them.

Architecture position:
    Kernel > Services -- collaborator interface.  ``SqlSiteLookup`` reads the
    kernel's own ``sites`` table; ``StaticSiteLookup`` serves a fixed
    mapping (tests, single-site deployments, or an adapter over another
    directory).

Failure modes:
    - SiteNotFoundError when the code is unknown or the site is inactive.
    - SiteRequiredError (from ``resolve_site_for``) when the document type
      numbers per site but no code was given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from registrar_kernel.exceptions import SiteNotFoundError, SiteRequiredError
from registrar_kernel.models.document_type import DocumentType
from registrar_kernel.models.site import Site


@dataclass(frozen=True, slots=True)
class SiteRef:
    site_id: UUID
    code: str


class SiteLookup(ABC):
    """Resolve a site code; raise SiteNotFoundError when it does not exist."""

    @abstractmethod
    def resolve(self, site_code: str) -> SiteRef:
        ...


class SqlSiteLookup(SiteLookup):
    def __init__(self, session: Session):
        self._session = session

    def resolve(self, site_code: str) -> SiteRef:
        site = self._session.execute(
            select(Site).where(Site.code == site_code, Site.is_active.is_(True))
        ).scalar_one_or_none()
        if site is None:
            raise SiteNotFoundError(site_code)
        return SiteRef(site_id=site.id, code=site.code)


class StaticSiteLookup(SiteLookup):
    def __init__(self, sites: Mapping[str, UUID]):
        self._sites = dict(sites)

    def resolve(self, site_code: str) -> SiteRef:
        try:
            return SiteRef(site_id=self._sites[site_code], code=site_code)
        except KeyError:
            raise SiteNotFoundError(site_code) from None


def resolve_site_for(
    document_type: DocumentType,
    site_code: str | None,
    lookup: SiteLookup,
) -> SiteRef | None:
    """
    Resolve the site for one numbering request.

    A site code is mandatory for per-site types and optional otherwise; when
    given it is always validated, so a typo never lands in a registry row.
    """
    site_code = site_code.strip() if site_code else None
    if not site_code:
        if document_type.requires_site_code:
            raise SiteRequiredError(document_type.code)
        return None
    return lookup.resolve(site_code)
