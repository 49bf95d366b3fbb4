"""
Module: registrar_kernel.models.site
Responsibility: Minimal site directory backing the default SQL site lookup.
Architecture position: Kernel > Models.  May import from db/base.py only.

Sites are owned by the organization directory in a full deployment; this
table exists so the registrar can resolve ``site_code -> site_id`` without
an external service.  Services only reach it through a SiteLookup.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from registrar_kernel.db.base import Base


class Site(Base):
    __tablename__ = "sites"

    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Site {self.code}>"
