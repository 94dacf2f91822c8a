# FILE: app/services/site_resolver.py
from __future__ import annotations

from typing import List, Protocol

from sqlalchemy.orm import Session

from app.models.site import Site
from app.services.ledger_errors import NotFoundError


class SiblingSiteResolver(Protocol):
    def siblings(self, db: Session, site_id: int) -> List[Site]: ...


class TenantSiblingSiteResolver:
    """Other active sites that belong to the same tenant as site_id."""

    def siblings(self, db: Session, site_id: int) -> List[Site]:
        site = get_site(db, site_id)
        return (
            db.query(Site)
            .filter(
                Site.tenant_id == site.tenant_id,
                Site.id != site.id,
                Site.is_active.is_(True),
            )
            .order_by(Site.name.asc())
            .all()
        )


def get_site(db: Session, site_id: int) -> Site:
    site = db.get(Site, site_id)
    if not site:
        raise NotFoundError(f"Site {site_id} not found", details={"site_id": site_id})
    return site
