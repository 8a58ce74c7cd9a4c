from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from assetdb.errors import NotFoundError

from . import models


def get_site(db: Session, site_id: Optional[int]) -> Optional[models.Site]:
    if site_id is None:
        return None
    return db.query(models.Site).filter(models.Site.id == site_id).first()


def get_site_or_404(db: Session, site_id: Optional[int]) -> models.Site:
    site = get_site(db, site_id)
    if not site:
        raise NotFoundError(f"Site {site_id} not found.")
    return site


def get_head_office_site(db: Session) -> models.Site:
    site = (
        db.query(models.Site)
        .filter(models.Site.is_head_office.is_(True), models.Site.is_active.is_(True))
        .order_by(models.Site.id.asc())
        .first()
    )
    if not site:
        raise NotFoundError("No active head office site is configured.")
    return site


def get_asset(db: Session, asset_id: Optional[int]) -> Optional[models.Asset]:
    if asset_id is None:
        return None
    return db.query(models.Asset).filter(models.Asset.id == asset_id).first()


def get_asset_or_404(db: Session, asset_id: Optional[int], *, label: str = "Asset") -> models.Asset:
    asset = get_asset(db, asset_id)
    if not asset:
        raise NotFoundError(f"{label} {asset_id} not found.")
    return asset
