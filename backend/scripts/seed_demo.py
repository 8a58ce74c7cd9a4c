from __future__ import annotations

from assetdb.database import WriteSessionLocal
from assetdb.apps.accounts import models as account_models
from assetdb.apps.assets import models as asset_models
from assetdb.apps.rma import models as rma_models
from assetdb.apps.rma import schemas as rma_schemas
from assetdb.apps.rma import services as rma_services
from assetdb.apps.tickets import models as ticket_models


def _get_or_create_site(db, code: str, name: str, *, head_office: bool = False) -> asset_models.Site:
    site = db.query(asset_models.Site).filter(asset_models.Site.site_code == code).first()
    if site:
        return site
    site = asset_models.Site(site_code=code, site_name=name, is_head_office=head_office, is_active=True)
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


def _get_or_create_admin(db) -> account_models.User:
    user = db.query(account_models.User).filter(account_models.User.email == "admin@demo-portal.example").first()
    if user:
        return user
    user = account_models.User(
        email="admin@demo-portal.example",
        full_name="Demo Admin",
        role=account_models.AccountRole.ADMIN,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _get_or_create_asset(db, site: asset_models.Site, *, code: str, serial: str, status) -> asset_models.Asset:
    asset = db.query(asset_models.Asset).filter(asset_models.Asset.asset_code == code).first()
    if asset:
        return asset
    asset = asset_models.Asset(
        asset_code=code,
        asset_type=asset_models.AssetTypeEnum.CAMERA.value,
        serial_number=serial,
        mac="00:11:22:33:44:55",
        ip_address="10.10.0.21" if status == asset_models.AssetStatusEnum.OPERATIONAL else None,
        make="Hikvision",
        model="DS-2CD2143G2",
        site_id=site.id,
        status=status,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def _get_or_create_ticket(db, site: asset_models.Site, asset: asset_models.Asset) -> ticket_models.Ticket:
    ticket = db.query(ticket_models.Ticket).filter(ticket_models.Ticket.ticket_number == "DEMO-TKT-0001").first()
    if ticket:
        return ticket
    ticket = ticket_models.Ticket(
        ticket_number="DEMO-TKT-0001",
        title="Gate camera shows no video",
        description="Camera at the north gate went offline overnight.",
        site_id=site.id,
        asset_id=asset.id,
        status=ticket_models.TicketStatusEnum.IN_PROGRESS,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


def _seed_rma(db, ticket: ticket_models.Ticket, spare: asset_models.Asset, admin: account_models.User) -> None:
    if ticket.rma_id:
        return
    rma_services.create_case(
        db,
        payload=rma_schemas.RMACreate(
            ticket_id=ticket.id,
            request_reason="Image sensor failure",
            replacement_source=rma_models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
            reserved_asset_id=spare.id,
        ),
        actor=admin,
    )
    db.commit()


def main() -> None:
    db = WriteSessionLocal()
    try:
        ho = _get_or_create_site(db, "HO", "Head Office", head_office=True)
        site = _get_or_create_site(db, "NG-01", "North Gate")
        admin = _get_or_create_admin(db)
        slot = _get_or_create_asset(
            db, site, code="CAM-NG-001", serial="DEMO-SN-0001", status=asset_models.AssetStatusEnum.OPERATIONAL
        )
        spare = _get_or_create_asset(
            db, ho, code="CAM-HO-SP01", serial="DEMO-SN-0099", status=asset_models.AssetStatusEnum.SPARE
        )
        ticket = _get_or_create_ticket(db, site, slot)
        _seed_rma(db, ticket, spare, admin)
    finally:
        db.close()


if __name__ == "__main__":
    main()
