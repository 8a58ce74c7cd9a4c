from __future__ import annotations

import pytest

from assetdb.apps.accounts import models as account_models
from assetdb.apps.assets import models as asset_models
from assetdb.apps.tickets import models as ticket_models


def _commit(db, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture()
def ho_site(db_session):
    return _commit(
        db_session,
        asset_models.Site(site_code="HO", site_name="Head Office", is_head_office=True),
    )


@pytest.fixture()
def site(db_session, ho_site):
    return _commit(db_session, asset_models.Site(site_code="S01", site_name="North Gate"))


@pytest.fixture()
def admin(db_session):
    return _commit(
        db_session,
        account_models.User(
            email="admin@example.com",
            full_name="Admin User",
            role=account_models.AccountRole.ADMIN,
            is_active=True,
        ),
    )


@pytest.fixture()
def engineer(db_session):
    return _commit(
        db_session,
        account_models.User(
            email="l1@example.com",
            full_name="Field Engineer",
            role=account_models.AccountRole.L1_ENGINEER,
            is_active=True,
        ),
    )


@pytest.fixture()
def slot(db_session, site):
    return _commit(
        db_session,
        asset_models.Asset(
            asset_code="CAM-001",
            asset_type="Camera",
            serial_number="SN-OLD",
            mac="AA:AA:AA:AA:AA:01",
            ip_address="10.0.0.10",
            make="Hikvision",
            model="DS-2CD",
            site_id=site.id,
            location_description="Main gate pole",
            status=asset_models.AssetStatusEnum.OPERATIONAL,
        ),
    )


@pytest.fixture()
def make_spare(db_session, ho_site):
    def _make(asset_code: str = "CAM-SP1", serial_number: str = "SN-NEW", asset_type: str = "Camera"):
        return _commit(
            db_session,
            asset_models.Asset(
                asset_code=asset_code,
                asset_type=asset_type,
                serial_number=serial_number,
                mac="BB:BB:BB:BB:BB:02",
                ip_address="192.168.50.5",
                make="Hikvision",
                model="DS-2CD-V2",
                site_id=ho_site.id,
                location_description="HO rack 3",
                status=asset_models.AssetStatusEnum.SPARE,
            ),
        )

    return _make


@pytest.fixture()
def spare(make_spare):
    return make_spare()


@pytest.fixture()
def make_ticket(db_session, site, slot):
    def _make(ticket_number: str = "TKT-0001", asset=None):
        return _commit(
            db_session,
            ticket_models.Ticket(
                ticket_number=ticket_number,
                title="Camera offline",
                site_id=site.id,
                asset_id=(asset or slot).id,
                status=ticket_models.TicketStatusEnum.IN_PROGRESS,
            ),
        )

    return _make


@pytest.fixture()
def ticket(make_ticket):
    return make_ticket()
