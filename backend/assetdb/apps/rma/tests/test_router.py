from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assetdb import security
from assetdb.apps.accounts import models as account_models
from assetdb.apps.assets import models as asset_models
from assetdb.apps.rma.router import router as rma_router
from assetdb.apps.tickets import models as ticket_models
from assetdb.database import Base, get_db, get_read_db
from assetdb.main import app


@pytest.fixture()
def api():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    seed = TestingSession()
    ho = asset_models.Site(site_code="HO", site_name="Head Office", is_head_office=True)
    site = asset_models.Site(site_code="S01", site_name="North Gate")
    seed.add_all([ho, site])
    seed.flush()
    user = account_models.User(
        email="dispatch@example.com",
        full_name="Desk Dispatcher",
        role=account_models.AccountRole.DISPATCHER,
        is_active=True,
    )
    viewer = account_models.User(
        email="viewer@example.com",
        full_name="Read Only",
        role=account_models.AccountRole.VIEW_ONLY,
        is_active=True,
    )
    supervisor = account_models.User(
        email="supervisor@example.com",
        full_name="Shift Supervisor",
        role=account_models.AccountRole.SUPERVISOR,
        is_active=True,
    )
    slot = asset_models.Asset(
        asset_code="CAM-001",
        asset_type="Camera",
        serial_number="SN-OLD",
        ip_address="10.0.0.10",
        site_id=site.id,
        status=asset_models.AssetStatusEnum.OPERATIONAL,
    )
    spare = asset_models.Asset(
        asset_code="CAM-SP1",
        asset_type="Camera",
        serial_number="SN-NEW",
        site_id=ho.id,
        status=asset_models.AssetStatusEnum.SPARE,
    )
    seed.add_all([user, viewer, supervisor, slot, spare])
    seed.flush()
    ticket = ticket_models.Ticket(ticket_number="TKT-9", title="Camera down", site_id=site.id, asset_id=slot.id)
    seed.add(ticket)
    seed.commit()
    ids = {
        "user": user.id,
        "viewer": viewer.id,
        "supervisor": supervisor.id,
        "slot": slot.id,
        "spare": spare.id,
        "ticket": ticket.id,
    }
    seed.close()

    current = {"user_id": ids["user"]}

    def _override_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    def _override_user():
        db = TestingSession()
        try:
            return db.get(account_models.User, current["user_id"])
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_read_db] = _override_db
    app.dependency_overrides[security.get_current_active_user] = _override_user
    try:
        yield TestClient(app), ids, current
    finally:
        app.dependency_overrides.clear()
        engine.dispose()


def test_router_has_expected_routes():
    def _has(method: str, path: str) -> bool:
        return any(route.path == path and method in (route.methods or []) for route in rma_router.routes)

    assert _has("GET", "/rma")
    assert _has("POST", "/rma")
    assert _has("GET", "/rma/{rma_id}")
    assert _has("PATCH", "/rma/{rma_id}/status")
    assert _has("POST", "/rma/{rma_id}/confirm-installation")
    assert _has("GET", "/rma/ticket/{ticket_id}")
    assert _has("GET", "/rma/asset/{asset_id}/history")


def test_replacement_flow_over_http(api):
    client, ids, _ = api

    response = client.post(
        "/rma",
        json={
            "ticket_id": ids["ticket"],
            "request_reason": "No video",
            "replacement_source": "RepairAndReplace",
            "reserved_asset_id": ids["spare"],
        },
    )
    assert response.status_code == 201, response.json()
    body = response.json()
    rma_id = body["id"]
    assert body["status"] == "Requested"
    assert body["timeline"][0]["status"] == "Requested"

    response = client.patch(f"/rma/{rma_id}/status", json={"status": "Approved"})
    assert response.status_code == 200, response.json()
    assert response.json()["replacement_track_status"] == "Received"

    response = client.post(
        f"/rma/{rma_id}/confirm-installation",
        json={"installed_track": "replacement", "new_password": "hunter2"},
    )
    assert response.status_code == 200, response.json()
    body = response.json()
    assert body["status"] == "ReplacementInstalled"
    assert body["replacement_details"]["password"] == "********"

    response = client.get(f"/rma/{rma_id}/movements")
    assert [m["movement_type"] for m in response.json()] == ["Reserved", "Replaced", "StatusChange"]

    response = client.get(f"/stock/assets/{ids['slot']}/replacement-history")
    history = response.json()
    assert len(history) == 1
    assert history[0]["performed_by"] == "Desk Dispatcher"
    assert history[0]["old_details"]["serial_number"] == "SN-OLD"
    assert history[0]["new_details"]["serial_number"] == "SN-NEW"

    response = client.get("/stock/movement-logs", params={"asset_id": ids["spare"]})
    assert response.json()["type_counts"] == {"Reserved": 1, "StatusChange": 1}

    response = client.get(f"/rma/ticket/{ids['ticket']}")
    assert response.json()["id"] == rma_id

    listing = client.get("/rma").json()
    assert listing["ongoing"] == 1
    assert listing["completed"] == 0
    assert listing["pagination"]["total"] == 1


def test_asset_movements_and_audit_trail_over_http(api):
    client, ids, current = api

    rma_id = client.post(
        "/rma",
        json={
            "ticket_id": ids["ticket"],
            "request_reason": "No video",
            "replacement_source": "RepairAndReplace",
            "reserved_asset_id": ids["spare"],
        },
    ).json()["id"]
    client.patch(f"/rma/{rma_id}/status", json={"status": "Approved"})

    response = client.get(f"/stock/assets/{ids['spare']}/movements")
    assert response.status_code == 200
    assert [m["movement_type"] for m in response.json()] == ["Reserved"]
    assert client.get("/stock/assets/4242/movements").status_code == 404

    params = {"entity_type": "rma_case", "entity_id": str(rma_id)}
    assert client.get("/audit", params=params).status_code == 403

    current["user_id"] = ids["supervisor"]
    response = client.get("/audit", params=params)
    assert response.status_code == 200
    assert sorted(event["action"] for event in response.json()) == ["create", "transition"]


def test_errors_map_to_status_codes(api):
    client, ids, current = api

    assert client.get("/rma/4242").status_code == 404

    rma_id = client.post("/rma", json={"ticket_id": ids["ticket"], "request_reason": "Dead"}).json()["id"]

    response = client.post("/rma", json={"ticket_id": ids["ticket"], "request_reason": "Again"})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "conflict"

    response = client.patch(f"/rma/{rma_id}/status", json={"status": "NoSuchThing"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"

    response = client.patch(f"/rma/{rma_id}/status", json={"status": "SentToHO"})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_transition"

    current["user_id"] = ids["viewer"]
    response = client.patch(f"/rma/{rma_id}/status", json={"status": "Approved"})
    assert response.status_code == 403
