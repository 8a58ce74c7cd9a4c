from __future__ import annotations

import pytest

from assetdb.apps.accounts import models as account_models
from assetdb.apps.assets import models as asset_models
from assetdb.apps.audit import models as audit_models
from assetdb.apps.rma import models, schemas, services
from assetdb.apps.stock import models as stock_models
from assetdb.apps.tickets import models as ticket_models
from assetdb.errors import ConflictError, InvalidTransitionError, NotFoundError, PayloadValidationError

Status = models.RMAStatusEnum
AssetStatus = asset_models.AssetStatusEnum
Movement = stock_models.StockMovementTypeEnum


def _create(db, actor, ticket, **fields):
    case = services.create_case(
        db,
        payload=schemas.RMACreate(ticket_id=ticket.id, request_reason="No video feed", **fields),
        actor=actor,
    )
    db.commit()
    return case


def _advance(db, case, actor, status, **fields):
    result = services.advance_status(
        db,
        rma_id=case.id,
        payload=schemas.RMAStatusUpdate(status=status, **fields),
        actor=actor,
    )
    db.commit()
    return result


def _install(db, case, actor, track, **fields):
    result = services.confirm_installation(
        db,
        rma_id=case.id,
        payload=schemas.ConfirmInstallation(installed_track=track, **fields),
        actor=actor,
    )
    db.commit()
    return result


def _ledger(db, case):
    return services.list_case_movements(db, rma_id=case.id)


def _timeline_statuses(case):
    return [entry.status for entry in case.timeline]


def test_repair_only_via_service_center(db_session, admin, ticket, slot):
    case = _create(db_session, admin, ticket)

    assert case.rma_number.startswith("RMA-")
    assert case.status == Status.APPROVED
    assert case.repair_track_status == models.RepairTrackStatusEnum.PENDING
    assert case.replacement_track_status == models.ReplacementTrackStatusEnum.NOT_REQUIRED
    assert case.original_details_snapshot["serial_number"] == "SN-OLD"

    _advance(
        db_session,
        case,
        admin,
        "SentToServiceCenter",
        logistics={"carrier": "BlueDart", "tracking_number": "BD-1"},
        vendor_details={"vendor": "Hik Service"},
    )
    assert case.status == Status.SENT_TO_SERVICE_CENTER
    assert case.item_send_route == models.ItemSendRouteEnum.SERVICE_CENTER
    assert case.logistics_to_service_center["tracking_number"] == "BD-1"
    assert slot.status == AssetStatus.IN_REPAIR

    _advance(db_session, case, admin, "RepairedReceivedAtSite")
    assert case.repair_track_status == models.RepairTrackStatusEnum.RECEIVED_AT_SITE
    assert slot.status == AssetStatus.NOT_INSTALLED

    _install(db_session, case, admin, models.InstallTrackEnum.REPAIR)

    assert case.status == Status.INSTALLED
    assert case.repair_track_status == models.RepairTrackStatusEnum.INSTALLED
    assert case.is_installation_confirmed is True
    assert case.is_faulty_item_finalized is True
    assert case.finalized_at is not None
    assert case.installed_by_user_id == admin.id
    assert slot.status == AssetStatus.OPERATIONAL
    assert slot.serial_number == "SN-OLD"
    assert ticket.rma_verified is True

    assert _timeline_statuses(case) == [
        "Approved",
        "SentToServiceCenter",
        "RepairedReceivedAtSite",
        "Installation Confirmed: Installed & Working",
    ]
    movements = _ledger(db_session, case)
    assert [m.to_status for m in movements] == ["In Repair", "Not Installed", "Operational"]
    assert all(m.asset_id == slot.id and m.ticket_id == ticket.id for m in movements)


def test_repair_and_replace_with_reserved_spare(db_session, admin, ticket, slot, spare, site):
    case = _create(
        db_session,
        admin,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
        reserved_asset_id=spare.id,
    )

    assert case.reserved_asset_id == spare.id
    assert case.replacement_track_status == models.ReplacementTrackStatusEnum.RECEIVED
    assert case.logistics_replacement_to_site["synthesized"] is True
    assert spare.status == AssetStatus.RESERVED
    assert spare.reserved_by_rma_id == case.id

    _install(db_session, case, admin, models.InstallTrackEnum.REPLACEMENT, new_password="s3cret")

    assert case.status == Status.REPLACEMENT_INSTALLED
    assert case.replacement_track_status == models.ReplacementTrackStatusEnum.INSTALLED
    assert slot.serial_number == "SN-NEW"
    assert slot.ip_address == "10.0.0.10"
    assert slot.password == "s3cret"
    assert slot.status == AssetStatus.OPERATIONAL
    assert spare.serial_number == "SN-OLD"
    assert spare.status == AssetStatus.IN_REPAIR
    assert spare.reserved_by_rma_id is None
    assert case.replacement_details["serial_number"] == "SN-NEW"
    assert case.replacement_details["password"] == services.MASKED_PASSWORD
    assert "preview" not in case.replacement_details

    # the repair track now follows the former spare row, which holds the faulty unit
    _advance(db_session, case, admin, "SentToServiceCenter")
    assert case.status == Status.SENT_TO_SERVICE_CENTER
    _advance(db_session, case, admin, "RepairedReceivedAtSite")
    assert spare.status == AssetStatus.NOT_INSTALLED
    assert spare.site_id == site.id

    _advance(db_session, case, admin, "AddToSiteStock")

    assert case.status == Status.INSTALLED
    assert case.is_faulty_item_finalized is True
    assert spare.status == AssetStatus.SPARE
    assert slot.status == AssetStatus.OPERATIONAL

    types = [m.movement_type for m in _ledger(db_session, case)]
    assert types == [
        Movement.RESERVED,
        Movement.REPLACED,
        Movement.STATUS_CHANGE,
        Movement.REPAIRED_RETURN,
        Movement.REPAIRED_RETURN,
    ]


def test_upgrade_to_replacement_and_repair_via_head_office(db_session, admin, ticket, slot, spare, site, ho_site):
    case = _create(db_session, admin, ticket)

    _advance(db_session, case, admin, "ModifyToRepairAndReplace")
    assert case.replacement_source == models.ReplacementSourceEnum.REPAIR_AND_REPLACE
    assert case.replacement_track_status == models.ReplacementTrackStatusEnum.PENDING

    _advance(
        db_session,
        case,
        admin,
        "ReplacementRequisitionRaised",
        stock_source=models.StockSourceEnum.HO_STOCK,
        replacement_asset_id=spare.id,
    )
    assert case.reserved_asset_id == spare.id
    assert case.replacement_stock_source == models.StockSourceEnum.HO_STOCK
    assert spare.status == AssetStatus.RESERVED

    _advance(db_session, case, admin, "ReplacementDispatched", logistics={"carrier": "DTDC"})
    assert spare.status == AssetStatus.IN_TRANSIT
    _advance(db_session, case, admin, "ReplacementReceivedAtSite")
    assert spare.status == AssetStatus.RESERVED
    assert spare.site_id == site.id
    assert case.logistics_replacement_to_site["carrier"] == "DTDC"
    assert "received_at" in case.logistics_replacement_to_site

    _advance(db_session, case, admin, "SentToHO")
    # an unfinished replacement step keeps the top-level status
    assert case.status == Status.REPLACEMENT_RECEIVED_AT_SITE
    assert case.repair_track_status == models.RepairTrackStatusEnum.SENT_TO_HO

    _install(db_session, case, admin, models.InstallTrackEnum.REPLACEMENT)
    assert case.status == Status.REPLACEMENT_INSTALLED

    _advance(db_session, case, admin, "ReceivedAtHO")
    assert case.status == Status.RECEIVED_AT_HO

    _advance(
        db_session,
        case,
        admin,
        "ItemRepairedAtHO",
        repaired_item_destination=models.RepairedItemDestinationEnum.HO_STOCK,
    )

    assert case.repair_track_status == models.RepairTrackStatusEnum.COMPLETED_TO_HO_STOCK
    assert case.status == Status.INSTALLED
    assert spare.status == AssetStatus.SPARE
    assert spare.site_id == ho_site.id
    assert spare.serial_number == "SN-OLD"
    assert slot.serial_number == "SN-NEW"
    assert len(case.timeline) == 9

    movements = _ledger(db_session, case)
    assert [m.asset_id for m in movements].count(spare.id) == 5
    assert [m.asset_id for m in movements].count(slot.id) == 1


def test_repair_kept_in_ho_stock_before_replacement_install(db_session, admin, ticket, slot, spare, site, ho_site):
    case = _create(
        db_session,
        admin,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
        reserved_asset_id=spare.id,
    )
    _advance(db_session, case, admin, "SentToHO")
    _advance(db_session, case, admin, "ReceivedAtHO")
    _advance(db_session, case, admin, "SentForRepairFromHO")
    _advance(
        db_session,
        case,
        admin,
        "ItemRepairedAtHO",
        repaired_item_destination=models.RepairedItemDestinationEnum.HO_STOCK,
    )
    assert slot.site_id == ho_site.id
    assert case.status == Status.COMPLETED_TO_HO_STOCK

    _install(db_session, case, admin, models.InstallTrackEnum.REPLACEMENT)

    assert case.status == Status.INSTALLED
    assert case.is_faulty_item_finalized is True

    assert slot.serial_number == "SN-NEW"
    assert slot.status == AssetStatus.OPERATIONAL
    assert slot.site_id == site.id
    assert slot.location_description == "Main gate pole"
    assert slot.ip_address == "10.0.0.10"

    assert spare.serial_number == "SN-OLD"
    assert spare.status == AssetStatus.SPARE
    assert spare.site_id == ho_site.id
    assert spare.location_description == "Head office stock"
    assert spare.reserved_by_rma_id is None

    replaced = [m for m in _ledger(db_session, case) if m.movement_type == Movement.REPLACED]
    assert len(replaced) == 1
    assert replaced[0].from_site_id == ho_site.id
    assert replaced[0].to_site_id == site.id


def test_repair_added_to_other_site_stock_before_replacement_install(db_session, admin, ticket, slot, spare, site):
    east = asset_models.Site(site_code="S02", site_name="East Gate")
    db_session.add(east)
    db_session.commit()

    case = _create(
        db_session,
        admin,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
        reserved_asset_id=spare.id,
    )
    _advance(db_session, case, admin, "SentToServiceCenter")
    _advance(db_session, case, admin, "RepairedReceivedAtSite")
    _advance(db_session, case, admin, "AddToSiteStock", destination_site_id=east.id)
    assert case.repair_track_status == models.RepairTrackStatusEnum.ADDED_TO_SITE_STOCK
    assert slot.site_id == east.id

    _install(db_session, case, admin, models.InstallTrackEnum.REPLACEMENT)

    assert case.status == Status.INSTALLED
    assert slot.serial_number == "SN-NEW"
    assert slot.status == AssetStatus.OPERATIONAL
    assert slot.site_id == site.id
    assert slot.location_description == "Main gate pole"

    assert spare.serial_number == "SN-OLD"
    assert spare.status == AssetStatus.SPARE
    assert spare.site_id == east.id
    assert spare.location_description == "East Gate spare stock"


def test_case_history_by_asset_covers_original_and_reserved(
    db_session, admin, engineer, ticket, make_ticket, slot, spare
):
    first = _create(
        db_session,
        engineer,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
        reserved_asset_id=spare.id,
    )
    _advance(db_session, first, admin, "Rejected")
    second = _create(db_session, admin, make_ticket("TKT-0002", asset=spare))

    spare_history = services.get_case_history_by_asset(db_session, asset_id=spare.id)
    assert [view.id for view in spare_history] == [second.id, first.id]

    slot_history = services.get_case_history_by_asset(db_session, asset_id=slot.id)
    assert [view.id for view in slot_history] == [first.id]

    with pytest.raises(NotFoundError):
        services.get_case_history_by_asset(db_session, asset_id=9999)


def test_replacement_bought_from_market_registers_incoming_unit(db_session, admin, ticket, slot):
    case = _create(
        db_session,
        admin,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
    )
    assert case.replacement_track_status == models.ReplacementTrackStatusEnum.PENDING

    _advance(
        db_session,
        case,
        admin,
        "ReplacementRequisitionRaised",
        stock_source=models.StockSourceEnum.MARKET,
    )
    with pytest.raises(PayloadValidationError):
        services.confirm_installation(
            db_session,
            rma_id=case.id,
            payload=schemas.ConfirmInstallation(installed_track=models.InstallTrackEnum.REPLACEMENT),
            actor=admin,
        )
    db_session.rollback()

    _install(
        db_session,
        case,
        admin,
        models.InstallTrackEnum.REPLACEMENT,
        replacement_details={"serial_number": "SN-MKT"},
        new_ip_address="10.0.0.11",
    )

    unit = db_session.get(asset_models.Asset, case.reserved_asset_id)
    assert unit.asset_code == f"CAM-001-R{case.id}"
    assert unit.serial_number == "SN-OLD"
    assert unit.ip_address == "10.0.0.10"
    assert unit.status == AssetStatus.IN_REPAIR
    assert slot.serial_number == "SN-MKT"
    assert slot.make == "Hikvision"
    assert slot.ip_address == "10.0.0.11"

    types = [m.movement_type for m in _ledger(db_session, case) if m.asset_id == unit.id]
    assert types == [Movement.ADDED, Movement.STATUS_CHANGE]


def test_requested_case_needs_approval(db_session, admin, engineer, ticket):
    case = _create(db_session, engineer, ticket)

    assert case.status == Status.REQUESTED
    assert case.repair_track_status is None
    assert case.replacement_track_status is None

    with pytest.raises(InvalidTransitionError):
        _advance(db_session, case, admin, "SentToServiceCenter")
    db_session.rollback()

    _advance(db_session, case, admin, "Approved")
    assert case.status == Status.APPROVED
    assert case.approved_by_user_id == admin.id
    assert case.approved_at is not None
    assert case.repair_track_status == models.RepairTrackStatusEnum.PENDING


def test_direct_rma_right_skips_approval(db_session, engineer, ticket, site):
    db_session.add(
        account_models.UserRight(
            user_id=engineer.id,
            right_code=account_models.RightCode.DIRECT_RMA_GENERATE,
            site_id=site.id,
        )
    )
    db_session.commit()
    db_session.refresh(engineer)

    case = _create(db_session, engineer, ticket)
    assert case.status == Status.APPROVED


def test_rejection_releases_the_reserved_spare(db_session, admin, engineer, ticket, spare):
    case = _create(
        db_session,
        engineer,
        ticket,
        replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
        reserved_asset_id=spare.id,
    )
    assert spare.status == AssetStatus.RESERVED

    _advance(db_session, case, admin, "Rejected", remarks="Not under warranty")

    assert case.status == Status.REJECTED
    assert spare.status == AssetStatus.SPARE
    assert spare.reserved_by_rma_id is None
    assert case.timeline[-1].remarks == "Not under warranty"

    with pytest.raises(InvalidTransitionError):
        _advance(db_session, case, admin, "Approved")
    db_session.rollback()

    # a rejected case no longer blocks a new one on the same ticket
    second = _create(db_session, admin, ticket)
    assert second.rma_number != case.rma_number
    assert second.rma_number.endswith("-0002")


def test_terminal_case_rejects_every_update(db_session, admin, ticket):
    case = _create(db_session, admin, ticket)
    _advance(db_session, case, admin, "SentToServiceCenter")
    _advance(db_session, case, admin, "RepairedReceivedAtSite")
    _install(db_session, case, admin, models.InstallTrackEnum.REPAIR)
    assert case.status == Status.INSTALLED
    timeline_len = len(case.timeline)

    for target in ("SentToHO", "Ordered", "ModifyToRepairAndReplace"):
        with pytest.raises(InvalidTransitionError):
            _advance(db_session, case, admin, target)
        db_session.rollback()

    with pytest.raises(InvalidTransitionError):
        _install(db_session, case, admin, models.InstallTrackEnum.REPAIR)
    db_session.rollback()

    db_session.refresh(case)
    assert len(case.timeline) == timeline_len


def test_one_active_case_per_ticket(db_session, admin, ticket):
    _create(db_session, admin, ticket)
    with pytest.raises(ConflictError):
        _create(db_session, admin, ticket)


def test_payload_and_state_errors(db_session, admin, ticket):
    case = _create(db_session, admin, ticket)

    with pytest.raises(PayloadValidationError):
        _advance(db_session, case, admin, "Teleported")
    db_session.rollback()

    # RepairOnly case has no replacement track to advance
    with pytest.raises(InvalidTransitionError):
        _advance(db_session, case, admin, "ReplacementDispatched")
    db_session.rollback()

    _advance(db_session, case, admin, "ModifyToRepairAndReplace")
    with pytest.raises(PayloadValidationError):
        _advance(db_session, case, admin, "ReplacementRequisitionRaised")
    db_session.rollback()

    with pytest.raises(PayloadValidationError):
        _advance(
            db_session,
            case,
            admin,
            "ReplacementRequisitionRaised",
            stock_source=models.StockSourceEnum.SITE_STOCK,
        )
    db_session.rollback()

    with pytest.raises(PayloadValidationError):
        _advance(db_session, case, admin, "Installed")
    db_session.rollback()

    with pytest.raises(InvalidTransitionError):
        _advance(db_session, case, admin, "AddToSiteStock")
    db_session.rollback()

    with pytest.raises(NotFoundError):
        _advance(db_session, models.RMARequest(id=9999), admin, "SentToHO")


def test_stale_expected_version_is_rejected(db_session, admin, ticket):
    case = _create(db_session, admin, ticket)
    version = case.version_id

    with pytest.raises(ConflictError):
        _advance(db_session, case, admin, "SentToHO", expected_version=version + 1)
    db_session.rollback()

    _advance(db_session, case, admin, "SentToHO", expected_version=version)
    assert case.version_id > version


def test_install_not_working_escalates_ticket(db_session, admin, ticket):
    case = _create(db_session, admin, ticket)
    _advance(db_session, case, admin, "SentToServiceCenter")
    _advance(db_session, case, admin, "RepairedReceivedAtSite")

    _install(
        db_session,
        case,
        admin,
        models.InstallTrackEnum.REPAIR,
        installation_status=models.InstallationStatusEnum.INSTALLED_NOT_WORKING,
        remarks="Still no video",
    )

    assert case.status == Status.REPAIRED_RECEIVED_AT_SITE
    assert case.installation_status == models.InstallationStatusEnum.INSTALLED_NOT_WORKING
    assert case.is_installation_confirmed is False
    assert ticket.status == ticket_models.TicketStatusEnum.ESCALATED
    assert ticket.rma_verified is False
    assert case.timeline[-1].status == "Installation Confirmed: Installed but Not Working"


def test_every_operation_leaves_a_trail(db_session, admin, ticket):
    case = _create(db_session, admin, ticket)
    _advance(db_session, case, admin, "SentToHO")
    _advance(db_session, case, admin, "Ordered")

    assert case.status == Status.ORDERED
    assert case.repair_track_status == models.RepairTrackStatusEnum.SENT_TO_HO
    assert len(case.timeline) == 3

    actions = [
        event.action
        for event in db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_id == str(case.id))
        .order_by(audit_models.AuditEvent.occurred_at.asc())
    ]
    assert actions.count("create") == 1
    assert actions.count("transition") == 2

    activities = db_session.query(ticket_models.TicketActivity).filter_by(ticket_id=ticket.id).all()
    assert len(activities) == 3
    assert all(a.activity_type == ticket_models.TicketActivityTypeEnum.RMA for a in activities)
    assert ticket.rma_id == case.id
    assert ticket.rma_number == case.rma_number


def test_reserving_a_mismatched_spare_is_rejected(db_session, admin, ticket, make_spare):
    nvr = make_spare(asset_code="NVR-SP1", serial_number="NVR-9", asset_type="NVR")
    with pytest.raises(PayloadValidationError):
        _create(
            db_session,
            admin,
            ticket,
            replacement_source=models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
            reserved_asset_id=nvr.id,
        )
