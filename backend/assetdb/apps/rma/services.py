"""
RMA case lifecycle.

Every mutating operation follows the same shape: load the case, validate the
requested transition through the workflow engine (which also writes the audit
event), apply the status-specific asset and track changes, then ``_finish``
appends exactly one timeline entry, applies track convergence and flushes.
Routers commit once per request, so the case, both asset rows, the timeline
and the ledger rows land together or not at all.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from assetdb.apps.accounts import models as account_models
from assetdb.apps.accounts import services as account_services
from assetdb.apps.assets import models as asset_models
from assetdb.apps.assets import services as asset_services
from assetdb.apps.audit import services as audit_services
from assetdb.apps.stock import models as stock_models
from assetdb.apps.stock import services as stock_services
from assetdb.apps.tickets import models as ticket_models
from assetdb.apps.tickets import services as ticket_services
from assetdb.apps.workflow import TransitionError, apply_transition
from assetdb.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PayloadValidationError,
)
from assetdb.utils.identifiers import format_rma_number, next_sequence_from

from . import convergence, identity, models, schemas

logger = logging.getLogger(__name__)

WORKFLOW = "rma_case"
MASKED_PASSWORD = "********"
ALREADY_ON_SITE_NOTE = "Replacement already on-site: spare was reserved from stock when the RMA was raised."

Status = models.RMAStatusEnum
RepairTrack = models.RepairTrackStatusEnum
ReplacementTrack = models.ReplacementTrackStatusEnum
AssetStatus = asset_models.AssetStatusEnum
Movement = stock_models.StockMovementTypeEnum

LEGACY_STATUSES = {Status.ORDERED, Status.DISPATCHED, Status.RECEIVED}
GENERIC_DISPLAY_STATUSES = {Status.APPROVED} | LEGACY_STATUSES

REPAIR_TRACK_BY_STATUS = {
    Status.SENT_TO_SERVICE_CENTER: RepairTrack.SENT_TO_SERVICE_CENTER,
    Status.SENT_TO_HO: RepairTrack.SENT_TO_HO,
    Status.RECEIVED_AT_HO: RepairTrack.RECEIVED_AT_HO,
    Status.SENT_FOR_REPAIR_FROM_HO: RepairTrack.SENT_FOR_REPAIR,
    Status.RETURN_SHIPPED_TO_SITE: RepairTrack.RETURN_SHIPPED,
    Status.RECEIVED_AT_SITE: RepairTrack.RECEIVED_AT_SITE,
    Status.REPAIRED_RECEIVED_AT_SITE: RepairTrack.RECEIVED_AT_SITE,
}
REPAIR_DISPLAY_STATUSES = set(REPAIR_TRACK_BY_STATUS) | {
    Status.ITEM_REPAIRED_AT_HO,
    Status.ADDED_TO_SITE_STOCK,
    Status.COMPLETED_TO_HO_STOCK,
    Status.REPAIR_INSTALLED,
}
REPLACEMENT_DISPLAY_STATUSES = {
    Status.REPLACEMENT_REQUISITION_RAISED,
    Status.REPLACEMENT_DISPATCHED,
    Status.REPLACEMENT_RECEIVED_AT_SITE,
    Status.REPLACEMENT_INSTALLED,
}

IN_REPAIR_STATUSES = {Status.SENT_TO_SERVICE_CENTER, Status.SENT_FOR_REPAIR_FROM_HO}
BACK_AT_SITE_STATUSES = {Status.RECEIVED_AT_SITE, Status.REPAIRED_RECEIVED_AT_SITE}
# Repair outcomes that leave the repaired unit in a spare pool rather than in the slot.
REPAIR_STOCKED_STATES = {RepairTrack.COMPLETED_TO_HO_STOCK, RepairTrack.ADDED_TO_SITE_STOCK}

LOGISTICS_FIELD_BY_STATUS = {
    Status.SENT_TO_SERVICE_CENTER: "logistics_to_service_center",
    Status.SENT_FOR_REPAIR_FROM_HO: "logistics_to_service_center",
    Status.SENT_TO_HO: "logistics_to_ho",
    Status.RECEIVED_AT_HO: "logistics_to_ho",
    Status.RETURN_SHIPPED_TO_SITE: "logistics_return_to_site",
    Status.RECEIVED_AT_SITE: "logistics_return_to_site",
    Status.REPAIRED_RECEIVED_AT_SITE: "logistics_return_to_site",
    Status.REPLACEMENT_DISPATCHED: "logistics_replacement_to_site",
    Status.REPLACEMENT_RECEIVED_AT_SITE: "logistics_replacement_to_site",
}

# Guard failures on these fields mean the case is in the wrong state, not that the payload is incomplete.
CASE_STATE_FIELDS = {"status", "entity_type", "replacement_source", "repair_track_status", "replacement_track_status"}


def _utcnow() -> datetime:
    return datetime.utcnow()


def _value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def get_case(db: Session, rma_id: int) -> Optional[models.RMARequest]:
    return db.query(models.RMARequest).filter(models.RMARequest.id == rma_id).first()


def get_case_or_404(db: Session, rma_id: int) -> models.RMARequest:
    case = get_case(db, rma_id)
    if not case:
        raise NotFoundError(f"RMA request {rma_id} not found.")
    return case


def _active_case_for_ticket(db: Session, ticket_id: int) -> Optional[models.RMARequest]:
    return (
        db.query(models.RMARequest)
        .filter(
            models.RMARequest.ticket_id == ticket_id,
            models.RMARequest.status.notin_(list(convergence.TERMINAL_STATUSES)),
        )
        .first()
    )


def _next_rma_number(db: Session, now: datetime) -> str:
    prefix = format_rma_number(now, 0)[:-4]
    last = (
        db.query(models.RMARequest.rma_number)
        .filter(models.RMARequest.rma_number.like(f"{prefix}%"))
        .order_by(models.RMARequest.rma_number.desc())
        .first()
    )
    return format_rma_number(now, next_sequence_from(last[0] if last else None))


# ---------------------------------------------------------------------------
# TRANSITION PLUMBING
# ---------------------------------------------------------------------------


def _state_dict(case: models.RMARequest) -> Dict[str, Any]:
    return {
        "status": _value(case.status),
        "replacement_source": _value(case.replacement_source),
        "repair_track_status": _value(case.repair_track_status),
        "replacement_track_status": _value(case.replacement_track_status),
        "reserved_asset_id": case.reserved_asset_id,
    }


def _raise_transition_error(exc: TransitionError) -> None:
    fields = {item.get("field") for item in exc.detail}
    if exc.code == "invalid_transition" or fields <= CASE_STATE_FIELDS:
        raise InvalidTransitionError(str(exc)) from exc
    raise PayloadValidationError(str(exc)) from exc


def _run_transition(
    db: Session,
    *,
    case: models.RMARequest,
    target: str,
    actor_id: Optional[str],
    payload_state: Dict[str, Any],
) -> None:
    before = _state_dict(case)
    after = {**before, **{key: _value(val) for key, val in payload_state.items()}}
    try:
        apply_transition(
            db,
            actor_user_id=actor_id,
            entity_type=WORKFLOW,
            entity_id=str(case.id),
            from_state=before["status"],
            to_state=target,
            before_obj=before,
            after_obj=after,
        )
    except TransitionError as exc:
        _raise_transition_error(exc)


def _ensure_not_terminal(case: models.RMARequest) -> None:
    if convergence.is_terminal(case):
        raise InvalidTransitionError(
            f"RMA {case.rma_number} is already {_value(case.status)} and cannot be changed."
        )


def _check_version(case: models.RMARequest, expected_version: Optional[int]) -> None:
    if expected_version is not None and case.version_id != expected_version:
        raise ConflictError(
            f"RMA {case.rma_number} has changed (version {case.version_id}, expected {expected_version}). Reload and retry."
        )


def _parse_target(value: str) -> str:
    try:
        return _target_enum(value).value
    except ValueError as exc:
        raise PayloadValidationError(f"Unknown RMA status or action '{value}'.") from exc


def _target_enum(target: str) -> Enum:
    try:
        return models.RMAStatusEnum(target)
    except ValueError:
        return models.RMAActionEnum(target)


def _set_display_status(case: models.RMARequest, new_status: models.RMAStatusEnum, *, track: str) -> None:
    """
    Mirror a track step into the top-level status.

    A track may overwrite the status when it is still generic, already shows
    this track, or the other track has finished.
    """
    if track == "repair":
        own_statuses, other_done = REPAIR_DISPLAY_STATUSES, convergence.replacement_done(case)
    else:
        own_statuses, other_done = REPLACEMENT_DISPLAY_STATUSES, convergence.repair_done(case)

    if case.status in GENERIC_DISPLAY_STATUSES or case.status in own_statuses or other_done:
        case.status = new_status


def _save_case(db: Session, case: models.RMARequest) -> None:
    db.add(case)
    try:
        db.flush()
    except StaleDataError as exc:
        raise ConflictError(
            f"RMA {case.rma_number} was modified by another request. Reload and retry."
        ) from exc


def _finish(
    db: Session,
    case: models.RMARequest,
    *,
    ticket: ticket_models.Ticket,
    actor_id: Optional[str],
    timeline_status: str,
    remarks: Optional[str],
    activity: str,
) -> None:
    now = _utcnow()
    case.timeline.append(
        models.RMATimelineEntry(
            status=timeline_status,
            changed_by_user_id=actor_id,
            remarks=remarks or f"Status updated to {timeline_status}",
            changed_at=now,
        )
    )
    if convergence.settle(case, now=now):
        logger.info(
            "RMA finalized",
            extra={"rma_id": case.id, "rma_number": case.rma_number, "repair": _value(case.repair_track_status)},
        )
        activity = f"{activity}\nBoth repair and replacement are complete; the RMA is closed."

    content = f"**RMA {case.rma_number}**: {activity}"
    if remarks:
        content = f"{content}\n\n**Remarks:** {remarks}"
    ticket_services.record_activity(db, ticket_id=ticket.id, user_id=actor_id, content=content)
    _save_case(db, case)


# ---------------------------------------------------------------------------
# ASSET SIDE EFFECTS
# ---------------------------------------------------------------------------


def _move(
    db: Session,
    case: models.RMARequest,
    asset: asset_models.Asset,
    movement_type: stock_models.StockMovementTypeEnum,
    actor_id: Optional[str],
    **changes: Any,
) -> stock_models.StockMovementLog:
    return stock_services.move_asset(
        db,
        asset=asset,
        movement_type=movement_type,
        performed_by_user_id=actor_id,
        rma_id=case.id,
        ticket_id=case.ticket_id,
        **changes,
    )


def _move_if_changed(
    db: Session,
    case: models.RMARequest,
    asset: asset_models.Asset,
    movement_type: stock_models.StockMovementTypeEnum,
    actor_id: Optional[str],
    *,
    to_status: asset_models.AssetStatusEnum,
    to_site_id: Optional[int] = None,
    **changes: Any,
) -> Optional[stock_models.StockMovementLog]:
    site_changes = to_site_id is not None and to_site_id != asset.site_id
    if asset.status == to_status and not site_changes:
        return None
    return _move(db, case, asset, movement_type, actor_id, to_status=to_status, to_site_id=to_site_id, **changes)


def _faulty_asset(db: Session, case: models.RMARequest) -> asset_models.Asset:
    return asset_services.get_asset_or_404(db, identity.get_faulty_asset_id(case), label="Faulty asset")


def _reserve_spare(db: Session, case: models.RMARequest, spare_id: int, actor_id: Optional[str]) -> asset_models.Asset:
    if spare_id == case.original_asset_id:
        raise PayloadValidationError("An asset cannot be reserved as its own replacement.")
    spare = asset_services.get_asset_or_404(db, spare_id, label="Replacement asset")
    if spare.status != AssetStatus.SPARE or spare.reserved_by_rma_id:
        raise ConflictError(f"Asset {spare.asset_code} is not an available spare.")
    slot = asset_services.get_asset_or_404(db, case.original_asset_id)
    if spare.asset_type != slot.asset_type:
        raise PayloadValidationError(
            f"Replacement {spare.asset_code} is a {spare.asset_type}; the faulty asset is a {slot.asset_type}."
        )

    _move(
        db,
        case,
        spare,
        Movement.RESERVED,
        actor_id,
        to_status=AssetStatus.RESERVED,
        reserved_by_rma_id=case.id,
        notes=f"Reserved as replacement for {slot.asset_code} ({case.rma_number})",
    )
    case.reserved_asset_id = spare.id
    case.replacement_details = {
        **identity.OccupantIdentity.of(spare).as_dict(),
        "asset_code": spare.asset_code,
        "preview": True,
    }
    return spare


def _release_spare(db: Session, case: models.RMARequest, actor_id: Optional[str], *, notes: str) -> None:
    spare = asset_services.get_asset(db, case.reserved_asset_id)
    if spare is None or spare.reserved_by_rma_id != case.id:
        return
    _move(
        db,
        case,
        spare,
        Movement.RELEASED,
        actor_id,
        to_status=AssetStatus.SPARE,
        reserved_by_rma_id=None,
        notes=notes,
    )


def _apply_network_details(asset: asset_models.Asset, data: schemas.ConfirmInstallation) -> None:
    if data.new_ip_address:
        asset.ip_address = data.new_ip_address
    if data.new_user_name:
        asset.user_name = data.new_user_name
    if data.new_password:
        asset.password = data.new_password


def _masked_replacement_details(case: models.RMARequest, data: schemas.ConfirmInstallation, **fields: Any) -> Dict[str, Any]:
    previous = dict(case.replacement_details or {})
    previous.pop("preview", None)
    details = {**previous, **fields}
    if data.new_ip_address:
        details["ip_address"] = data.new_ip_address
    if data.new_user_name:
        details["user_name"] = data.new_user_name
    if data.new_password:
        details["password"] = MASKED_PASSWORD
    return details


def _merge_logistics(existing: Optional[Dict[str, Any]], payload: schemas.RMAStatusUpdate) -> Optional[Dict[str, Any]]:
    if payload.logistics is None:
        return existing
    return {**(existing or {}), **payload.logistics.model_dump(mode="json", exclude_none=True)}


def _already_on_site_logistics(case: models.RMARequest) -> Dict[str, Any]:
    received = case.approved_at or case.created_at or _utcnow()
    return {
        **(case.logistics_replacement_to_site or {}),
        "remarks": ALREADY_ON_SITE_NOTE,
        "received_at": received.isoformat(),
        "synthesized": True,
    }


# ---------------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------------


def _initialize_tracks(case: models.RMARequest, actor_id: Optional[str]) -> None:
    case.approved_by_user_id = actor_id
    case.approved_at = _utcnow()
    case.repair_track_status = RepairTrack.PENDING

    if case.replacement_source != models.ReplacementSourceEnum.REPAIR_AND_REPLACE:
        case.replacement_track_status = ReplacementTrack.NOT_REQUIRED
    elif case.reserved_asset_id:
        case.replacement_track_status = ReplacementTrack.RECEIVED
        case.logistics_replacement_to_site = _already_on_site_logistics(case)
    else:
        case.replacement_track_status = ReplacementTrack.PENDING


def create_case(
    db: Session,
    *,
    payload: schemas.RMACreate,
    actor: account_models.User,
) -> models.RMARequest:
    ticket = ticket_services.get_ticket_or_404(db, payload.ticket_id)
    if not ticket.asset_id:
        raise PayloadValidationError(f"Ticket {ticket.ticket_number} has no asset to raise an RMA for.")
    slot = asset_services.get_asset_or_404(db, ticket.asset_id)

    site_id = ticket.site_id or slot.site_id
    if payload.site_id is not None and payload.site_id != site_id:
        raise PayloadValidationError(
            f"Site {payload.site_id} does not match the ticket's site {site_id}."
        )
    asset_services.get_site_or_404(db, site_id)

    existing = _active_case_for_ticket(db, ticket.id)
    if existing:
        raise ConflictError(f"Ticket {ticket.ticket_number} already has an active RMA ({existing.rma_number}).")

    if payload.reserved_asset_id and payload.replacement_source != models.ReplacementSourceEnum.REPAIR_AND_REPLACE:
        raise PayloadValidationError("A replacement can only be reserved for RepairAndReplace requests.")

    direct = account_services.can_create_direct_rma(actor, site_id=site_id)
    now = _utcnow()
    case = models.RMARequest(
        rma_number=_next_rma_number(db, now),
        ticket_id=ticket.id,
        site_id=site_id,
        original_asset_id=slot.id,
        status=Status.APPROVED if direct else Status.REQUESTED,
        replacement_source=payload.replacement_source,
        item_send_route=payload.item_send_route,
        original_details_snapshot={
            **identity.OccupantIdentity.of(slot).as_dict(),
            "location_description": slot.location_description,
        },
        request_reason=payload.request_reason,
        requested_by_user_id=actor.id,
        created_at=now,
    )
    db.add(case)
    db.flush()

    if payload.reserved_asset_id:
        _reserve_spare(db, case, payload.reserved_asset_id, actor.id)
    if direct:
        _initialize_tracks(case, actor.id)

    audit_services.log_event(
        db,
        actor_user_id=actor.id,
        entity_type=WORKFLOW,
        entity_id=str(case.id),
        action="create",
        after=_state_dict(case),
        metadata={"workflow": WORKFLOW, "direct": direct},
        critical=True,
    )

    ticket.rma_id = case.id
    ticket.rma_number = case.rma_number
    db.add(ticket)

    headline = "RMA raised and approved directly." if direct else "RMA requested; awaiting approval."
    _finish(
        db,
        case,
        ticket=ticket,
        actor_id=actor.id,
        timeline_status=_value(case.status),
        remarks=payload.request_reason,
        activity=f"{headline} Route: {_value(case.replacement_source)}.",
    )
    logger.info(
        "RMA created",
        extra={"rma_id": case.id, "rma_number": case.rma_number, "ticket_id": ticket.id, "direct": direct},
    )
    return case


# ---------------------------------------------------------------------------
# ADVANCE HANDLERS
# ---------------------------------------------------------------------------

Handler = Callable[[Session, models.RMARequest, models.RMAStatusEnum, schemas.RMAStatusUpdate, Optional[str]], str]


def _handle_approved(db, case, target, payload, actor_id) -> str:
    case.status = Status.APPROVED
    _initialize_tracks(case, actor_id)
    if case.replacement_track_status == ReplacementTrack.RECEIVED:
        return "RMA approved. Reserved replacement is already on-site."
    return "RMA approved."


def _handle_rejected(db, case, target, payload, actor_id) -> str:
    _release_spare(db, case, actor_id, notes=f"Released: {case.rma_number} rejected")
    case.status = Status.REJECTED
    return "RMA rejected."


def _handle_legacy(db, case, target, payload, actor_id) -> str:
    case.status = target
    return f"Status updated to {target.value}."


def _handle_repair_step(db, case, target, payload, actor_id) -> str:
    if target == Status.SENT_TO_SERVICE_CENTER:
        case.item_send_route = payload.item_send_route or models.ItemSendRouteEnum.SERVICE_CENTER
    elif target == Status.SENT_TO_HO:
        case.item_send_route = payload.item_send_route or models.ItemSendRouteEnum.HEAD_OFFICE

    field = LOGISTICS_FIELD_BY_STATUS.get(target)
    if field:
        setattr(case, field, _merge_logistics(getattr(case, field), payload))
    if payload.vendor_details and target in IN_REPAIR_STATUSES:
        case.vendor_details = dict(payload.vendor_details)

    if target in IN_REPAIR_STATUSES:
        faulty = _faulty_asset(db, case)
        _move_if_changed(
            db,
            case,
            faulty,
            Movement.STATUS_CHANGE,
            actor_id,
            to_status=AssetStatus.IN_REPAIR,
            notes=f"Sent for repair ({case.rma_number})",
        )
    elif target in BACK_AT_SITE_STATUSES:
        faulty = _faulty_asset(db, case)
        _move_if_changed(
            db,
            case,
            faulty,
            Movement.REPAIRED_RETURN,
            actor_id,
            to_status=AssetStatus.NOT_INSTALLED,
            to_site_id=case.site_id,
            notes=f"Repaired item received at site ({case.rma_number})",
        )

    case.repair_track_status = REPAIR_TRACK_BY_STATUS[target]
    _set_display_status(case, target, track="repair")
    return f"Repair update: {target.value}."


def _handle_item_repaired_at_ho(db, case, target, payload, actor_id) -> str:
    destination = payload.repaired_item_destination
    case.repaired_item_destination = destination
    faulty = _faulty_asset(db, case)

    if destination == models.RepairedItemDestinationEnum.HO_STOCK:
        ho_site = asset_services.get_head_office_site(db)
        _move_if_changed(
            db,
            case,
            faulty,
            Movement.REPAIRED_RETURN,
            actor_id,
            to_status=AssetStatus.SPARE,
            to_site_id=ho_site.id,
            location_description="Head office stock",
            notes=f"Repaired at HO, kept in HO stock ({case.rma_number})",
        )
        case.repair_track_status = RepairTrack.COMPLETED_TO_HO_STOCK
        _set_display_status(case, Status.COMPLETED_TO_HO_STOCK, track="repair")
        return "Item repaired at HO and added to HO stock."

    case.repair_track_status = RepairTrack.REPAIRED
    _set_display_status(case, Status.ITEM_REPAIRED_AT_HO, track="repair")
    return "Item repaired at HO; it will be shipped back to site."


def _handle_add_to_site_stock(db, case, target, payload, actor_id) -> str:
    site = asset_services.get_site_or_404(db, payload.destination_site_id or case.site_id)
    faulty = _faulty_asset(db, case)
    _move_if_changed(
        db,
        case,
        faulty,
        Movement.REPAIRED_RETURN,
        actor_id,
        to_status=AssetStatus.SPARE,
        to_site_id=site.id,
        location_description=f"{site.site_name} spare stock",
        notes=f"Repaired item added to site stock ({case.rma_number})",
    )
    case.repair_track_status = RepairTrack.ADDED_TO_SITE_STOCK
    _set_display_status(case, Status.ADDED_TO_SITE_STOCK, track="repair")
    return f"Repaired item added to {site.site_name} spare stock."


def _handle_modify_to_repair_and_replace(db, case, target, payload, actor_id) -> str:
    case.replacement_source = models.ReplacementSourceEnum.REPAIR_AND_REPLACE
    case.replacement_track_status = ReplacementTrack.PENDING
    return "RMA upgraded to repair and replace; a replacement will be arranged."


def _handle_requisition_raised(db, case, target, payload, actor_id) -> str:
    case.replacement_stock_source = payload.stock_source
    if payload.source_site_id is not None:
        asset_services.get_site_or_404(db, payload.source_site_id)
        case.replacement_source_site_id = payload.source_site_id

    spare_id = payload.replacement_asset_id
    if spare_id and spare_id != case.reserved_asset_id:
        if case.reserved_asset_id:
            _release_spare(db, case, actor_id, notes=f"Released: {case.rma_number} reserved a different replacement")
        _reserve_spare(db, case, spare_id, actor_id)

    case.replacement_track_status = ReplacementTrack.REQUISITION_RAISED
    _set_display_status(case, Status.REPLACEMENT_REQUISITION_RAISED, track="replacement")
    return f"Replacement requisition raised from {_value(payload.stock_source)}."


def _handle_replacement_dispatched(db, case, target, payload, actor_id) -> str:
    if case.reserved_asset_id:
        spare = asset_services.get_asset_or_404(db, case.reserved_asset_id, label="Replacement asset")
        _move_if_changed(
            db,
            case,
            spare,
            Movement.RMA_TRANSFER,
            actor_id,
            to_status=AssetStatus.IN_TRANSIT,
            notes=f"Replacement dispatched to site ({case.rma_number})",
        )
    case.logistics_replacement_to_site = _merge_logistics(case.logistics_replacement_to_site, payload)
    case.replacement_track_status = ReplacementTrack.DISPATCHED
    _set_display_status(case, Status.REPLACEMENT_DISPATCHED, track="replacement")
    return "Replacement dispatched to site."


def _handle_replacement_received(db, case, target, payload, actor_id) -> str:
    if case.reserved_asset_id:
        spare = asset_services.get_asset_or_404(db, case.reserved_asset_id, label="Replacement asset")
        _move_if_changed(
            db,
            case,
            spare,
            Movement.RMA_TRANSFER,
            actor_id,
            to_status=AssetStatus.RESERVED,
            to_site_id=case.site_id,
            notes=f"Replacement received at site ({case.rma_number})",
        )
    logistics = dict(_merge_logistics(case.logistics_replacement_to_site, payload) or {})
    logistics.setdefault("received_at", _utcnow().isoformat())
    case.logistics_replacement_to_site = logistics
    case.replacement_track_status = ReplacementTrack.RECEIVED
    _set_display_status(case, Status.REPLACEMENT_RECEIVED_AT_SITE, track="replacement")
    return "Replacement received at site."


_ADVANCE_HANDLERS: Dict[str, Handler] = {
    Status.APPROVED.value: _handle_approved,
    Status.REJECTED.value: _handle_rejected,
    Status.ITEM_REPAIRED_AT_HO.value: _handle_item_repaired_at_ho,
    models.RMAActionEnum.ADD_TO_SITE_STOCK.value: _handle_add_to_site_stock,
    models.RMAActionEnum.MODIFY_TO_REPAIR_AND_REPLACE.value: _handle_modify_to_repair_and_replace,
    Status.REPLACEMENT_REQUISITION_RAISED.value: _handle_requisition_raised,
    Status.REPLACEMENT_DISPATCHED.value: _handle_replacement_dispatched,
    Status.REPLACEMENT_RECEIVED_AT_SITE.value: _handle_replacement_received,
}
_ADVANCE_HANDLERS.update({status.value: _handle_legacy for status in LEGACY_STATUSES})
_ADVANCE_HANDLERS.update({status.value: _handle_repair_step for status in REPAIR_TRACK_BY_STATUS})


def _payload_state(payload: schemas.RMAStatusUpdate) -> Dict[str, Any]:
    return {
        "stock_source": payload.stock_source,
        "source_site_id": payload.source_site_id,
        "repaired_item_destination": payload.repaired_item_destination,
        "installed_track": payload.installed_track,
        "replacement_asset_id": payload.replacement_asset_id,
    }


def advance_status(
    db: Session,
    *,
    rma_id: int,
    payload: schemas.RMAStatusUpdate,
    actor: account_models.User,
) -> models.RMARequest:
    target = _parse_target(payload.status)

    if target == Status.INSTALLED.value:
        if payload.installed_track is None:
            raise PayloadValidationError("installed_track is required to mark an RMA as installed.")
        return confirm_installation(
            db,
            rma_id=rma_id,
            payload=schemas.ConfirmInstallation(
                installed_track=payload.installed_track,
                installation_status=payload.installation_status,
                remarks=payload.remarks,
                expected_version=payload.expected_version,
                replacement_details=payload.replacement_details,
                new_ip_address=payload.new_ip_address,
                new_user_name=payload.new_user_name,
                new_password=payload.new_password,
            ),
            actor=actor,
        )

    case = get_case_or_404(db, rma_id)
    _check_version(case, payload.expected_version)
    _ensure_not_terminal(case)
    ticket = ticket_services.get_ticket_or_404(db, case.ticket_id)

    _run_transition(db, case=case, target=target, actor_id=actor.id, payload_state=_payload_state(payload))

    handler = _ADVANCE_HANDLERS[target]
    activity = handler(db, case, _target_enum(target), payload, actor.id)

    _finish(
        db,
        case,
        ticket=ticket,
        actor_id=actor.id,
        timeline_status=target,
        remarks=payload.remarks,
        activity=activity,
    )
    logger.info(
        "RMA status advanced",
        extra={"rma_id": case.id, "target": target, "status": _value(case.status), "actor_user_id": actor.id},
    )
    return case


# ---------------------------------------------------------------------------
# INSTALLATION
# ---------------------------------------------------------------------------


def _register_incoming_unit(
    db: Session,
    case: models.RMARequest,
    slot: asset_models.Asset,
    details: schemas.ReplacementIdentity,
    actor_id: Optional[str],
) -> asset_models.Asset:
    """Record a replacement that never passed through stock (e.g. bought locally) so it can be swapped in."""
    unit = asset_models.Asset(
        asset_code=f"{slot.asset_code}-R{case.id}",
        asset_type=slot.asset_type,
        device_type=slot.device_type,
        site_id=case.site_id,
        status=AssetStatus.RESERVED,
        reserved_by_rma_id=case.id,
        serial_number=details.serial_number,
        mac=details.mac,
        make=details.make or slot.make,
        model=details.model or slot.model,
        location_description=f"Replacement unit for {slot.asset_code}",
    )
    db.add(unit)
    db.flush()
    stock_services.log_movement(
        db,
        asset=unit,
        movement_type=Movement.ADDED,
        from_site_id=None,
        to_site_id=case.site_id,
        from_status=None,
        to_status=AssetStatus.RESERVED,
        performed_by_user_id=actor_id,
        rma_id=case.id,
        ticket_id=case.ticket_id,
        notes=f"Replacement unit registered for {case.rma_number}",
    )
    case.reserved_asset_id = unit.id
    return unit


def _install_replacement(
    db: Session,
    case: models.RMARequest,
    data: schemas.ConfirmInstallation,
    actor_id: Optional[str],
) -> str:
    slot = asset_services.get_asset_or_404(db, case.original_asset_id, label="Slot asset")
    if case.reserved_asset_id:
        unit = asset_services.get_asset_or_404(db, case.reserved_asset_id, label="Replacement asset")
    elif data.replacement_details is not None:
        unit = _register_incoming_unit(db, case, slot, data.replacement_details, actor_id)
    else:
        raise PayloadValidationError(
            "replacement_details are required when no replacement unit is reserved."
        )

    # A repair finished into stock has already moved the slot row; that stock
    # position belongs to the repaired unit, which the swap puts on ``unit``.
    stocked_site_id = slot.site_id
    stocked_location = slot.location_description
    slot_location = (case.original_details_snapshot or {}).get("location_description", slot.location_description)

    result = identity.swap_identities(slot, unit, new_ip_address=data.new_ip_address)
    if data.new_user_name:
        slot.user_name = data.new_user_name
    if data.new_password:
        slot.password = data.new_password

    old_serial = result.old_identity.serial_number
    new_serial = result.new_identity.serial_number
    _move(
        db,
        case,
        slot,
        Movement.REPLACED,
        actor_id,
        to_status=AssetStatus.OPERATIONAL,
        to_site_id=case.site_id,
        reserved_by_rma_id=None,
        location_description=slot_location,
        notes=f"Replaced S/N {old_serial} -> {new_serial} ({case.rma_number})",
    )

    if case.repair_track_status in REPAIR_STOCKED_STATES:
        _move(
            db,
            case,
            unit,
            Movement.STATUS_CHANGE,
            actor_id,
            to_status=AssetStatus.SPARE,
            to_site_id=stocked_site_id,
            reserved_by_rma_id=None,
            location_description=stocked_location,
            notes=f"Now holds repaired unit S/N {old_serial}",
        )
    else:
        repair_finished = convergence.repair_done(case)
        _move(
            db,
            case,
            unit,
            Movement.STATUS_CHANGE,
            actor_id,
            to_status=AssetStatus.SPARE if repair_finished else AssetStatus.IN_REPAIR,
            reserved_by_rma_id=None,
            location_description=(
                f"Unit removed from {slot.asset_code} ({case.rma_number})"
                if repair_finished
                else f"Faulty unit from {slot.asset_code} pending repair ({case.rma_number})"
            ),
            notes=f"Now holds faulty unit S/N {old_serial}",
        )

    case.replacement_details = _masked_replacement_details(case, data, **result.new_identity.as_dict())
    case.replacement_track_status = ReplacementTrack.INSTALLED
    case.installed_by_user_id = actor_id
    case.installed_at = _utcnow()
    _set_display_status(case, Status.REPLACEMENT_INSTALLED, track="replacement")

    return (
        "Installation confirmed. Hardware swap completed: "
        f"old S/N {old_serial}, new S/N {new_serial}, IP {slot.ip_address or '-'}."
    )


def _install_repair(
    db: Session,
    case: models.RMARequest,
    data: schemas.ConfirmInstallation,
    actor_id: Optional[str],
) -> str:
    slot = _faulty_asset(db, case)
    _apply_network_details(slot, data)
    _move_if_changed(
        db,
        case,
        slot,
        Movement.STATUS_CHANGE,
        actor_id,
        to_status=AssetStatus.OPERATIONAL,
        to_site_id=case.site_id,
        reserved_by_rma_id=None,
        notes=f"Repaired unit reinstalled ({case.rma_number})",
    )
    if data.new_ip_address or data.new_user_name or data.new_password:
        case.replacement_details = _masked_replacement_details(case, data)

    case.repair_track_status = RepairTrack.INSTALLED
    case.installed_by_user_id = actor_id
    case.installed_at = _utcnow()
    _set_display_status(case, Status.REPAIR_INSTALLED, track="repair")
    return "Installation confirmed. The repaired device is installed and working."


def confirm_installation(
    db: Session,
    *,
    rma_id: int,
    payload: schemas.ConfirmInstallation,
    actor: account_models.User,
) -> models.RMARequest:
    if payload.installation_status == models.InstallationStatusEnum.PENDING:
        raise PayloadValidationError("installation_status must be a confirmation outcome, not Pending.")

    case = get_case_or_404(db, rma_id)
    _check_version(case, payload.expected_version)
    _ensure_not_terminal(case)
    ticket = ticket_services.get_ticket_or_404(db, case.ticket_id)

    _run_transition(
        db,
        case=case,
        target=Status.INSTALLED.value,
        actor_id=actor.id,
        payload_state={
            "installed_track": payload.installed_track,
            "installation_status": payload.installation_status,
        },
    )

    case.installation_status = payload.installation_status
    outcome = payload.installation_status
    if outcome == models.InstallationStatusEnum.INSTALLED_AND_WORKING:
        if payload.installed_track == models.InstallTrackEnum.REPLACEMENT:
            activity = _install_replacement(db, case, payload, actor.id)
        else:
            activity = _install_repair(db, case, payload, actor.id)
        case.is_installation_confirmed = True
        ticket.rma_verified = True
    elif outcome == models.InstallationStatusEnum.INSTALLED_NOT_WORKING:
        ticket.status = ticket_models.TicketStatusEnum.ESCALATED
        ticket.rma_verified = False
        activity = "Installation failed: the device is installed but not working. Ticket escalated."
    else:
        ticket.rma_verified = False
        activity = "Installation postponed: the device has not been installed yet."
    db.add(ticket)

    _finish(
        db,
        case,
        ticket=ticket,
        actor_id=actor.id,
        timeline_status=f"Installation Confirmed: {outcome.value}",
        remarks=payload.remarks,
        activity=activity,
    )
    logger.info(
        "RMA installation confirmed",
        extra={
            "rma_id": case.id,
            "track": payload.installed_track.value,
            "outcome": outcome.value,
            "status": _value(case.status),
        },
    )
    return case


# ---------------------------------------------------------------------------
# READS AND SELF-HEAL
# ---------------------------------------------------------------------------


def needs_replacement_heal(case: models.RMARequest) -> bool:
    """Approved RepairAndReplace case with a reserved spare whose replacement track never moved."""
    return (
        bool(case.reserved_asset_id)
        and case.replacement_source == models.ReplacementSourceEnum.REPAIR_AND_REPLACE
        and case.status == Status.APPROVED
        and case.replacement_track_status in (None, ReplacementTrack.PENDING)
    )


def effective_case_view(case: models.RMARequest) -> schemas.RMARead:
    """Client view of a case with the legacy replacement-track repair applied. Never writes."""
    view = schemas.RMARead.model_validate(case)
    if not needs_replacement_heal(case):
        return view
    return view.model_copy(
        update={
            "replacement_track_status": ReplacementTrack.RECEIVED,
            "logistics_replacement_to_site": _already_on_site_logistics(case),
        }
    )


def heal_replacement_track(db: Session, case: models.RMARequest) -> bool:
    """Persist the replacement-track repair. Idempotent; returns True when the case changed."""
    if not needs_replacement_heal(case):
        return False
    before = _state_dict(case)
    case.replacement_track_status = ReplacementTrack.RECEIVED
    case.logistics_replacement_to_site = _already_on_site_logistics(case)
    audit_services.log_event(
        db,
        actor_user_id=None,
        entity_type=WORKFLOW,
        entity_id=str(case.id),
        action="self_heal",
        before=before,
        after=_state_dict(case),
        metadata={"workflow": WORKFLOW, "reason": "replacement track never advanced"},
        critical=True,
    )
    _save_case(db, case)
    return True


def list_cases(
    db: Session,
    *,
    status: Optional[models.RMAStatusEnum] = None,
    site_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    page = max(page, 1)
    limit = max(min(limit, 200), 1)
    query = db.query(models.RMARequest)
    if site_id is not None:
        query = query.filter(models.RMARequest.site_id == site_id)

    scoped = query
    if status is not None:
        query = query.filter(models.RMARequest.status == status)

    total = query.count()
    cases = (
        query.order_by(models.RMARequest.created_at.desc(), models.RMARequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    ongoing = scoped.filter(models.RMARequest.status.notin_(list(convergence.TERMINAL_STATUSES))).count()
    completed = scoped.filter(models.RMARequest.status == Status.INSTALLED).count()
    return {
        "data": [effective_case_view(case) for case in cases],
        "ongoing": ongoing,
        "completed": completed,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def get_case_view(db: Session, *, rma_id: int) -> schemas.RMARead:
    return effective_case_view(get_case_or_404(db, rma_id))


def get_case_by_ticket(db: Session, *, ticket_id: int) -> schemas.RMARead:
    case = (
        db.query(models.RMARequest)
        .filter(models.RMARequest.ticket_id == ticket_id)
        .order_by(models.RMARequest.created_at.desc(), models.RMARequest.id.desc())
        .first()
    )
    if not case:
        raise NotFoundError(f"No RMA found for ticket {ticket_id}.")
    return effective_case_view(case)


def get_case_history_by_asset(db: Session, *, asset_id: int) -> List[schemas.RMARead]:
    asset_services.get_asset_or_404(db, asset_id)
    cases = (
        db.query(models.RMARequest)
        .filter(
            or_(
                models.RMARequest.original_asset_id == asset_id,
                models.RMARequest.reserved_asset_id == asset_id,
            )
        )
        .order_by(models.RMARequest.created_at.desc(), models.RMARequest.id.desc())
        .all()
    )
    return [effective_case_view(case) for case in cases]


def list_case_movements(db: Session, *, rma_id: int) -> List[stock_models.StockMovementLog]:
    get_case_or_404(db, rma_id)
    return (
        db.query(stock_models.StockMovementLog)
        .filter(stock_models.StockMovementLog.rma_id == rma_id)
        .order_by(stock_models.StockMovementLog.created_at.asc(), stock_models.StockMovementLog.id.asc())
        .all()
    )
