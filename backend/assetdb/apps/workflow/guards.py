from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]

REPAIR_DONE = {"Installed", "CompletedToHOStock", "AddedToSiteStock"}
REPLACEMENT_DONE = {"NotRequired", "Installed"}

STOCK_SOURCES = {"HOStock", "SiteStock", "Market"}
REPAIRED_ITEM_DESTINATIONS = {"HOStock", "BackToSite"}
INSTALL_TRACKS = {"repair", "replacement"}


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        value = obj.get(key)
    else:
        value = getattr(obj, key, None)
    if isinstance(value, Enum):
        return value.value
    return value


def guard_repair_track_open(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _get_value(before_obj, "repair_track_status") in REPAIR_DONE:
        return [{"field": "repair_track_status", "reason": "repair track is already complete"}]
    return []


def guard_replacement_required(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _get_value(before_obj, "replacement_source") != "RepairAndReplace":
        return [{"field": "replacement_source", "reason": "case has no replacement track"}]
    if _get_value(before_obj, "replacement_track_status") in REPLACEMENT_DONE:
        return [{"field": "replacement_track_status", "reason": "replacement track is already complete"}]
    return []


def guard_requisition_stock_source(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    stock_source = _get_value(after_obj, "stock_source")
    if not stock_source:
        return [{"field": "stock_source", "reason": "stock source required"}]
    if stock_source not in STOCK_SOURCES:
        return [{"field": "stock_source", "reason": f"unknown stock source {stock_source}"}]
    if stock_source == "SiteStock" and not _get_value(after_obj, "source_site_id"):
        return [{"field": "source_site_id", "reason": "source site required for site stock"}]
    return []


def guard_repaired_item_destination(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    destination = _get_value(after_obj, "repaired_item_destination")
    if destination not in REPAIRED_ITEM_DESTINATIONS:
        return [{"field": "repaired_item_destination", "reason": "choose HOStock or BackToSite"}]
    return []


def guard_repaired_item_at_site(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _get_value(before_obj, "repair_track_status") != "ReceivedAtSite":
        return [{"field": "repair_track_status", "reason": "repaired item has not been received at site"}]
    return []


def guard_upgrade_to_replacement(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _get_value(before_obj, "replacement_source") != "RepairOnly":
        return [{"field": "replacement_source", "reason": "case already has a replacement track"}]
    return []


def guard_installation(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    track = _get_value(after_obj, "installed_track")
    if track not in INSTALL_TRACKS:
        return [{"field": "installed_track", "reason": "choose repair or replacement"}]

    replacement_status = _get_value(before_obj, "replacement_track_status")
    if track == "replacement":
        if _get_value(before_obj, "replacement_source") != "RepairAndReplace":
            return [{"field": "replacement_source", "reason": "case has no replacement track"}]
        if replacement_status == "Installed":
            return [{"field": "replacement_track_status", "reason": "replacement is already installed"}]
        return []

    if _get_value(before_obj, "repair_track_status") in REPAIR_DONE:
        return [{"field": "repair_track_status", "reason": "repair track is already complete"}]
    if replacement_status == "Installed":
        return [{"field": "replacement_track_status", "reason": "slot already holds the replacement unit"}]
    return []
