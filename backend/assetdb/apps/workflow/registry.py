from __future__ import annotations

from .guards import (
    guard_installation,
    guard_repair_track_open,
    guard_repaired_item_at_site,
    guard_repaired_item_destination,
    guard_replacement_required,
    guard_requisition_stock_source,
    guard_upgrade_to_replacement,
)

# Fallback source state: used when ``from_state`` has no entry of its own.
ANY_STATE = "*"

WORKFLOWS = {
    "rma_case": {
        "transitions": {
            "Requested": {
                "Approved": [],
                "Rejected": [],
            },
            "Rejected": {},
            "Installed": {},
            ANY_STATE: {
                # legacy statuses, top-level only
                "Ordered": [],
                "Dispatched": [],
                "Received": [],
                # repair track
                "SentToServiceCenter": [guard_repair_track_open],
                "SentToHO": [guard_repair_track_open],
                "ReceivedAtHO": [guard_repair_track_open],
                "SentForRepairFromHO": [guard_repair_track_open],
                "ItemRepairedAtHO": [guard_repair_track_open, guard_repaired_item_destination],
                "ReturnShippedToSite": [guard_repair_track_open],
                "ReceivedAtSite": [guard_repair_track_open],
                "RepairedReceivedAtSite": [guard_repair_track_open],
                "AddToSiteStock": [guard_repaired_item_at_site],
                # replacement track
                "ReplacementRequisitionRaised": [guard_replacement_required, guard_requisition_stock_source],
                "ReplacementDispatched": [guard_replacement_required],
                "ReplacementReceivedAtSite": [guard_replacement_required],
                # actions
                "ModifyToRepairAndReplace": [guard_upgrade_to_replacement],
                "Installed": [guard_installation],
            },
        }
    },
}
