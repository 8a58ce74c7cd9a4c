"""
Track convergence.

A case is finished when both of its tracks are done. This is a pure function
of the two track values; ``settle`` is the single place it is applied.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from . import models

REPAIR_DONE_STATES = frozenset(
    {
        models.RepairTrackStatusEnum.INSTALLED,
        models.RepairTrackStatusEnum.COMPLETED_TO_HO_STOCK,
        models.RepairTrackStatusEnum.ADDED_TO_SITE_STOCK,
    }
)
REPLACEMENT_DONE_STATES = frozenset(
    {
        models.ReplacementTrackStatusEnum.NOT_REQUIRED,
        models.ReplacementTrackStatusEnum.INSTALLED,
    }
)
TERMINAL_STATUSES = frozenset({models.RMAStatusEnum.REJECTED, models.RMAStatusEnum.INSTALLED})


def repair_done(case: models.RMARequest) -> bool:
    return case.repair_track_status in REPAIR_DONE_STATES


def replacement_done(case: models.RMARequest) -> bool:
    return case.replacement_track_status in REPLACEMENT_DONE_STATES


def is_converged(case: models.RMARequest) -> bool:
    return repair_done(case) and replacement_done(case)


def is_terminal(case: models.RMARequest) -> bool:
    return case.status in TERMINAL_STATUSES


def settle(case: models.RMARequest, *, now: Optional[datetime] = None) -> bool:
    """Finalize ``case`` when both tracks are done. Returns True if it finalized now."""
    if case.status == models.RMAStatusEnum.REJECTED:
        return False
    if not is_converged(case):
        return False
    if case.status == models.RMAStatusEnum.INSTALLED and case.is_faulty_item_finalized:
        return False
    case.status = models.RMAStatusEnum.INSTALLED
    case.is_faulty_item_finalized = True
    case.finalized_at = now or datetime.utcnow()
    return True
