"""RMA replacement-track backfill.

One-off (safe to re-run) job for cases created before the replacement track
was fast-forwarded on approval: approved RepairAndReplace cases holding a
reserved spare whose replacement track never left Pending are moved to
Received with an "already on-site" logistics note.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from assetdb.database import WriteSessionLocal
from assetdb.apps.rma import models as rma_models
from assetdb.apps.rma import services as rma_services

logger = logging.getLogger(__name__)


def backfill_replacement_tracks(db: Session) -> dict:
    candidates = (
        db.query(rma_models.RMARequest)
        .filter(
            rma_models.RMARequest.status == rma_models.RMAStatusEnum.APPROVED,
            rma_models.RMARequest.replacement_source == rma_models.ReplacementSourceEnum.REPAIR_AND_REPLACE,
            rma_models.RMARequest.reserved_asset_id.isnot(None),
        )
        .all()
    )
    healed = [case.id for case in candidates if rma_services.heal_replacement_track(db, case)]
    if healed:
        logger.info("Backfilled RMA replacement tracks", extra={"rma_ids": healed})
    return {"scanned": len(candidates), "healed": len(healed)}


def run() -> dict:
    """Execute the backfill and return a summary dict."""
    db = WriteSessionLocal()
    try:
        summary = backfill_replacement_tracks(db)
        db.commit()
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("RMA replacement-track backfill completed:", result)
