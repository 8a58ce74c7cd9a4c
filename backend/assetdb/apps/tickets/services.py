from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from assetdb.errors import NotFoundError

from . import models


def get_ticket_or_404(db: Session, ticket_id: Optional[int]) -> models.Ticket:
    ticket = None
    if ticket_id is not None:
        ticket = db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found.")
    return ticket


def record_activity(
    db: Session,
    *,
    ticket_id: int,
    user_id: Optional[str],
    content: str,
    activity_type: models.TicketActivityTypeEnum = models.TicketActivityTypeEnum.RMA,
) -> models.TicketActivity:
    activity = models.TicketActivity(
        ticket_id=ticket_id,
        user_id=user_id,
        activity_type=activity_type,
        content=content,
    )
    db.add(activity)
    db.flush()
    return activity
