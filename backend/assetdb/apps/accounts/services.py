from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from . import models

DIRECT_RMA_ROLES = {models.AccountRole.ADMIN, models.AccountRole.SUPERVISOR}


def has_right(
    user: models.User,
    right: models.RightCode,
    *,
    site_id: Optional[int] = None,
) -> bool:
    """
    True when the user holds ``right`` globally, or for ``site_id``.
    """
    for grant in user.rights or []:
        if grant.right_code != right:
            continue
        if grant.site_id is None:
            return True
        if site_id is not None and grant.site_id == site_id:
            return True
    return False


def can_create_direct_rma(user: models.User, *, site_id: Optional[int]) -> bool:
    """Direct RMA skips the approval step: role based, or an explicit grant."""
    if getattr(user, "is_superuser", False):
        return True
    if user.role in DIRECT_RMA_ROLES:
        return True
    return has_right(user, models.RightCode.DIRECT_RMA_GENERATE, site_id=site_id)
