from __future__ import annotations

from sqlalchemy import event

from assetdb.errors import AppendOnlyViolation


def protect_append_only(model_cls, label: str) -> None:
    """Reject ORM UPDATE and DELETE flushes for ``model_cls`` rows."""

    @event.listens_for(model_cls, "before_update")
    def _prevent_update(mapper, connection, target):
        raise AppendOnlyViolation(f"{label} {getattr(target, 'id', None)} is append-only and cannot be modified.")

    @event.listens_for(model_cls, "before_delete")
    def _prevent_delete(mapper, connection, target):
        raise AppendOnlyViolation(f"{label} {getattr(target, 'id', None)} is append-only and cannot be deleted.")
