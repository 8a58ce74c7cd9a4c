from __future__ import annotations

import pytest

from assetdb.apps.audit import models as audit_models
from assetdb.apps.workflow import TransitionError, apply_transition, check_transition


def _check(from_state, to_state, before=None, after=None):
    check_transition(
        None,
        entity_type="rma_case",
        from_state=from_state,
        to_state=to_state,
        before_obj=before or {},
        after_obj=after or {},
    )


def test_requested_case_can_only_be_approved_or_rejected():
    _check("Requested", "Approved")
    _check("Requested", "Rejected")

    with pytest.raises(TransitionError) as excinfo:
        _check("Requested", "SentToHO", before={"repair_track_status": None})
    assert excinfo.value.code == "invalid_transition"
    assert excinfo.value.detail[0]["field"] == "status"


def test_terminal_states_have_no_targets():
    for state in ("Rejected", "Installed"):
        with pytest.raises(TransitionError):
            _check(state, "SentToServiceCenter", before={"repair_track_status": "Pending"})


def test_open_states_fall_back_to_wildcard():
    before = {"repair_track_status": "Pending", "replacement_source": "RepairOnly"}
    _check("Approved", "SentToServiceCenter", before=before)
    _check("ReplacementInstalled", "SentToHO", before=before)
    _check("Approved", "Ordered", before=before)

    with pytest.raises(TransitionError) as excinfo:
        _check("Approved", "Approved", before=before)
    assert excinfo.value.code == "invalid_transition"


def test_guard_failures_are_reported_per_field():
    with pytest.raises(TransitionError) as excinfo:
        _check(
            "Approved",
            "ReplacementRequisitionRaised",
            before={"replacement_source": "RepairAndReplace", "replacement_track_status": "Pending"},
            after={"stock_source": "SiteStock"},
        )
    assert excinfo.value.code == "missing_requirements"
    assert excinfo.value.detail == [{"field": "source_site_id", "reason": "source site required for site stock"}]
    assert "source_site_id" in str(excinfo.value)

    with pytest.raises(TransitionError) as excinfo:
        _check("Approved", "SentToHO", before={"repair_track_status": "CompletedToHOStock"})
    assert excinfo.value.detail[0]["field"] == "repair_track_status"

    with pytest.raises(TransitionError) as excinfo:
        _check(
            "ReplacementInstalled",
            "Installed",
            before={
                "replacement_source": "RepairAndReplace",
                "replacement_track_status": "Installed",
                "repair_track_status": "ReceivedAtSite",
            },
            after={"installed_track": "repair"},
        )
    assert excinfo.value.detail[0]["field"] == "replacement_track_status"


def test_unknown_workflow_is_rejected():
    with pytest.raises(TransitionError) as excinfo:
        check_transition(
            None,
            entity_type="purchase_order",
            from_state="Draft",
            to_state="Sent",
            before_obj={},
            after_obj={},
        )
    assert excinfo.value.detail[0]["field"] == "entity_type"


def test_apply_transition_writes_audit_event(db_session):
    apply_transition(
        db_session,
        actor_user_id=None,
        entity_type="rma_case",
        entity_id="7",
        from_state="Requested",
        to_state="Approved",
        before_obj={"status": "Requested", "replacement_source": "RepairOnly"},
        after_obj={"replacement_source": "RepairOnly"},
    )
    db_session.commit()

    event = db_session.query(audit_models.AuditEvent).one()
    assert event.action == "transition"
    assert event.entity_id == "7"
    assert event.before["status"] == "Requested"
    assert event.after["status"] == "Approved"
    assert event.metadata_json == {"workflow": "rma_case"}


def test_rejected_transition_writes_nothing(db_session):
    with pytest.raises(TransitionError):
        apply_transition(
            db_session,
            actor_user_id=None,
            entity_type="rma_case",
            entity_id="7",
            from_state="Installed",
            to_state="Approved",
            before_obj={},
            after_obj={},
        )
    assert db_session.query(audit_models.AuditEvent).count() == 0
