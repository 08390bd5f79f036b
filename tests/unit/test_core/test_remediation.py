import pytest
from unittest.mock import MagicMock
from core.errors import NotificationError, RepositoryError
from core.geometry import parse_polygon
from core.models import OverlapDecision, OverlapResult
from core.remediation import (
    AUDIT_ACTION,
    REASON_CODE,
    RemediationState,
    RemediationWorkflow,
)


def _polygon():
    return parse_polygon([[39.28, -6.8], [39.281, -6.8], [39.281, -6.799], [39.28, -6.799], [39.28, -6.8]])


def _decision(can_proceed=False):
    worst = OverlapResult(
        other_parcel_id="L-1",
        other_parcel_title="Kigamboni Beach Plot",
        owner_ref="owner-1",
        overlap_percentage=35.0,
        overlap_area_m2=4200.0,
        other_polygon=_polygon(),
    )
    return OverlapDecision(
        can_proceed=can_proceed,
        has_overlaps=True,
        max_overlap_percentage=35.0,
        top_overlaps=(worst,),
        message="",
    )


@pytest.fixture
def collaborators():
    """Repository and sink hanging off one parent mock so call order is recorded."""
    parent = MagicMock()
    parent.sink.notify_admins.return_value = 2
    parent.sink.send_email.return_value = True
    workflow = RemediationWorkflow(parent.repo, parent.sink, review_url="/admin/overlap-review")
    return parent, workflow


def test_accepted_does_nothing(collaborators):
    parent, workflow = collaborators
    outcome = workflow.run(_decision(can_proceed=True), "L-2", "Plot", "user-2")
    assert outcome.state == RemediationState.ACCEPTED
    assert parent.mock_calls == []


@pytest.mark.parametrize("submission_id,uploader_id", [(None, "user-2"), ("L-2", None), (None, None)])
def test_missing_context_stays_checked(collaborators, submission_id, uploader_id):
    parent, workflow = collaborators
    outcome = workflow.run(_decision(), submission_id, "Plot", uploader_id)
    assert outcome.state == RemediationState.CHECKED
    assert not outcome.deleted
    assert parent.mock_calls == []


def test_rejection_steps_in_order(collaborators):
    parent, workflow = collaborators
    outcome = workflow.run(_decision(), "L-2", "My Plot", "user-2")

    assert outcome.state == RemediationState.REJECTED
    assert outcome.deleted
    assert outcome.audit_logged
    assert outcome.user_notified
    assert outcome.email_sent
    assert outcome.admins_notified == 2

    names = [c[0] for c in parent.mock_calls]
    assert names == [
        "repo.delete_listing_artifacts",
        "sink.append_audit_log",
        "sink.notify_user",
        "sink.send_email",
        "sink.notify_admins",
    ]


def test_audit_details(collaborators):
    parent, workflow = collaborators
    workflow.run(_decision(), "L-2", "My Plot", "user-2")

    action, actor, details = parent.sink.append_audit_log.call_args[0]
    assert action == AUDIT_ACTION
    assert actor == "system"
    assert details["reason"] == REASON_CODE
    assert details["deleted_listing_id"] == "L-2"
    assert details["overlapping_listing_id"] == "L-1"
    assert details["overlapping_owner_id"] == "owner-1"
    assert details["overlap_percentage"] == 35.0


def test_messages_mention_overlap(collaborators):
    parent, workflow = collaborators
    workflow.run(_decision(), "L-2", "My Plot", "user-2")

    user_id, title, message, link = parent.sink.notify_user.call_args[0]
    assert user_id == "user-2"
    assert "35.0%" in message
    assert "Kigamboni Beach Plot" in message
    assert "owner-1" in message

    admin_args = parent.sink.notify_admins.call_args[0]
    assert admin_args[2] == "/admin/overlap-review"
    assert "L-2" in admin_args[1]


def test_deletion_failure_sends_nothing(collaborators):
    parent, workflow = collaborators
    parent.repo.delete_listing_artifacts.side_effect = RepositoryError("database is locked", listing_id="L-2")

    outcome = workflow.run(_decision(), "L-2", "My Plot", "user-2")

    assert outcome.state == RemediationState.REJECTION_FAILED
    assert not outcome.deleted
    assert "database is locked" in outcome.error
    parent.sink.append_audit_log.assert_not_called()
    parent.sink.notify_user.assert_not_called()
    parent.sink.notify_admins.assert_not_called()


def test_notification_failures_are_swallowed(collaborators):
    parent, workflow = collaborators
    parent.sink.append_audit_log.side_effect = NotificationError("audit down")
    parent.sink.send_email.side_effect = NotificationError("smtp down")

    outcome = workflow.run(_decision(), "L-2", "My Plot", "user-2")

    assert outcome.state == RemediationState.REJECTED
    assert outcome.deleted
    assert not outcome.audit_logged
    assert not outcome.email_sent
    assert outcome.user_notified
    assert outcome.admins_notified == 2


def test_missing_title_gets_placeholder(collaborators):
    parent, workflow = collaborators
    workflow.run(_decision(), "L-2", None, "user-2")
    details = parent.sink.append_audit_log.call_args[0][2]
    assert details["deleted_listing_title"] == "Untitled listing"
