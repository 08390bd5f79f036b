"""
Auto-Remediation Workflow - Delete-and-notify on blocking overlap.

States: CHECKED -> ACCEPTED | REJECTED | REJECTION_FAILED

Rejection runs strictly in order:
1. Delete the submission's boundary, media and listing   (must succeed)
2. Audit entry                                           (best-effort)
3. In-app notification + email to the uploader           (best-effort)
4. Notification to every administrator                   (best-effort)

A failure in a later step never undoes an earlier one. If deletion fails
nothing that says "deleted" is sent.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from core.errors import RepositoryError
from core.geometry import format_area
from core.interfaces import NotificationSink, PolygonRepository
from core.models import OverlapDecision, OverlapResult
from core.overlap import BLOCKING_THRESHOLD_PERCENT

log = logging.getLogger(__name__)

AUDIT_ACTION = "auto_delete_overlap"
REASON_CODE = "polygon_overlap_exceeds_threshold"
SYSTEM_ACTOR = "system"


class RemediationState(Enum):
    """Where a checked submission ended up."""
    CHECKED = "checked"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REJECTION_FAILED = "rejection_failed"


@dataclass(frozen=True)
class RemediationOutcome:
    """What the workflow actually managed to do."""
    state: RemediationState
    deleted: bool = False
    audit_logged: bool = False
    user_notified: bool = False
    email_sent: bool = False
    admins_notified: int = 0
    error: Optional[str] = None


class RemediationWorkflow:
    """
    Executes the rejection path for a submission that violates overlap policy.

    Usage:
        workflow = RemediationWorkflow(registry, sink, review_url="/admin/overlap-review")
        outcome = workflow.run(decision, "L-42", "Plot 7", "user-9")
    """

    def __init__(
        self,
        repository: PolygonRepository,
        sink: NotificationSink,
        review_url: str = "/admin/overlap-review",
    ):
        self.repository = repository
        self.sink = sink
        self.review_url = review_url

    def run(
        self,
        decision: OverlapDecision,
        submission_id: Optional[str],
        submission_title: Optional[str],
        uploader_id: Optional[str],
    ) -> RemediationOutcome:
        """
        Accept or reject a just-created submission based on its overlap decision.

        Returns:
            RemediationOutcome; state CHECKED when the overlap is blocking but
            the submission or uploader is unknown (nothing is touched),
            REJECTION_FAILED (with error) when the submission could not be deleted
        """
        if decision.can_proceed or decision.worst_overlap is None:
            return RemediationOutcome(state=RemediationState.ACCEPTED)
        if not (submission_id and uploader_id):
            return RemediationOutcome(state=RemediationState.CHECKED)

        worst = decision.worst_overlap
        title = submission_title or "Untitled listing"
        log.warning(
            f"Submission {submission_id} overlaps {worst.overlap_percentage:.1f}% with "
            f"{worst.other_parcel_id}; removing it"
        )

        # 1. Delete - the only step that must succeed
        try:
            self.repository.delete_listing_artifacts(submission_id)
        except RepositoryError as e:
            log.error(f"Auto-delete of {submission_id} failed: {e}")
            return RemediationOutcome(state=RemediationState.REJECTION_FAILED, error=str(e))

        # 2. Audit
        audit_logged, _ = self._best_effort(
            "audit log",
            self.sink.append_audit_log,
            AUDIT_ACTION,
            SYSTEM_ACTOR,
            self._audit_details(submission_id, title, uploader_id, worst),
        )

        # 3. Uploader
        user_title, user_message = self._uploader_message(title, worst)
        user_notified, _ = self._best_effort(
            "uploader notification",
            self.sink.notify_user,
            uploader_id,
            user_title,
            user_message,
            None,
        )
        email_ok, email_sent = self._best_effort(
            "uploader email",
            self.sink.send_email,
            uploader_id,
            user_title,
            self._uploader_email_html(title, worst),
        )

        # 4. Administrators
        admin_title, admin_message = self._admin_message(submission_id, title, uploader_id, worst)
        _, admins_notified = self._best_effort(
            "admin notification",
            self.sink.notify_admins,
            admin_title,
            admin_message,
            self.review_url,
        )

        return RemediationOutcome(
            state=RemediationState.REJECTED,
            deleted=True,
            audit_logged=audit_logged,
            user_notified=user_notified,
            email_sent=bool(email_ok and email_sent),
            admins_notified=admins_notified or 0,
        )

    def _best_effort(self, step: str, fn: Callable[..., Any], *args) -> Tuple[bool, Any]:
        """Run an advisory step; failures are logged and reported, never raised."""
        try:
            return True, fn(*args)
        except Exception as e:
            log.error(f"Remediation step '{step}' failed: {e}")
            return False, None

    # ═══════════════════════════════════════════════════════════════════════
    # MESSAGES
    # ═══════════════════════════════════════════════════════════════════════
    @staticmethod
    def _audit_details(submission_id: str, title: str, uploader_id: str, worst: OverlapResult) -> dict:
        return {
            "deleted_listing_id": submission_id,
            "deleted_listing_title": title,
            "uploader_id": uploader_id,
            "overlap_percentage": worst.overlap_percentage,
            "overlapping_listing_id": worst.other_parcel_id,
            "overlapping_listing_title": worst.other_parcel_title,
            "overlapping_owner_id": worst.owner_ref,
            "reason": REASON_CODE,
        }

    @staticmethod
    def _uploader_message(title: str, worst: OverlapResult) -> Tuple[str, str]:
        owner = worst.owner_ref or "another seller"
        return (
            "Listing removed: boundary overlap",
            f'Your listing "{title}" was removed because its boundary overlaps '
            f'{worst.overlap_percentage:.1f}% ({format_area(worst.overlap_area_m2)}) with '
            f'"{worst.other_parcel_title}" '
            f"(owned by {owner}). Properties cannot overlap more than "
            f"{BLOCKING_THRESHOLD_PERCENT:.0f}%. If you believe this is a mistake, "
            f"contact support with your survey documents.",
        )

    @staticmethod
    def _uploader_email_html(title: str, worst: OverlapResult) -> str:
        owner = worst.owner_ref or "another seller"
        return (
            f"<h2>Your listing was removed</h2>"
            f"<p>Your listing <strong>{title}</strong> was removed automatically because "
            f"its boundary overlaps <strong>{worst.overlap_percentage:.1f}%</strong> with "
            f"the existing property <strong>{worst.other_parcel_title}</strong> "
            f"(owner: {owner}).</p>"
            f"<p>Properties cannot overlap more than {BLOCKING_THRESHOLD_PERCENT:.0f}%. "
            f"Please check your boundary and submit again, or contact support.</p>"
        )

    @staticmethod
    def _admin_message(submission_id: str, title: str, uploader_id: str, worst: OverlapResult) -> Tuple[str, str]:
        return (
            "Listing auto-deleted for overlap",
            f'Listing "{title}" ({submission_id}) uploaded by {uploader_id} was deleted: '
            f"{worst.overlap_percentage:.1f}% overlap with \"{worst.other_parcel_title}\" "
            f"({worst.other_parcel_id}, owner {worst.owner_ref or 'unknown'}).",
        )
