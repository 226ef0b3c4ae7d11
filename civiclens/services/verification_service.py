"""Peer verification rules and trust scoring for resolved complaints."""

from typing import Optional

from civiclens.core.errors import VerificationRejection
from civiclens.models.complaint_model import Complaint, ComplaintStatus
from civiclens.models.engagement_models import VerificationSubmission

VERIFICATION_QUORUM = 2
BASE_TRUST = 50
TRUST_PER_VERIFICATION = 10
MAX_TRUST = 100


def trust_score_for(verification_count: int) -> float:
    return float(min(MAX_TRUST, BASE_TRUST + verification_count * TRUST_PER_VERIFICATION))


def check_verification(
    complaint: Complaint,
    verifier_id: str,
    already_submitted: bool = False,
) -> Optional[VerificationRejection]:
    """Return why `verifier_id` may not verify `complaint`, or None when the submission is acceptable."""
    if complaint.status != ComplaintStatus.RESOLVED.value:
        return VerificationRejection.NOT_RESOLVED
    if complaint.citizen_id == verifier_id:
        return VerificationRejection.SELF_VERIFICATION
    if already_submitted or verifier_id in complaint.verified_by:
        return VerificationRejection.DUPLICATE_VERIFICATION
    return None


def apply_quorum(complaint: Complaint) -> bool:
    """
    Derive `is_verified` and `trust_score` from the complaint's verification count.

    Below quorum nothing changes and False is returned. From the quorum on the
    trust score is recomputed from the count, so it only ever grows.
    """
    if complaint.verification_count < VERIFICATION_QUORUM:
        return False
    complaint.is_verified = True
    complaint.trust_score = max(complaint.trust_score, trust_score_for(complaint.verification_count))
    return True


def stamp_submission(submission: VerificationSubmission, complaint: Complaint) -> VerificationSubmission:
    submission.trust_score = complaint.trust_score
    submission.is_trusted = complaint.is_verified
    return submission
