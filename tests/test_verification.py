import pytest

from civiclens.core.errors import VerificationRejection
from civiclens.models.engagement_models import VerificationSubmission
from civiclens.services.verification_service import (
    apply_quorum,
    check_verification,
    stamp_submission,
    trust_score_for,
)
from tests.conftest import make_complaint


def submit(complaint, verifier_id):
    submission = VerificationSubmission(
        complaint_id=complaint.id,
        verifier_id=verifier_id,
        verification_image="/uploads/verifications/after.jpg",
    )
    assert check_verification(complaint, verifier_id) is None
    complaint.verification_submissions.append(submission.id)
    complaint.verified_by.append(verifier_id)
    complaint.verification_count += 1
    apply_quorum(complaint)
    stamp_submission(submission, complaint)
    return submission


def test_two_verifiers_reach_quorum():
    complaint = make_complaint(status="Resolved")

    first = submit(complaint, "neighbour-1")
    assert complaint.verification_count == 1
    assert complaint.is_verified is False
    assert complaint.trust_score == 0
    assert first.is_trusted is False

    second = submit(complaint, "neighbour-2")
    assert complaint.verification_count == 2
    assert complaint.is_verified is True
    assert complaint.trust_score == 70
    assert second.trust_score == 70
    assert second.is_trusted is True
    assert complaint.verified_by == ["neighbour-1", "neighbour-2"]
    assert complaint.verification_submissions == [first.id, second.id]


def test_trust_grows_with_count_and_caps_at_100():
    complaint = make_complaint(status="Resolved")
    scores = []
    for i in range(8):
        submit(complaint, f"verifier-{i}")
        scores.append(complaint.trust_score)

    assert scores == sorted(scores)
    assert scores[-1] == 100
    assert trust_score_for(10) == 100


def test_is_verified_iff_quorum_reached():
    complaint = make_complaint(status="Resolved")
    for i in range(5):
        submit(complaint, f"verifier-{i}")
        assert complaint.is_verified == (complaint.verification_count >= 2)


@pytest.mark.parametrize("status", ["Submitted", "Assigned", "In Progress", "Rejected"])
def test_rejects_unresolved_complaint(status):
    complaint = make_complaint(status=status)
    assert check_verification(complaint, "neighbour-1") is VerificationRejection.NOT_RESOLVED


def test_rejects_self_verification():
    complaint = make_complaint(citizen_id="reporter", status="Resolved")
    assert check_verification(complaint, "reporter") is VerificationRejection.SELF_VERIFICATION


def test_rejects_second_submission_from_same_verifier():
    complaint = make_complaint(status="Resolved")
    submit(complaint, "neighbour-1")

    assert check_verification(complaint, "neighbour-1") is VerificationRejection.DUPLICATE_VERIFICATION
    assert check_verification(complaint, "neighbour-2", already_submitted=True) is VerificationRejection.DUPLICATE_VERIFICATION
