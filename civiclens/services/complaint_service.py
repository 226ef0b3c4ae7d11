"""
Complaint lifecycle: creation, engagement, status changes, peer verification
and deletion.

The store only offers single-document writes. Counters and membership lists
on a complaint change through conditional atomic updates, so interleaved
requests never overwrite each other. Where an operation writes more than one
document the dependent document is written first; folding a verification in
and awarding points are both idempotent, so `reconcile_complaint` can re-apply
anything lost in between.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from civiclens.core.errors import (
    CommentNotFoundError,
    ComplaintNotFoundError,
    InvalidCommentError,
    InvalidStatusTransitionError,
    PermissionDeniedError,
    VerificationRejected,
    VerificationRejection,
)
from civiclens.models.complaint_model import Complaint, ComplaintStatus, TimelineEntry, utc_now
from civiclens.models.engagement_models import Comment, VerificationSubmission
from civiclens.services.complaint_ai import ComplaintAIService
from civiclens.services.engagement_service import apply_engagement
from civiclens.services.points_service import PointsLedger
from civiclens.services.verification_service import apply_quorum, check_verification, stamp_submission

logger = logging.getLogger(__name__)

STATUS_FLOW = [
    ComplaintStatus.SUBMITTED.value,
    ComplaintStatus.ASSIGNED.value,
    ComplaintStatus.IN_PROGRESS.value,
    ComplaintStatus.RESOLVED.value,
]
TERMINAL_STATUSES = {ComplaintStatus.RESOLVED.value, ComplaintStatus.REJECTED.value}
PENDING_DESCRIPTION = "Complaint description pending AI"


def is_valid_transition(current: str, requested: str) -> bool:
    """Forward-only moves along STATUS_FLOW; Rejected from any non-terminal state."""
    if current in TERMINAL_STATUSES:
        return False
    if requested == ComplaintStatus.REJECTED.value:
        return True
    if current not in STATUS_FLOW or requested not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(requested) > STATUS_FLOW.index(current)


class ComplaintService:
    def __init__(self, repository, ai_service: ComplaintAIService, points: Optional[PointsLedger] = None):
        self.repository = repository
        self.ai_service = ai_service
        self.points = points or PointsLedger(repository)

    async def get_complaint(self, complaint_id: str) -> Complaint:
        complaint = await self.repository.get_complaint(complaint_id)
        if complaint is None:
            raise ComplaintNotFoundError(complaint_id)
        return complaint

    async def list_complaints(self, limit: int = 50, skip: int = 0, **filters) -> List[Complaint]:
        return await self.repository.list_complaints(limit=limit, skip=skip, **filters)

    async def create_complaint(
        self,
        citizen_id: str,
        title: str,
        image_path: str,
        file_path: Optional[str] = None,
        mime_type: Optional[str] = None,
        description: str = "",
        location: Optional[str] = None,
        address: str = "",
    ) -> Complaint:
        """
        Classify the uploaded photo, store the complaint and award reporting points.

        `image_path` is the public path stored on the complaint; `file_path`
        is where the upload can be read from (defaults to `image_path`).
        """
        title = (title or "").strip()
        if not title:
            raise ValueError("Title is required")
        user_description = (description or "").strip()

        ai = await self.ai_service.analyze_complaint_image(
            file_path or image_path,
            mime_type,
            user_description or title,
        )

        complaint = Complaint(
            citizen_id=citizen_id,
            title=title,
            description=ai.description or user_description or PENDING_DESCRIPTION,
            location=location,
            address=address or "",
            images=[image_path],
            category=ai.category or "Other",
            priority=ai.priority,
            base_priority=ai.priority,
            department=ai.department,
            ai=ai,
            timeline=[
                TimelineEntry(
                    status=ComplaintStatus.SUBMITTED.value,
                    updated_by=citizen_id,
                    note="Complaint created",
                )
            ],
        )
        await self.repository.insert_complaint(complaint)
        logger.info(
            f"📝 Complaint {complaint.id} created by {citizen_id}: "
            f"{complaint.category}/{complaint.priority} -> {complaint.department} (fallback={ai.fallback})"
        )

        try:
            await self.points.award_report(citizen_id, complaint.id)
        except Exception as e:
            logger.error(f"❌ Failed to award reporting points for {complaint.id}: {e}", exc_info=True)
        return complaint

    async def _refresh_engagement(self, complaint: Complaint, now: datetime) -> Complaint:
        apply_engagement(complaint, now)
        await self.repository.update_engagement(complaint)
        return complaint

    async def toggle_vote(self, complaint_id: str, user_id: str, now: Optional[datetime] = None) -> Tuple[Complaint, bool]:
        """Flip `user_id`'s vote. Returns the updated complaint and whether the user now has a vote."""
        now = now or utc_now()
        complaint = await self.get_complaint(complaint_id)
        if user_id in complaint.voted_by:
            updated = await self.repository.remove_vote(complaint_id, user_id, now)
        else:
            updated = await self.repository.add_vote(complaint_id, user_id, now)
        if updated is None:
            # another toggle by the same user landed first
            updated = await self.get_complaint(complaint_id)

        voted = user_id in updated.voted_by
        complaint = await self._refresh_engagement(updated, now)
        logger.info(f"👍 {user_id} {'voted on' if voted else 'removed vote from'} {complaint_id} (votes={complaint.votes})")
        return complaint, voted

    async def add_comment(self, complaint_id: str, user_id: str, text: str, now: Optional[datetime] = None) -> Tuple[Complaint, Comment]:
        now = now or utc_now()
        await self.get_complaint(complaint_id)
        try:
            comment = Comment(complaint_id=complaint_id, user_id=user_id, text=text or "")
        except ValidationError as e:
            raise InvalidCommentError(e.errors()[0].get("msg", "Invalid comment")) from e

        await self.repository.insert_comment(comment)
        updated = await self.repository.increment_comment_count(complaint_id, now)
        if updated is None:
            raise ComplaintNotFoundError(complaint_id)
        complaint = await self._refresh_engagement(updated, now)
        return complaint, comment

    async def list_comments(self, complaint_id: str) -> List[Comment]:
        await self.get_complaint(complaint_id)
        return await self.repository.list_comments(complaint_id)

    async def toggle_comment_like(
        self, comment_id: str, user_id: str, complaint_id: Optional[str] = None
    ) -> Tuple[Comment, bool]:
        comment = await self.repository.get_comment(comment_id)
        if comment is None or (complaint_id is not None and comment.complaint_id != complaint_id):
            raise CommentNotFoundError(comment_id)
        if user_id in comment.liked_by:
            updated = await self.repository.remove_comment_like(comment_id, user_id)
        else:
            updated = await self.repository.add_comment_like(comment_id, user_id)
        if updated is None:
            updated = await self.repository.get_comment(comment_id)
            if updated is None:
                raise CommentNotFoundError(comment_id)
        return updated, user_id in updated.liked_by

    async def update_status(
        self,
        complaint_id: str,
        new_status: str,
        actor_id: str,
        note: Optional[str] = None,
        after_image: Optional[str] = None,
    ) -> Complaint:
        complaint = await self.get_complaint(complaint_id)
        try:
            requested = ComplaintStatus(new_status).value
        except ValueError:
            raise InvalidStatusTransitionError(complaint.status, new_status) from None

        if not is_valid_transition(complaint.status, requested):
            raise InvalidStatusTransitionError(complaint.status, requested)

        entry = TimelineEntry(status=requested, updated_by=actor_id, note=note, timestamp=utc_now())
        images = None
        if requested == ComplaintStatus.RESOLVED.value and after_image:
            images = complaint.images[:1] + [after_image]

        updated = await self.repository.transition_status(complaint_id, complaint.status, requested, entry, images)
        if updated is None:
            # the status moved after it was read
            current = await self.get_complaint(complaint_id)
            raise InvalidStatusTransitionError(current.status, requested)

        logger.info(f"🔄 Complaint {complaint_id} moved to {requested} by {actor_id}")
        return updated

    async def verify_complaint(
        self,
        complaint_id: str,
        verifier_id: str,
        verification_image: str,
        verification_location: Optional[str] = None,
        verification_address: Optional[str] = None,
    ) -> Tuple[Complaint, VerificationSubmission]:
        """
        Accept a verification photo from a neighbour and fold it into the complaint.

        A verifier whose earlier submission was stored but never reached the
        complaint (the complaint update failed) gets that submission applied
        instead of a duplicate rejection.
        """
        complaint = await self.get_complaint(complaint_id)
        existing = await self.repository.find_verification(complaint_id, verifier_id)
        if existing is not None and existing.id not in complaint.verification_submissions:
            logger.info(f"🔁 Completing stored verification {existing.id} of {complaint_id} by {verifier_id}")
            return await self._apply_verification(complaint_id, existing)

        reason = check_verification(complaint, verifier_id, already_submitted=existing is not None)
        if reason is not None:
            logger.info(f"🚫 Verification of {complaint_id} by {verifier_id} rejected: {reason.value}")
            raise VerificationRejected(reason)

        submission = VerificationSubmission(
            complaint_id=complaint_id,
            verifier_id=verifier_id,
            verification_image=verification_image,
            verification_location=verification_location,
            verification_address=verification_address,
        )
        try:
            await self.repository.insert_verification(submission)
        except DuplicateKeyError:
            logger.info(f"🚫 Concurrent duplicate verification of {complaint_id} by {verifier_id}")
            raise VerificationRejected(VerificationRejection.DUPLICATE_VERIFICATION)

        return await self._apply_verification(complaint_id, submission)

    async def _apply_verification(
        self, complaint_id: str, submission: VerificationSubmission
    ) -> Tuple[Complaint, VerificationSubmission]:
        complaint = await self.repository.add_verification(complaint_id, submission.id, submission.verifier_id)
        if complaint is None:
            # already folded in by a concurrent request
            complaint = await self.get_complaint(complaint_id)

        if apply_quorum(complaint):
            complaint = await self.repository.mark_verified(complaint_id, complaint.trust_score) or complaint

        stamp_submission(submission, complaint)
        await self.repository.save_verification(submission)
        logger.info(
            f"✅ Complaint {complaint_id} verified by {submission.verifier_id} "
            f"(count={complaint.verification_count}, trust={complaint.trust_score}, verified={complaint.is_verified})"
        )

        try:
            await self.points.award_verification(submission.verifier_id, complaint_id)
        except Exception as e:
            logger.error(f"❌ Failed to award verification points to {submission.verifier_id}: {e}", exc_info=True)
        return complaint, submission

    async def reconcile_complaint(self, complaint_id: str) -> Complaint:
        """
        Re-apply everything a partially failed request may have left out.

        Stored verification submissions missing from the complaint are folded
        in, then every point award implied by the complaint is re-applied.
        """
        complaint = await self.get_complaint(complaint_id)
        for submission in await self.repository.list_verifications(complaint_id):
            if submission.id not in complaint.verification_submissions:
                logger.info(f"🔁 Reconciling verification {submission.id} into {complaint_id}")
                complaint, _ = await self._apply_verification(complaint_id, submission)

        await self.points.award_report(complaint.citizen_id, complaint.id)
        for verifier_id in complaint.verified_by:
            await self.points.award_verification(verifier_id, complaint.id)
        return complaint

    async def delete_complaint(self, complaint_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Delete a complaint with its comments and verification submissions.

        Only the reporting citizen may delete. Point transactions stay in the
        ledger and keep their reference to the deleted complaint.
        """
        complaint = await self.get_complaint(complaint_id)
        if complaint.citizen_id != actor_id:
            raise PermissionDeniedError("Only the reporting citizen can delete this complaint")

        await self.repository.delete_complaint(complaint_id)
        comments = await self.repository.delete_comments_for(complaint_id)
        verifications = await self.repository.delete_verifications_for(complaint_id)
        logger.info(f"🗑️ Deleted complaint {complaint_id} ({comments} comments, {verifications} verifications)")
        return {
            "id": complaint_id,
            "deleted": True,
            "comments_deleted": comments,
            "verifications_deleted": verifications,
        }

    async def get_total_points(self, user_id: str) -> int:
        return await self.points.get_total_points(user_id)
