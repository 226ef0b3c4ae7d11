import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from civiclens.models.engagement_models import PointTransaction, PointType

logger = logging.getLogger(__name__)

POINTS_FOR_REPORT = 10
POINTS_FOR_VERIFICATION = 20


class PointsLedger:
    """
    Append-only civic points ledger.

    Awards tied to a complaint are recorded at most once per
    (user, type, complaint), so re-running an award after a partial failure is
    safe and acts as the compensating step for the complaint write that
    preceded it.
    """

    def __init__(self, repository):
        self.repository = repository

    async def award_points(
        self,
        user_id: str,
        points: int,
        point_type: PointType,
        description: str,
        related_complaint_id: Optional[str] = None,
    ) -> PointTransaction:
        point_type = PointType(point_type)
        if related_complaint_id is not None:
            existing = await self.repository.find_point_transaction(
                user_id, point_type.value, related_complaint_id
            )
            if existing is not None:
                logger.info(f"🔁 Points already awarded to {user_id} for {point_type.value} on {related_complaint_id}")
                return existing

        transaction = PointTransaction(
            user_id=user_id,
            points=points,
            type=point_type,
            description=description,
            related_complaint_id=related_complaint_id,
        )
        try:
            await self.repository.insert_point_transaction(transaction)
        except DuplicateKeyError:
            # a concurrent award won the race
            existing = await self.repository.find_point_transaction(
                user_id, point_type.value, related_complaint_id
            )
            if existing is None:
                raise
            return existing

        logger.info(f"🏅 Awarded {points} points to {user_id} ({point_type.value})")
        return transaction

    async def award_report(self, user_id: str, complaint_id: str) -> PointTransaction:
        return await self.award_points(
            user_id,
            POINTS_FOR_REPORT,
            PointType.COMPLAINT_REPORTED,
            "Reported a civic complaint",
            complaint_id,
        )

    async def award_verification(self, user_id: str, complaint_id: str) -> PointTransaction:
        return await self.award_points(
            user_id,
            POINTS_FOR_VERIFICATION,
            PointType.COMPLAINT_VERIFIED,
            "Verified a resolved complaint",
            complaint_id,
        )

    async def get_total_points(self, user_id: str) -> int:
        return await self.repository.sum_points(user_id)
