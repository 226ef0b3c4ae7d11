import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import motor.motor_asyncio
from pymongo import DESCENDING, ReturnDocument

from civiclens.core.config import AppSettings
from civiclens.models.complaint_model import Complaint, TimelineEntry
from civiclens.models.engagement_models import Comment, PointTransaction, PointType, VerificationSubmission

logger = logging.getLogger(__name__)

COMPLAINTS = "complaints"
COMMENTS = "comments"
VERIFICATIONS = "verification_submissions"
POINT_TRANSACTIONS = "point_transactions"

WEEK_MS = 7 * 24 * 60 * 60 * 1000


def _mask_uri(uri: str) -> str:
    scheme = uri.split("://")[0] if "://" in uri else "mongodb"
    return f"{scheme}://***"


class MongoDBService:
    """
    Complaint store backed by MongoDB via motor.

    Documents use the string form of an ObjectId as `_id`. Each method touches
    a single collection, so consistency across collections is up to the caller.

    Counters and membership lists (votes, comments, likes, verifications) are
    only changed through single-document conditional updates. The `Optional`
    results are None when the guard did not match.
    """

    def __init__(self, db: motor.motor_asyncio.AsyncIOMotorDatabase, client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None):
        self.db = db
        self.client = client

    @property
    def complaints(self):
        return self.db[COMPLAINTS]

    @property
    def comments(self):
        return self.db[COMMENTS]

    @property
    def verifications(self):
        return self.db[VERIFICATIONS]

    @property
    def point_transactions(self):
        return self.db[POINT_TRANSACTIONS]

    async def create_indexes(self) -> None:
        try:
            await self.complaints.create_index([("created_at", DESCENDING)], name="created_at_desc")
            await self.complaints.create_index([("status", 1), ("created_at", DESCENDING)], name="status_created_at")
            await self.complaints.create_index([("citizen_id", 1)], name="citizen_id")
            await self.complaints.create_index([("is_trending", 1), ("trend_score", DESCENDING)], name="trending")
            await self.comments.create_index([("complaint_id", 1), ("created_at", 1)], name="complaint_comments")
            await self.verifications.create_index(
                [("complaint_id", 1), ("verifier_id", 1)],
                name="complaint_verifier_unique",
                unique=True,
            )
            await self.point_transactions.create_index([("user_id", 1)], name="user_points")
            # one award per (user, type, complaint); unrelated entries are unrestricted
            await self.point_transactions.create_index(
                [("user_id", 1), ("type", 1), ("related_complaint_id", 1)],
                name="award_once",
                unique=True,
                partialFilterExpression={"related_complaint_id": {"$type": "string"}},
            )
            logger.info("✅ Core MongoDB indexes created/verified")
        except Exception as e:
            if getattr(e, "code", None) == 85:
                logger.warning(f"⚠️ Index conflict ignored (likely pre-existing): {str(e)}")
            else:
                logger.warning(f"⚠️ Index creation encountered an issue: {str(e)}")

    # --- complaints ---

    async def insert_complaint(self, complaint: Complaint) -> Complaint:
        await self.complaints.insert_one(complaint.to_document())
        return complaint

    async def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        doc = await self.complaints.find_one({"_id": complaint_id})
        return Complaint.model_validate(doc) if doc else None

    async def _update_complaint(self, query: Dict[str, Any], update: Dict[str, Any]) -> Optional[Complaint]:
        doc = await self.complaints.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return Complaint.model_validate(doc) if doc else None

    async def add_vote(self, complaint_id: str, user_id: str, now: datetime) -> Optional[Complaint]:
        return await self._update_complaint(
            {"_id": complaint_id, "voted_by": {"$ne": user_id}},
            {
                "$addToSet": {"voted_by": user_id},
                "$inc": {"votes": 1},
                "$set": {"last_engagement_at": now},
            },
        )

    async def remove_vote(self, complaint_id: str, user_id: str, now: datetime) -> Optional[Complaint]:
        return await self._update_complaint(
            {"_id": complaint_id, "voted_by": user_id},
            {
                "$pull": {"voted_by": user_id},
                "$inc": {"votes": -1},
                "$set": {"last_engagement_at": now},
            },
        )

    async def increment_comment_count(self, complaint_id: str, now: datetime) -> Optional[Complaint]:
        return await self._update_complaint(
            {"_id": complaint_id},
            {"$inc": {"comment_count": 1}, "$set": {"last_engagement_at": now}},
        )

    async def update_engagement(self, complaint: Complaint) -> bool:
        """
        Write the derived engagement fields computed from `complaint`.

        Skipped when votes or comments moved since the snapshot was read; the
        request that moved them writes its own values.
        """
        result = await self.complaints.update_one(
            {
                "_id": complaint.id,
                "votes": complaint.votes,
                "comment_count": complaint.comment_count,
            },
            {
                "$set": {
                    "engagement_score": complaint.engagement_score,
                    "trend_score": complaint.trend_score,
                    "priority_boost": complaint.priority_boost,
                    "is_trending": complaint.is_trending,
                    "priority": complaint.priority,
                }
            },
        )
        return result.modified_count == 1

    async def transition_status(
        self,
        complaint_id: str,
        current: str,
        requested: str,
        entry: TimelineEntry,
        images: Optional[List[str]] = None,
    ) -> Optional[Complaint]:
        changes: Dict[str, Any] = {"status": requested}
        if images is not None:
            changes["images"] = images
        return await self._update_complaint(
            {"_id": complaint_id, "status": current},
            {"$set": changes, "$push": {"timeline": entry.model_dump()}},
        )

    async def add_verification(self, complaint_id: str, submission_id: str, verifier_id: str) -> Optional[Complaint]:
        """Fold one stored submission into the complaint; a submission already folded in is a no-op (None)."""
        return await self._update_complaint(
            {"_id": complaint_id, "verification_submissions": {"$ne": submission_id}},
            {
                "$inc": {"verification_count": 1},
                "$addToSet": {"verified_by": verifier_id},
                "$push": {"verification_submissions": submission_id},
            },
        )

    async def mark_verified(self, complaint_id: str, trust_score: float) -> Optional[Complaint]:
        return await self._update_complaint(
            {"_id": complaint_id},
            {"$set": {"is_verified": True}, "$max": {"trust_score": trust_score}},
        )

    async def count_complaints(
        self,
        citizen_id: str,
        status: Optional[str] = None,
        exclude_statuses: Optional[Iterable[str]] = None,
    ) -> int:
        query: Dict[str, Any] = {"citizen_id": citizen_id}
        if status:
            query["status"] = status
        elif exclude_statuses:
            query["status"] = {"$nin": list(exclude_statuses)}
        return await self.complaints.count_documents(query)

    async def recent_addresses(self, citizen_id: str, limit: int = 20) -> List[str]:
        cursor = (
            self.complaints.find({"citizen_id": citizen_id, "address": {"$nin": ["", None]}}, {"address": 1})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        return [doc["address"] async for doc in cursor]

    async def _weekly_counts(self, collection, match: Dict[str, Any], since: datetime, now: datetime) -> Dict[int, int]:
        # bucket 0 is the 7 days ending at `now`
        pipeline = [
            {"$match": {**match, "created_at": {"$gte": since, "$lte": now}}},
            {
                "$group": {
                    "_id": {"$floor": {"$divide": [{"$subtract": [now, "$created_at"]}, WEEK_MS]}},
                    "count": {"$sum": 1},
                }
            },
        ]
        return {int(row["_id"]): row["count"] async for row in collection.aggregate(pipeline)}

    async def complaints_created_by_week(self, citizen_id: str, since: datetime, now: datetime) -> Dict[int, int]:
        return await self._weekly_counts(self.complaints, {"citizen_id": citizen_id}, since, now)

    async def list_complaints(
        self,
        limit: int = 50,
        skip: int = 0,
        status: Optional[str] = None,
        category: Optional[str] = None,
        citizen_id: Optional[str] = None,
    ) -> List[Complaint]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if category:
            query["category"] = category
        if citizen_id:
            query["citizen_id"] = citizen_id
        cursor = self.complaints.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [Complaint.model_validate(doc) async for doc in cursor]

    async def delete_complaint(self, complaint_id: str) -> bool:
        result = await self.complaints.delete_one({"_id": complaint_id})
        return result.deleted_count == 1

    # --- comments ---

    async def insert_comment(self, comment: Comment) -> Comment:
        await self.comments.insert_one(comment.to_document())
        return comment

    async def get_comment(self, comment_id: str) -> Optional[Comment]:
        doc = await self.comments.find_one({"_id": comment_id})
        return Comment.model_validate(doc) if doc else None

    async def add_comment_like(self, comment_id: str, user_id: str) -> Optional[Comment]:
        doc = await self.comments.find_one_and_update(
            {"_id": comment_id, "liked_by": {"$ne": user_id}},
            {"$addToSet": {"liked_by": user_id}, "$inc": {"likes": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return Comment.model_validate(doc) if doc else None

    async def remove_comment_like(self, comment_id: str, user_id: str) -> Optional[Comment]:
        doc = await self.comments.find_one_and_update(
            {"_id": comment_id, "liked_by": user_id},
            {"$pull": {"liked_by": user_id}, "$inc": {"likes": -1}},
            return_document=ReturnDocument.AFTER,
        )
        return Comment.model_validate(doc) if doc else None

    async def list_comments(self, complaint_id: str) -> List[Comment]:
        cursor = self.comments.find({"complaint_id": complaint_id}).sort("created_at", 1)
        return [Comment.model_validate(doc) async for doc in cursor]

    async def delete_comments_for(self, complaint_id: str) -> int:
        result = await self.comments.delete_many({"complaint_id": complaint_id})
        return result.deleted_count

    # --- verification submissions ---

    async def find_verification(self, complaint_id: str, verifier_id: str) -> Optional[VerificationSubmission]:
        doc = await self.verifications.find_one({"complaint_id": complaint_id, "verifier_id": verifier_id})
        return VerificationSubmission.model_validate(doc) if doc else None

    async def insert_verification(self, submission: VerificationSubmission) -> VerificationSubmission:
        """Raises pymongo's DuplicateKeyError when the verifier already submitted for this complaint."""
        await self.verifications.insert_one(submission.to_document())
        return submission

    async def list_verifications(self, complaint_id: str) -> List[VerificationSubmission]:
        cursor = self.verifications.find({"complaint_id": complaint_id}).sort("created_at", 1)
        return [VerificationSubmission.model_validate(doc) async for doc in cursor]

    async def save_verification(self, submission: VerificationSubmission) -> VerificationSubmission:
        await self.verifications.replace_one({"_id": submission.id}, submission.to_document())
        return submission

    async def delete_verifications_for(self, complaint_id: str) -> int:
        result = await self.verifications.delete_many({"complaint_id": complaint_id})
        return result.deleted_count

    # --- points ledger ---

    async def find_point_transaction(
        self, user_id: str, point_type: str, related_complaint_id: Optional[str]
    ) -> Optional[PointTransaction]:
        doc = await self.point_transactions.find_one(
            {"user_id": user_id, "type": point_type, "related_complaint_id": related_complaint_id}
        )
        return PointTransaction.model_validate(doc) if doc else None

    async def insert_point_transaction(self, transaction: PointTransaction) -> PointTransaction:
        await self.point_transactions.insert_one(transaction.to_document())
        return transaction

    async def sum_points(self, user_id: str) -> int:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {"$group": {"_id": None, "total": {"$sum": "$points"}}},
        ]
        async for row in self.point_transactions.aggregate(pipeline):
            return int(row.get("total", 0))
        return 0

    async def verifications_by_week(self, user_id: str, since: datetime, now: datetime) -> Dict[int, int]:
        return await self._weekly_counts(
            self.point_transactions,
            {"user_id": user_id, "type": PointType.COMPLAINT_VERIFIED.value},
            since,
            now,
        )

    async def recent_point_transactions(self, user_id: str, limit: int = 10) -> List[PointTransaction]:
        cursor = self.point_transactions.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
        return [PointTransaction.model_validate(doc) async for doc in cursor]


async def init_db(settings: AppSettings, max_retries: int = 3, retry_delay: float = 2.0) -> Optional[MongoDBService]:
    """
    Connect to MongoDB with a few ping retries.

    Returns None when no connection could be made; the API then answers 503
    for store-backed routes.
    """
    logger.info(f"🔧 MongoDB URI configured: {_mask_uri(settings.mongo_uri)}")
    logger.info(f"📊 Database name: {settings.mongo_db_name}")

    client = motor.motor_asyncio.AsyncIOMotorClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=15000,
        connectTimeoutMS=30000,
        socketTimeoutMS=45000,
        maxPoolSize=10,
        retryWrites=True,
        tz_aware=True,
    )

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(f"🔄 Connection attempt {attempt}/{max_retries}...")
            await client.admin.command("ping")
            service = MongoDBService(client[settings.mongo_db_name], client)
            await service.create_indexes()
            logger.info("✅ MongoDB connected successfully!")
            return service
        except Exception as e:
            logger.warning(f"⚠️ Connection attempt {attempt} failed: {str(e)}")
            if attempt < max_retries:
                logger.info(f"⏳ Waiting {retry_delay}s before retry...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2

    logger.error("❌ All MongoDB connection attempts failed")
    client.close()
    return None


async def close_db(service: Optional[MongoDBService]):
    if service is not None and service.client is not None:
        service.client.close()
        logger.info("🔒 MongoDB connection closed")

