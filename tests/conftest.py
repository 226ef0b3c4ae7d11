import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError

from civiclens.core.config import GeminiConfig, LocationConfig, ServicesConfig
from civiclens.models.complaint_model import Complaint
from civiclens.models.engagement_models import Comment, PointTransaction, PointType, VerificationSubmission
from civiclens.services.complaint_ai import ComplaintAIService
from civiclens.services.complaint_service import ComplaintService
from civiclens.services.redis_service import RedisService
from civiclens.services.service_factory import ServiceFactory


class InMemoryRepository:
    """
    Dict-backed stand-in for MongoDBService with the same unique constraints.

    Reads yield to the event loop like a driver round trip would. Conditional
    updates check their guard and mutate without yielding, matching a single
    server-side `find_one_and_update`.
    """

    def __init__(self):
        self.complaints: Dict[str, Complaint] = {}
        self.comments: Dict[str, Comment] = {}
        self.verifications: Dict[str, VerificationSubmission] = {}
        self.transactions: List[PointTransaction] = []
        self.fail_point_inserts = 0

    async def insert_complaint(self, complaint):
        self.complaints[complaint.id] = complaint.model_copy(deep=True)
        return complaint

    async def get_complaint(self, complaint_id):
        await asyncio.sleep(0)
        stored = self.complaints.get(complaint_id)
        return stored.model_copy(deep=True) if stored else None

    async def add_vote(self, complaint_id, user_id, now):
        stored = self.complaints.get(complaint_id)
        if stored is None or user_id in stored.voted_by:
            return None
        stored.voted_by.append(user_id)
        stored.votes += 1
        stored.last_engagement_at = now
        return stored.model_copy(deep=True)

    async def remove_vote(self, complaint_id, user_id, now):
        stored = self.complaints.get(complaint_id)
        if stored is None or user_id not in stored.voted_by:
            return None
        stored.voted_by.remove(user_id)
        stored.votes -= 1
        stored.last_engagement_at = now
        return stored.model_copy(deep=True)

    async def increment_comment_count(self, complaint_id, now):
        stored = self.complaints.get(complaint_id)
        if stored is None:
            return None
        stored.comment_count += 1
        stored.last_engagement_at = now
        return stored.model_copy(deep=True)

    async def update_engagement(self, complaint):
        stored = self.complaints.get(complaint.id)
        if stored is None or stored.votes != complaint.votes or stored.comment_count != complaint.comment_count:
            return False
        for field in ("engagement_score", "trend_score", "priority_boost", "is_trending", "priority"):
            setattr(stored, field, getattr(complaint, field))
        return True

    async def transition_status(self, complaint_id, current, requested, entry, images=None):
        stored = self.complaints.get(complaint_id)
        if stored is None or stored.status != current:
            return None
        stored.status = requested
        if images is not None:
            stored.images = list(images)
        stored.timeline.append(entry.model_copy(deep=True))
        return stored.model_copy(deep=True)

    async def add_verification(self, complaint_id, submission_id, verifier_id):
        stored = self.complaints.get(complaint_id)
        if stored is None or submission_id in stored.verification_submissions:
            return None
        stored.verification_count += 1
        if verifier_id not in stored.verified_by:
            stored.verified_by.append(verifier_id)
        stored.verification_submissions.append(submission_id)
        return stored.model_copy(deep=True)

    async def mark_verified(self, complaint_id, trust_score):
        stored = self.complaints.get(complaint_id)
        if stored is None:
            return None
        stored.is_verified = True
        stored.trust_score = max(stored.trust_score, trust_score)
        return stored.model_copy(deep=True)

    async def count_complaints(self, citizen_id, status=None, exclude_statuses=None):
        items = [c for c in self.complaints.values() if c.citizen_id == citizen_id]
        if status:
            items = [c for c in items if c.status == status]
        elif exclude_statuses:
            items = [c for c in items if c.status not in set(exclude_statuses)]
        return len(items)

    async def recent_addresses(self, citizen_id, limit=20):
        items = sorted(
            (c for c in self.complaints.values() if c.citizen_id == citizen_id and c.address),
            key=lambda c: c.created_at,
            reverse=True,
        )
        return [c.address for c in items[:limit]]

    @staticmethod
    def _weekly_counts(timestamps, since, now):
        buckets: Dict[int, int] = {}
        for created_at in timestamps:
            if since <= created_at <= now:
                week = int((now - created_at) // timedelta(weeks=1))
                buckets[week] = buckets.get(week, 0) + 1
        return buckets

    async def complaints_created_by_week(self, citizen_id, since, now):
        return self._weekly_counts(
            (c.created_at for c in self.complaints.values() if c.citizen_id == citizen_id), since, now
        )

    async def list_complaints(self, limit=50, skip=0, status=None, category=None, citizen_id=None):
        items = sorted(self.complaints.values(), key=lambda c: c.created_at, reverse=True)
        if status:
            items = [c for c in items if c.status == status]
        if category:
            items = [c for c in items if c.category == category]
        if citizen_id:
            items = [c for c in items if c.citizen_id == citizen_id]
        return [c.model_copy(deep=True) for c in items[skip:skip + limit]]

    async def delete_complaint(self, complaint_id):
        return self.complaints.pop(complaint_id, None) is not None

    async def insert_comment(self, comment):
        self.comments[comment.id] = comment.model_copy(deep=True)
        return comment

    async def get_comment(self, comment_id):
        await asyncio.sleep(0)
        stored = self.comments.get(comment_id)
        return stored.model_copy(deep=True) if stored else None

    async def add_comment_like(self, comment_id, user_id):
        stored = self.comments.get(comment_id)
        if stored is None or user_id in stored.liked_by:
            return None
        stored.liked_by.append(user_id)
        stored.likes += 1
        return stored.model_copy(deep=True)

    async def remove_comment_like(self, comment_id, user_id):
        stored = self.comments.get(comment_id)
        if stored is None or user_id not in stored.liked_by:
            return None
        stored.liked_by.remove(user_id)
        stored.likes -= 1
        return stored.model_copy(deep=True)

    async def list_comments(self, complaint_id):
        items = [c for c in self.comments.values() if c.complaint_id == complaint_id]
        return sorted(items, key=lambda c: c.created_at)

    async def delete_comments_for(self, complaint_id):
        doomed = [k for k, c in self.comments.items() if c.complaint_id == complaint_id]
        for key in doomed:
            del self.comments[key]
        return len(doomed)

    def _stored_verification(self, complaint_id, verifier_id):
        for submission in self.verifications.values():
            if submission.complaint_id == complaint_id and submission.verifier_id == verifier_id:
                return submission
        return None

    async def find_verification(self, complaint_id, verifier_id):
        await asyncio.sleep(0)
        stored = self._stored_verification(complaint_id, verifier_id)
        return stored.model_copy(deep=True) if stored else None

    async def insert_verification(self, submission):
        if self._stored_verification(submission.complaint_id, submission.verifier_id):
            raise DuplicateKeyError("E11000 duplicate key error: complaint_verifier_unique")
        self.verifications[submission.id] = submission.model_copy(deep=True)
        return submission

    async def list_verifications(self, complaint_id):
        items = [s for s in self.verifications.values() if s.complaint_id == complaint_id]
        return [s.model_copy(deep=True) for s in sorted(items, key=lambda s: s.created_at)]

    async def save_verification(self, submission):
        self.verifications[submission.id] = submission.model_copy(deep=True)
        return submission

    async def delete_verifications_for(self, complaint_id):
        doomed = [k for k, s in self.verifications.items() if s.complaint_id == complaint_id]
        for key in doomed:
            del self.verifications[key]
        return len(doomed)

    async def find_point_transaction(self, user_id, point_type, related_complaint_id):
        for tx in self.transactions:
            if tx.user_id == user_id and tx.type == point_type and tx.related_complaint_id == related_complaint_id:
                return tx
        return None

    async def insert_point_transaction(self, transaction):
        if self.fail_point_inserts:
            self.fail_point_inserts -= 1
            raise ConnectionError("store unreachable")
        if transaction.related_complaint_id is not None and await self.find_point_transaction(
            transaction.user_id, transaction.type, transaction.related_complaint_id
        ):
            raise DuplicateKeyError("E11000 duplicate key error: award_once")
        self.transactions.append(transaction)
        return transaction

    async def sum_points(self, user_id):
        return sum(tx.points for tx in self.transactions if tx.user_id == user_id)

    async def verifications_by_week(self, user_id, since, now):
        return self._weekly_counts(
            (
                tx.created_at
                for tx in self.transactions
                if tx.user_id == user_id and tx.type == PointType.COMPLAINT_VERIFIED.value
            ),
            since,
            now,
        )

    async def recent_point_transactions(self, user_id, limit=10):
        items = sorted((tx for tx in self.transactions if tx.user_id == user_id), key=lambda tx: tx.created_at, reverse=True)
        return items[:limit]


def make_complaint(
    citizen_id: str = "citizen-1",
    status: str = "Submitted",
    priority: str = "Medium",
    created_at: Optional[datetime] = None,
    **overrides,
) -> Complaint:
    return Complaint(
        citizen_id=citizen_id,
        title="Pothole on Main St",
        description="Large pothole near the bus stop",
        images=["/uploads/complaints/before.jpg"],
        status=status,
        priority=priority,
        base_priority=priority,
        created_at=created_at or datetime.now(timezone.utc),
        **overrides,
    )


@pytest.fixture
def unconfigured_config() -> ServicesConfig:
    return ServicesConfig(gemini=GeminiConfig(api_key=None), location=LocationConfig())


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def complaint_service(repository, unconfigured_config) -> ComplaintService:
    ai = ComplaintAIService(unconfigured_config.gemini)
    return ComplaintService(repository, ai)


@pytest_asyncio.fixture
async def fake_redis():
    client = FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()


@pytest.fixture
def cache(fake_redis) -> RedisService:
    return RedisService(client=fake_redis)


@pytest_asyncio.fixture
async def services(unconfigured_config):
    factory = ServiceFactory(config_loader=lambda: unconfigured_config)
    await factory.initialize(run_health_check=False)
    try:
        yield factory
    finally:
        await factory.shutdown()


@pytest_asyncio.fixture
async def api_client(services, repository, tmp_path, monkeypatch):
    from civiclens.main import create_app

    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path))
    app = create_app()
    app.state.services = services
    app.state.repository = repository
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
