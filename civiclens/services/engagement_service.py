from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from civiclens.models.complaint_model import PRIORITY_LADDER, Complaint, utc_now

VOTE_WEIGHT = 1
COMMENT_WEIGHT = 2
MIN_TIME_DECAY = 0.1
TRENDING_SCORE = 30

# (engagement score threshold, priority boost, forces trending)
ESCALATION_THRESHOLDS: List[Tuple[int, int, bool]] = [
    (10, 1, False),
    (25, 2, False),
    (50, 2, True),
]


@dataclass(frozen=True)
class EngagementMetrics:
    """Derived engagement fields for a complaint at a given instant."""
    engagement_score: float
    time_decay: float
    trend_score: float
    priority_boost: int
    is_trending: bool


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes that are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_engagement(
    votes: int,
    comment_count: int,
    created_at: datetime,
    now: Optional[datetime] = None,
) -> EngagementMetrics:
    """Pure projection of (votes, comment_count, created_at, now) onto the derived fields."""
    now = _as_utc(now or utc_now())
    engagement_score = float(votes * VOTE_WEIGHT + comment_count * COMMENT_WEIGHT)

    hours = max(0.0, (now - _as_utc(created_at)).total_seconds() / 3600.0)
    time_decay = max(MIN_TIME_DECAY, 1.0 / (1.0 + hours / 24.0))
    trend_score = engagement_score * time_decay

    boost = 0
    forced_trending = False
    for threshold, level, forces_trending in ESCALATION_THRESHOLDS:
        if engagement_score >= threshold:
            boost = max(boost, level)
            forced_trending = forced_trending or forces_trending

    return EngagementMetrics(
        engagement_score=engagement_score,
        time_decay=time_decay,
        trend_score=trend_score,
        priority_boost=boost,
        is_trending=forced_trending or trend_score > TRENDING_SCORE,
    )


def escalate_priority(current: str, base: str, boost: int) -> str:
    """
    Advance `base` by `boost` steps, capped at High, never going below `current`.

    Measuring from the creation-time priority keeps repeated recomputes from
    stacking the same boost twice.
    """
    ladder_top = len(PRIORITY_LADDER) - 1
    current_idx = PRIORITY_LADDER.index(current) if current in PRIORITY_LADDER else 1
    base_idx = PRIORITY_LADDER.index(base) if base in PRIORITY_LADDER else current_idx
    boosted_idx = min(ladder_top, base_idx + max(0, boost))
    return PRIORITY_LADDER[max(current_idx, boosted_idx)]


def apply_engagement(complaint: Complaint, now: Optional[datetime] = None) -> Complaint:
    """Recompute the derived engagement fields on `complaint` in place and return it."""
    metrics = compute_engagement(complaint.votes, complaint.comment_count, complaint.created_at, now)
    complaint.engagement_score = metrics.engagement_score
    complaint.trend_score = metrics.trend_score
    complaint.priority_boost = metrics.priority_boost
    complaint.is_trending = metrics.is_trending
    complaint.priority = escalate_priority(complaint.priority, complaint.base_priority, metrics.priority_boost)
    return complaint
