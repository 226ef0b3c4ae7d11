"""
Per-citizen dashboard: open and resolved complaints, civic points, a display
location and a four-week activity series.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from civiclens.models.complaint_model import ComplaintStatus, utc_now

logger = logging.getLogger(__name__)

IMPACT_WEEKS = 4
RECENT_ACTIVITY_LIMIT = 10
NO_LOCATION = "Location not available"
# placeholders the mobile client submits before geolocation finishes
INVALID_ADDRESS_MARKERS = ("detecting", "location not available", "add location", "enter location")


def is_valid_address(address: Optional[str]) -> bool:
    text = (address or "").strip().lower()
    return bool(text) and not any(marker in text for marker in INVALID_ADDRESS_MARKERS)


def location_from_address(address: str) -> str:
    """Short display location: the first comma-separated part of an address."""
    first = address.split(",")[0].strip()
    return first or address.strip()


def build_impact_graph(created: Dict[int, int], verified: Dict[int, int], weeks: int = IMPACT_WEEKS) -> List[Dict[str, Any]]:
    """
    Turn weeks-ago buckets into an oldest-first series.

    Bucket 0 is the current week and becomes the last entry ("Week 4").
    """
    series = []
    for weeks_ago in range(weeks - 1, -1, -1):
        series.append(
            {
                "week": f"Week {weeks - weeks_ago}",
                "complaints_created": created.get(weeks_ago, 0),
                "complaints_verified": verified.get(weeks_ago, 0),
            }
        )
    return series


class DashboardService:
    def __init__(self, repository):
        self.repository = repository

    async def get_location(self, user_id: str) -> str:
        for address in await self.repository.recent_addresses(user_id):
            if is_valid_address(address):
                return location_from_address(address)
        return NO_LOCATION

    async def get_dashboard(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        since = now - timedelta(weeks=IMPACT_WEEKS)
        terminal = [ComplaintStatus.RESOLVED.value, ComplaintStatus.REJECTED.value]

        active = await self.repository.count_complaints(user_id, exclude_statuses=terminal)
        resolved = await self.repository.count_complaints(user_id, status=ComplaintStatus.RESOLVED.value)
        points = await self.repository.sum_points(user_id)
        created = await self.repository.complaints_created_by_week(user_id, since, now)
        verified = await self.repository.verifications_by_week(user_id, since, now)
        activities = await self.repository.recent_point_transactions(user_id, limit=RECENT_ACTIVITY_LIMIT)

        logger.info(f"📊 Dashboard for {user_id}: active={active}, resolved={resolved}, points={points}")
        return {
            "user_id": user_id,
            "location": await self.get_location(user_id),
            "statistics": {
                "active_issues": active,
                "resolved_issues": resolved,
                "civic_points": points,
            },
            "impact_graph": {"weeks": build_impact_graph(created, verified)},
            "recent_activities": [
                {"points": tx.points, "description": tx.description, "created_at": tx.created_at}
                for tx in activities
            ],
        }
