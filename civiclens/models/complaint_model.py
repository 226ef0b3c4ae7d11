from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field

from civiclens.utils.departments import DEFAULT_DEPARTMENT


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_object_id() -> str:
    return str(ObjectId())


class ComplaintStatus(str, Enum):
    SUBMITTED = "Submitted"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


PRIORITY_LADDER = [Priority.LOW.value, Priority.MEDIUM.value, Priority.HIGH.value]

CATEGORIES = ["Roads", "Sanitation", "Water", "Electricity", "Streetlights", "Garbage", "Other"]


class Confidence(BaseModel):
    description: float = Field(default=0.0, ge=0.0, le=1.0)
    category: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: float = Field(default=0.0, ge=0.0, le=1.0)


class AIMetadata(BaseModel):
    """
    Free-form metadata returned by the vision model.

    The fields the prompt asks for are typed; anything else the model sends
    back is kept as extra keys and exposed through `additional_properties`.
    """
    detected_objects: List[str] = Field(default_factory=list, alias="detectedObjects")
    scene_description: Optional[str] = Field(default=None, alias="sceneDescription")
    issue_type: Optional[str] = Field(default=None, alias="issueType")

    class Config:
        populate_by_name = True
        extra = "allow"

    @property
    def additional_properties(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class AIRecord(BaseModel):
    """Classification written once at creation time."""
    description: str = ""
    title: str = ""
    category: str = "Other"
    priority: str = Priority.MEDIUM.value
    department: str = DEFAULT_DEPARTMENT
    confidence: Confidence = Field(default_factory=Confidence)
    metadata: AIMetadata = Field(default_factory=AIMetadata)
    processing_time_ms: Optional[int] = None
    ai_service_version: Optional[str] = None
    fallback: bool = False
    error: Optional[str] = None


class TimelineEntry(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=utc_now)
    updated_by: Optional[str] = None
    note: Optional[str] = None


class Complaint(BaseModel):
    id: str = Field(default_factory=new_object_id, alias="_id")
    citizen_id: str
    title: str
    description: str
    location: Optional[str] = None
    address: str = ""
    # index 0 = before, index 1 = after (once resolved)
    images: List[str] = Field(default_factory=list)

    status: ComplaintStatus = ComplaintStatus.SUBMITTED

    category: str = "Other"
    priority: Priority = Priority.MEDIUM
    # priority assigned at creation; escalation is measured from here
    base_priority: Priority = Priority.MEDIUM
    department: str = DEFAULT_DEPARTMENT
    ai: AIRecord = Field(default_factory=AIRecord)

    votes: int = 0
    voted_by: List[str] = Field(default_factory=list)
    comment_count: int = 0
    engagement_score: float = 0.0
    trend_score: float = 0.0
    is_trending: bool = False
    priority_boost: int = Field(default=0, ge=0, le=2)
    last_engagement_at: datetime = Field(default_factory=utc_now)

    verified_by: List[str] = Field(default_factory=list)
    verification_submissions: List[str] = Field(default_factory=list)
    verification_count: int = 0
    trust_score: float = Field(default=0.0, ge=0.0, le=100.0)
    is_verified: bool = False

    timeline: List[TimelineEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True
        validate_assignment = True

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
