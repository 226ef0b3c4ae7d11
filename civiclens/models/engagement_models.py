from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from civiclens.models.complaint_model import new_object_id, utc_now

MAX_COMMENT_LENGTH = 500


class Comment(BaseModel):
    id: str = Field(default_factory=new_object_id, alias="_id")
    complaint_id: str
    user_id: str
    text: str = Field(..., min_length=1, max_length=MAX_COMMENT_LENGTH)
    likes: int = 0
    liked_by: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        populate_by_name = True
        validate_assignment = True

    @field_validator("text", mode="before")
    @classmethod
    def strip_text(cls, v):
        # runs before the length limits
        if isinstance(v, str):
            v = v.strip()
        if not v:
            raise ValueError("Comment text cannot be empty")
        return v

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationSubmission(BaseModel):
    id: str = Field(default_factory=new_object_id, alias="_id")
    complaint_id: str
    verifier_id: str
    verification_image: str
    verification_location: Optional[str] = None
    verification_address: Optional[str] = None
    # submissions are auto-approved on acceptance
    status: VerificationStatus = VerificationStatus.APPROVED
    is_trusted: bool = False
    trust_score: float = Field(default=0.0, ge=0.0, le=100.0)
    reviewed_by: Optional[str] = None
    review_note: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True
        validate_assignment = True

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PointType(str, Enum):
    COMPLAINT_REPORTED = "complaint_reported"
    COMPLAINT_VERIFIED = "complaint_verified"
    OTHER = "other"


class PointTransaction(BaseModel):
    """Append-only ledger entry. A user's balance is the sum of their entries."""
    id: str = Field(default_factory=new_object_id, alias="_id")
    user_id: str
    points: int
    type: PointType
    description: str
    related_complaint_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True
        frozen = True

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
