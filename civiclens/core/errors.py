from enum import Enum
from typing import List, Optional


class CivicLensError(Exception):
    """Base class for errors raised by the CivicLens core."""


class ServiceNotInitializedError(CivicLensError):
    def __init__(self, message: str = "Services not initialized. Call initialize() first."):
        super().__init__(message)


class ConfigurationError(CivicLensError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Configuration validation failed: {', '.join(self.errors)}")


class ComplaintNotFoundError(CivicLensError):
    def __init__(self, complaint_id: str):
        self.complaint_id = complaint_id
        super().__init__(f"Complaint {complaint_id} not found")


class CommentNotFoundError(CivicLensError):
    def __init__(self, comment_id: str):
        self.comment_id = comment_id
        super().__init__(f"Comment {comment_id} not found")


class PermissionDeniedError(CivicLensError):
    pass


class InvalidStatusTransitionError(CivicLensError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid status transition: {current} -> {requested}")


class InvalidCommentError(CivicLensError):
    pass


class VerificationRejection(str, Enum):
    NOT_RESOLVED = "NOT_RESOLVED"
    SELF_VERIFICATION = "SELF_VERIFICATION"
    DUPLICATE_VERIFICATION = "DUPLICATE_VERIFICATION"


class VerificationRejected(CivicLensError):
    """A verification submission broke one of the acceptance rules."""

    def __init__(self, reason: VerificationRejection, message: Optional[str] = None):
        self.reason = reason
        self.message = message or _REJECTION_MESSAGES[reason]
        super().__init__(self.message)


_REJECTION_MESSAGES = {
    VerificationRejection.NOT_RESOLVED: "Only resolved complaints can be verified",
    VerificationRejection.SELF_VERIFICATION: "You cannot verify your own complaint",
    VerificationRejection.DUPLICATE_VERIFICATION: "You have already verified this complaint",
}
