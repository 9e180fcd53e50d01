"""Core data models for Career Match."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class MatchStatus(str, Enum):
    """Review status of a match."""
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class Decision(str, Enum):
    """User decision on a surfaced match."""
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ApplicationStatus(str, Enum):
    """Lifecycle status of an outbound application."""
    QUEUED = "Queued"
    SENT = "Sent"
    VIEWED = "Viewed"
    RESPONDED = "Responded"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"
    FAILED = "Failed"


class DistributionChannel(str, Enum):
    """Medium through which an application is delivered."""
    EMAIL = "Email"
    LINKEDIN = "LinkedIn"


class ApplicationEventKind(str, Enum):
    """Kinds of entries in an application's event log."""
    CREATED = "created"
    EDITED = "edited"
    SEND_REQUESTED = "send_requested"
    THROTTLED = "throttled"
    SEND_FAILED = "send_failed"
    STATUS_CHANGE = "status_change"


class WeightSource(str, Enum):
    """Where a weight vector came from."""
    DEFAULT = "default"
    RECALIBRATED = "recalibrated"
    ROLLBACK = "rollback"


class Profile(BaseModel):
    """Digital twin of a user: resume embedding, skills and preferences."""
    user_id: str = Field(..., description="Owning user")
    embedding: List[float] = Field(default_factory=list, description="Resume embedding vector")
    skills: List[str] = Field(default_factory=list, description="Skill names")
    experience_summary: Optional[str] = Field(None, description="Experience summary")
    education_summary: Optional[str] = Field(None, description="Education summary")
    preferred_sectors: List[str] = Field(default_factory=list, description="Preferred sectors")
    preferred_cities: List[str] = Field(default_factory=list, description="Preferred cities")
    salary_min: Optional[int] = Field(None, description="Minimum expected salary")
    salary_max: Optional[int] = Field(None, description="Maximum expected salary")
    remote_preferred: bool = Field(False, description="Whether the user prefers remote work")


class Posting(BaseModel):
    """Scraped job posting."""
    id: str = Field(default_factory=new_id, description="Posting identifier")
    title: str = Field(..., description="Job title")
    company: str = Field(..., description="Company name")
    embedding: Optional[List[float]] = Field(None, description="Description embedding vector")
    sector: Optional[str] = Field(None, description="Industry sector")
    city: Optional[str] = Field(None, description="City")
    is_remote: bool = Field(False, description="Whether the role is remote")
    salary_min: Optional[int] = Field(None, description="Minimum offered salary")
    salary_max: Optional[int] = Field(None, description="Maximum offered salary")
    requirements: List[str] = Field(default_factory=list, description="Required skills")
    is_active: bool = Field(True, description="Whether the posting is still open")
    scraped_at: datetime = Field(default_factory=utc_now, description="When the posting was scraped")
    contact_email: Optional[str] = Field(None, description="HR contact address")
    source_url: Optional[str] = Field(None, description="Original posting URL")


class Match(BaseModel):
    """Scored (user, posting) pairing."""
    id: str = Field(default_factory=new_id, description="Match identifier")
    user_id: str = Field(..., description="Owning user")
    posting_id: str = Field(..., description="Matched posting")
    score: float = Field(..., ge=0, le=100, description="Match score 0-100")
    reasoning: str = Field("", description="Human-readable explanation")
    skill_gaps: List[str] = Field(default_factory=list, description="Requirements the user lacks")
    signals: Dict[str, float] = Field(default_factory=dict, description="Feature values used for scoring")
    weights_version: int = Field(0, description="Weight vector version used (0 = default)")
    status: MatchStatus = Field(MatchStatus.PENDING, description="Review status")
    in_queue: bool = Field(False, description="Whether the match is currently surfaced")
    posting_scraped_at: datetime = Field(default_factory=utc_now, description="Posting recency for tie-breaks")
    calculated_at: datetime = Field(default_factory=utc_now, description="Scoring time")
    decided_at: Optional[datetime] = Field(None, description="Decision time")


class Feedback(BaseModel):
    """Immutable approve/reject signal on a match."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="Feedback identifier")
    match_id: str = Field(..., description="Decided match")
    user_id: str = Field(..., description="Deciding user")
    decision: Decision = Field(..., description="Approve or reject")
    reason: Optional[str] = Field(None, description="Reason, e.g. 'Low Salary'")
    notes: Optional[str] = Field(None, description="Free-form notes")
    signals: Dict[str, float] = Field(default_factory=dict, description="Match signals at decision time")
    created_at: datetime = Field(default_factory=utc_now, description="Submission time")


class WeightVector(BaseModel):
    """Versioned set of feature weights in [0, 1] summing to 1."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = Field(None, description="Owning user, None for the global default")
    version: int = Field(0, ge=0, description="Monotonic version, 0 for the default")
    weights: Dict[str, float] = Field(..., description="Weight per feature")
    source: WeightSource = Field(WeightSource.DEFAULT, description="Origin of this vector")
    feedback_count: int = Field(0, ge=0, description="Feedback entries used to compute it")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")

    @field_validator("weights")
    @classmethod
    def _validate_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        if not value:
            raise ValueError("weights must not be empty")
        for name, weight in value.items():
            if not math.isfinite(weight) or not 0.0 <= weight <= 1.0:
                raise ValueError(f"weight {name}={weight} outside [0, 1]")
        if abs(math.fsum(value.values()) - 1.0) > 1e-6:
            raise ValueError("weights must sum to 1")
        return value


class ApplicationEvent(BaseModel):
    """Immutable entry in an application's event log."""
    model_config = ConfigDict(frozen=True)

    kind: ApplicationEventKind = Field(..., description="Event kind")
    from_status: Optional[ApplicationStatus] = Field(None, description="Status before the event")
    to_status: Optional[ApplicationStatus] = Field(None, description="Status after the event")
    details: Optional[str] = Field(None, description="Event details")
    timestamp: datetime = Field(default_factory=utc_now, description="Event time")


class Application(BaseModel):
    """Tracked outbound job application derived from an approved match."""
    id: str = Field(default_factory=new_id, description="Application identifier")
    match_id: str = Field(..., description="Approved match")
    user_id: str = Field(..., description="Applicant")
    posting_id: str = Field(..., description="Target posting")
    channel: DistributionChannel = Field(DistributionChannel.EMAIL, description="Delivery channel")
    status: ApplicationStatus = Field(ApplicationStatus.QUEUED, description="Lifecycle status")
    cover_letter: Optional[str] = Field(None, description="Tailored cover letter")
    custom_message: Optional[str] = Field(None, description="Custom message to the recruiter")
    send_requested: bool = Field(False, description="User confirmed the send")
    attempts: int = Field(0, ge=0, description="Delivery attempts made")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    sent_at: Optional[datetime] = Field(None, description="Delivery time")
    viewed_at: Optional[datetime] = Field(None, description="First view time")
    responded_at: Optional[datetime] = Field(None, description="Response time")
    events: List[ApplicationEvent] = Field(default_factory=list, description="Append-only event log")


class ThrottleRecord(BaseModel):
    """Immutable record of one admitted outbound action."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Acting user")
    channel: DistributionChannel = Field(..., description="Channel used")
    timestamp: datetime = Field(default_factory=utc_now, description="Admission time")
