"""API models for request/response schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from career_match.core.models import (
    Application,
    ApplicationStatus,
    Decision,
    DistributionChannel,
    Feedback,
    Match,
)


class DecisionRequest(BaseModel):
    """Approve or reject a surfaced match."""
    user_id: str = Field(..., description="Deciding user")
    decision: Decision = Field(..., description="Approved or Rejected")
    reason: Optional[str] = Field(None, description="Reason, e.g. 'Low Salary'")
    notes: Optional[str] = Field(None, description="Free-form notes")
    channel: Optional[DistributionChannel] = Field(None, description="Channel for the application created on approval")


class DecisionResponse(BaseModel):
    """Result of a match decision."""
    match: Match = Field(..., description="Decided match")
    feedback: Feedback = Field(..., description="Recorded feedback")
    backfilled: Optional[Match] = Field(None, description="Match surfaced in its place")
    application: Optional[Application] = Field(None, description="Application created on approval")


class ApplicationCreateRequest(BaseModel):
    """Create an application from an approved match."""
    match_id: str = Field(..., description="Approved match")
    user_id: Optional[str] = Field(None, description="Owning user")
    channel: Optional[DistributionChannel] = Field(None, description="Delivery channel")
    cover_letter: Optional[str] = Field(None, description="Tailored cover letter")
    custom_message: Optional[str] = Field(None, description="Custom message to the recruiter")


class ApplicationEditRequest(BaseModel):
    """Change tailored content of a queued application."""
    user_id: Optional[str] = Field(None, description="Owning user")
    cover_letter: Optional[str] = Field(None, description="Tailored cover letter")
    custom_message: Optional[str] = Field(None, description="Custom message to the recruiter")


class SendRequest(BaseModel):
    """Explicit confirmation to send an application."""
    user_id: Optional[str] = Field(None, description="Owning user")
    confirm: bool = Field(False, description="Must be true to send")


class SendResponse(BaseModel):
    """Outcome of a send request."""
    outcome: str = Field(..., description="sent, deferred, retrying or failed")
    application: Application = Field(..., description="Application after the attempt")
    retry_after_seconds: Optional[float] = Field(None, description="Seconds until the throttle admits again")
    error: Optional[str] = Field(None, description="Delivery error, if any")


class OwnerRequest(BaseModel):
    """Request that only identifies the acting user."""
    user_id: Optional[str] = Field(None, description="Owning user")


class TrackingSignalRequest(BaseModel):
    """Status signal reported by a distribution channel."""
    status: ApplicationStatus = Field(..., description="Viewed, Responded or Rejected")
    details: Optional[str] = Field(None, description="Signal details")


class SkillCompletedRequest(BaseModel):
    """User finished closing a skill gap."""
    skill: str = Field(..., min_length=1, description="Completed skill")


class RescoreResponse(BaseModel):
    """Score change of one match."""
    match_id: str = Field(..., description="Re-scored match")
    previous_score: float = Field(..., description="Score before re-scoring")
    new_score: float = Field(..., description="Score after re-scoring")
    remaining_gaps: List[str] = Field(default_factory=list, description="Skill gaps still open")


class QuotaResponse(BaseModel):
    """Throttle usage for one channel."""
    channel: DistributionChannel = Field(..., description="Distribution channel")
    used: int = Field(..., description="Admissions inside the current window")
    limit: int = Field(..., description="Admissions allowed per window")
    window_seconds: float = Field(..., description="Window length")
    resets_at: Optional[datetime] = Field(None, description="When the oldest admission leaves the window")


class AnalyticsResponse(BaseModel):
    """Aggregate feedback statistics."""
    total: int = Field(..., description="Feedback entries")
    approved_count: int = Field(..., description="Approvals")
    rejected_count: int = Field(..., description="Rejections")
    reject_reasons: Dict[str, int] = Field(default_factory=dict, description="Rejections per reason")
    top_reject_reasons: List[str] = Field(default_factory=list, description="Most common reasons")
    learning_active: bool = Field(..., description="Whether recalibration is active")
    last_feedback_at: Optional[datetime] = Field(None, description="Latest feedback time")
    weights_version: int = Field(..., description="Weight version in force")


class LearningStatusResponse(BaseModel):
    """Learning state of one user."""
    user_id: str = Field(..., description="User")
    feedback_count: int = Field(..., description="Feedback entries recorded")
    activation_threshold: int = Field(..., description="Entries needed before learning starts")
    active: bool = Field(..., description="Whether recalibration is active")
    weights_version: int = Field(..., description="Weight version in force")
    weights: Dict[str, float] = Field(default_factory=dict, description="Weights in force")
    source: str = Field(..., description="Origin of the weights")


class RollbackRequest(BaseModel):
    """Republish an earlier weight version."""
    version: int = Field(..., ge=1, description="Version to restore")


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="Service version")
    components: Dict[str, str] = Field(..., description="Component status")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(..., description="Error timestamp")


class StatusResponse(BaseModel):
    """Generic status response."""
    status: str = Field(..., description="Operation status")
    message: str = Field(..., description="Status message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional data")
