"""Core models and errors."""

from career_match.core.models import (
    Application,
    ApplicationEvent,
    ApplicationEventKind,
    ApplicationStatus,
    Decision,
    DistributionChannel,
    Feedback,
    Match,
    MatchStatus,
    Posting,
    Profile,
    ThrottleRecord,
    WeightSource,
    WeightVector,
)

__all__ = [
    "Application",
    "ApplicationEvent",
    "ApplicationEventKind",
    "ApplicationStatus",
    "Decision",
    "DistributionChannel",
    "Feedback",
    "Match",
    "MatchStatus",
    "Posting",
    "Profile",
    "ThrottleRecord",
    "WeightSource",
    "WeightVector",
]
