"""Feedback learning loop."""

from career_match.learning.feedback import (
    FeedbackAnalytics,
    FeedbackLearningLoop,
    recalibrate_weights
)

__all__ = [
    "FeedbackAnalytics",
    "FeedbackLearningLoop",
    "recalibrate_weights"
]
