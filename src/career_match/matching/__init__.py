"""Match scoring, review queue and skill-gap re-scoring."""

from career_match.matching.scoring import (
    FEATURES,
    MatchScoringEngine,
    ScoredPosting,
    cosine_similarity,
    normalize_skill
)
from career_match.matching.queue import DecisionResult, MatchQueueManager
from career_match.matching.skill_gaps import RescoreResult, SkillGapFeedbackBridge

__all__ = [
    "FEATURES",
    "MatchScoringEngine",
    "ScoredPosting",
    "cosine_similarity",
    "normalize_skill",
    "DecisionResult",
    "MatchQueueManager",
    "RescoreResult",
    "SkillGapFeedbackBridge"
]
