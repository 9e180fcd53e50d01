"""Re-scoring of matches when a user closes a skill gap."""

from dataclasses import dataclass, field
from typing import List

from career_match.matching.scoring import MatchScoringEngine, normalize_skill
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RescoreResult:
    """Score change of one match after a skill completion."""
    match_id: str
    previous_score: float
    new_score: float
    remaining_gaps: List[str] = field(default_factory=list)


class SkillGapFeedbackBridge:
    """Turns skill-completion events into re-scored matches."""

    def __init__(self, repository, engine: MatchScoringEngine):
        self.logger = logger.bind(component="skill_gap_bridge")
        self.repository = repository
        self.engine = engine

    async def on_skill_completed(self, user_id: str, skill: str) -> List[RescoreResult]:
        """Re-score every match of the user that lists ``skill`` as a gap."""
        completed = normalize_skill(skill)
        profile = await self.repository.get_profile(user_id)

        affected = [
            m for m in await self.repository.list_matches(user_id)
            if any(normalize_skill(gap) == completed for gap in m.skill_gaps)
        ]
        self.logger.info("Skill gap completed", user_id=user_id, skill=skill, affected=len(affected))

        results = []
        for candidate in affected:
            async with self.repository.lock("match", candidate.id):
                match = await self.repository.get_match(candidate.id)
                posting = await self.repository.get_posting(match.posting_id)
                weights = await self.engine.weights_for_version(user_id, match.weights_version)

                scored = self.engine.rescore_after_skill_completion(match, posting, profile, skill, weights)
                previous = match.score
                match.score = scored.score
                match.reasoning = scored.reasoning
                match.signals = scored.signals
                match.skill_gaps = scored.skill_gaps
                await self.repository.save_match(match)

            results.append(RescoreResult(
                match_id=match.id,
                previous_score=previous,
                new_score=match.score,
                remaining_gaps=list(match.skill_gaps)
            ))
            self.logger.debug(
                "Match re-scored",
                match_id=match.id,
                previous_score=previous,
                new_score=match.score
            )
        return results
