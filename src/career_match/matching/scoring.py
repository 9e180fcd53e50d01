"""Match scoring engine combining embedding similarity with categorical signals."""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import DuplicateMatchError, InvalidEmbeddingError
from career_match.core.models import Match, Posting, Profile, WeightSource, WeightVector, utc_now
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


EMBEDDING_SIMILARITY = "embedding_similarity"
SKILL_OVERLAP = "skill_overlap"
SECTOR_MATCH = "sector_match"
CITY_MATCH = "city_match"
SALARY_FIT = "salary_fit"
REMOTE_MATCH = "remote_match"

FEATURES: Tuple[str, ...] = (
    EMBEDDING_SIMILARITY,
    SKILL_OVERLAP,
    SECTOR_MATCH,
    CITY_MATCH,
    SALARY_FIT,
    REMOTE_MATCH,
)

UNKNOWN_SIGNAL = 0.5

SKILL_SYNONYMS: Dict[str, List[str]] = {
    "python": ["py", "python3"],
    "javascript": ["js", "ecmascript"],
    "node.js": ["nodejs", "node"],
    "react": ["reactjs", "react.js"],
    "vue": ["vuejs", "vue.js"],
    "machine learning": ["ml"],
    "deep learning": ["dl", "neural networks"],
    "postgresql": ["postgres"],
    "aws": ["amazon web services"],
    "azure": ["microsoft azure"],
    "kubernetes": ["k8s"],
    "c#": ["csharp", "c sharp"],
    ".net": ["dotnet", ".net core"],
}


def _build_alias_index(synonyms: Dict[str, List[str]]) -> Dict[str, str]:
    index = {}
    for canonical, aliases in synonyms.items():
        index[canonical] = canonical
        for alias in aliases:
            index[alias] = canonical
    return index


_ALIASES = _build_alias_index(SKILL_SYNONYMS)


def normalize_skill(skill: str) -> str:
    """Lower-case, collapse whitespace and map known aliases to one spelling."""
    cleaned = " ".join(skill.lower().split())
    return _ALIASES.get(cleaned, cleaned)


def cosine_similarity(left: Optional[Sequence[float]], right: Optional[Sequence[float]]) -> float:
    """Cosine similarity clamped to [0, 1].

    Raises:
        InvalidEmbeddingError: if either vector is missing, the dimensions differ,
            a component is not finite, or a vector has zero norm.
    """
    if not left or not right:
        raise InvalidEmbeddingError("Embedding is missing")
    if len(left) != len(right):
        raise InvalidEmbeddingError(f"Embedding dimension mismatch: {len(left)} != {len(right)}")
    if not all(math.isfinite(x) for x in left) or not all(math.isfinite(x) for x in right):
        raise InvalidEmbeddingError("Embedding contains non-finite values")

    dot = math.fsum(a * b for a, b in zip(left, right))
    norm_left = math.sqrt(math.fsum(a * a for a in left))
    norm_right = math.sqrt(math.fsum(b * b for b in right))
    if norm_left == 0 or norm_right == 0:
        raise InvalidEmbeddingError("Embedding has zero norm")

    return max(0.0, min(1.0, dot / (norm_left * norm_right)))


def skill_overlap(skills: Iterable[str], requirements: Sequence[str]) -> Tuple[float, List[str]]:
    """Return the covered fraction of requirements and the uncovered ones, in posting order."""
    if not requirements:
        return 1.0, []
    owned = {normalize_skill(s) for s in skills}
    gaps = [req for req in requirements if normalize_skill(req) not in owned]
    return (len(requirements) - len(gaps)) / len(requirements), gaps


def _in_preferences(value: Optional[str], preferences: Sequence[str]) -> Optional[bool]:
    if not preferences:
        return True
    if value is None:
        return None
    needle = value.lower()
    return any(pref.lower() in needle or needle in pref.lower() for pref in preferences)


def _indicator(flag: Optional[bool]) -> float:
    if flag is None:
        return UNKNOWN_SIGNAL
    return 1.0 if flag else 0.0


def sector_signal(profile: Profile, posting: Posting) -> float:
    return _indicator(_in_preferences(posting.sector, profile.preferred_sectors))


def city_signal(profile: Profile, posting: Posting) -> float:
    if posting.is_remote and profile.remote_preferred:
        return 1.0
    return _indicator(_in_preferences(posting.city, profile.preferred_cities))


def salary_signal(profile: Profile, posting: Posting) -> float:
    if profile.salary_min is None and profile.salary_max is None:
        return 1.0
    if posting.salary_min is None and posting.salary_max is None:
        return UNKNOWN_SIGNAL
    # Bands overlap unless one lies entirely above the other
    if profile.salary_min is not None and posting.salary_max is not None and posting.salary_max < profile.salary_min:
        return 0.0
    if profile.salary_max is not None and posting.salary_min is not None and posting.salary_min > profile.salary_max:
        return 0.0
    return 1.0


def remote_signal(profile: Profile, posting: Posting) -> float:
    if not profile.remote_preferred:
        return 1.0
    return 1.0 if posting.is_remote else 0.0


def combine(signals: Dict[str, float], weights: Dict[str, float]) -> float:
    """Weighted sum of signals on a 0-100 scale, rounded to 2 decimals."""
    total = math.fsum(weights.get(name, 0.0) * signals.get(name, 0.0) for name in FEATURES)
    return round(max(0.0, min(100.0, 100.0 * total)), 2)


@dataclass
class ScoredPosting:
    """Result of scoring one posting against a profile."""
    posting: Posting
    score: float
    reasoning: str
    signals: Dict[str, float]
    skill_gaps: List[str] = field(default_factory=list)


class MatchScoringEngine:
    """Scores postings against a user's profile using the user's weight vector."""

    def __init__(self, repository, config: Optional[Settings] = None, notifier=None):
        self.logger = logger.bind(component="match_scoring_engine")
        self.repository = repository
        self.settings = config or default_settings
        self.notifier = notifier

    def default_weights(self) -> WeightVector:
        return WeightVector(
            user_id=None,
            version=0,
            weights=dict(self.settings.default_weights),
            source=WeightSource.DEFAULT
        )

    async def resolve_weights(self, user_id: str) -> WeightVector:
        """The user's current weight vector, or explicitly the global default."""
        weights = await self.repository.get_weights(user_id)
        return weights if weights is not None else self.default_weights()

    async def weights_for_version(self, user_id: str, version: int) -> WeightVector:
        if version == 0:
            return self.default_weights()
        weights = await self.repository.get_weights_version(user_id, version)
        return weights if weights is not None else self.default_weights()

    def compute_signals(self, profile: Profile, posting: Posting) -> Optional[Tuple[Dict[str, float], List[str]]]:
        """Feature values for the pair, or None when similarity is below the floor."""
        similarity = cosine_similarity(profile.embedding, posting.embedding)
        if similarity < self.settings.similarity_floor:
            return None

        overlap, gaps = skill_overlap(profile.skills, posting.requirements)
        signals = {
            EMBEDDING_SIMILARITY: similarity,
            SKILL_OVERLAP: overlap,
            SECTOR_MATCH: sector_signal(profile, posting),
            CITY_MATCH: city_signal(profile, posting),
            SALARY_FIT: salary_signal(profile, posting),
            REMOTE_MATCH: remote_signal(profile, posting),
        }
        return signals, gaps

    def score_posting(self, profile: Profile, posting: Posting, weights: WeightVector) -> Optional[ScoredPosting]:
        """
        Score a single posting. Pure and deterministic in its three inputs.

        Returns:
            The scored posting, or None when it falls below the similarity floor.

        Raises:
            InvalidEmbeddingError: when either embedding is unusable.
        """
        computed = self.compute_signals(profile, posting)
        if computed is None:
            return None
        signals, gaps = computed
        score = combine(signals, weights.weights)
        return ScoredPosting(
            posting=posting,
            score=score,
            reasoning=self.build_reasoning(posting, signals, gaps, score),
            signals=signals,
            skill_gaps=gaps
        )

    def try_score(self, profile: Profile, posting: Posting, weights: WeightVector) -> Optional[ScoredPosting]:
        """Score one posting, or None when it is inactive, filtered or malformed."""
        if not posting.is_active:
            return None
        try:
            return self.score_posting(profile, posting, weights)
        except InvalidEmbeddingError as e:
            self.logger.warning(
                "Skipping posting with invalid embedding",
                posting_id=posting.id,
                user_id=profile.user_id,
                error=e.message
            )
            return None

    def rank(self, profile: Profile, postings: Iterable[Posting], weights: WeightVector) -> List[ScoredPosting]:
        """Score active postings, skipping bad records, best first."""
        results = [
            scored for scored in (self.try_score(profile, p, weights) for p in postings)
            if scored is not None
        ]
        results.sort(key=lambda r: (-r.score, -r.posting.scraped_at.timestamp(), r.posting.id))
        return results

    def build_reasoning(
        self,
        posting: Posting,
        signals: Dict[str, float],
        gaps: List[str],
        score: float
    ) -> str:
        """Deterministic explanation of a score."""
        parts = [f"Score {score:.2f} for {posting.title} at {posting.company}."]
        parts.append(f"Semantic similarity {signals.get(EMBEDDING_SIMILARITY, 0.0):.2f}.")

        total = len(posting.requirements)
        if total:
            covered = total - len(gaps)
            parts.append(f"{covered}/{total} requirements covered.")
        else:
            parts.append("No explicit requirements listed.")

        labels = {
            SECTOR_MATCH: f"sector {posting.sector or 'unknown'}",
            CITY_MATCH: "remote role" if posting.is_remote else f"city {posting.city or 'unknown'}",
            SALARY_FIT: "salary band",
            REMOTE_MATCH: "remote preference",
        }
        matched = [labels[name] for name in labels if signals.get(name) == 1.0]
        unknown = [labels[name] for name in labels if signals.get(name) == UNKNOWN_SIGNAL]
        mismatched = [labels[name] for name in labels if signals.get(name) == 0.0]
        if matched:
            parts.append("Matches " + ", ".join(matched) + ".")
        if unknown:
            parts.append("Unknown " + ", ".join(unknown) + ".")
        if mismatched:
            parts.append("Outside " + ", ".join(mismatched) + ".")
        if gaps:
            parts.append("Missing skills: " + ", ".join(gaps) + ".")
        return " ".join(parts)

    async def score_user(self, user_id: str) -> List[Match]:
        """
        Score every active, not yet matched posting for a user and persist the matches.

        Runs as a background job; one bad posting never aborts the batch.
        """
        profile = await self.repository.get_profile(user_id)
        weights = await self.resolve_weights(user_id)
        already_matched = await self.repository.matched_posting_ids(user_id)

        candidates = [
            p for p in await self.repository.get_active_postings()
            if p.id not in already_matched
        ]
        candidates.sort(key=lambda p: (-p.scraped_at.timestamp(), p.id))

        self.logger.info(
            "Scoring postings for user",
            user_id=user_id,
            candidate_count=len(candidates),
            weights_version=weights.version
        )

        # The cap counts surviving postings only
        survivors = []
        for posting in candidates:
            if len(survivors) >= self.settings.scoring_batch_size:
                break
            scored = self.try_score(profile, posting, weights)
            if scored is not None:
                survivors.append(scored)
        survivors.sort(key=lambda r: (-r.score, -r.posting.scraped_at.timestamp(), r.posting.id))

        matches = []
        for scored in survivors:
            match = Match(
                user_id=user_id,
                posting_id=scored.posting.id,
                score=scored.score,
                reasoning=scored.reasoning,
                skill_gaps=scored.skill_gaps,
                signals=scored.signals,
                weights_version=weights.version,
                posting_scraped_at=scored.posting.scraped_at,
                calculated_at=utc_now()
            )
            try:
                await self.repository.create_match(match)
            except DuplicateMatchError:
                self.logger.debug("Match already exists", user_id=user_id, posting_id=scored.posting.id)
                continue
            matches.append(match)

            if self.notifier is not None and match.score >= self.settings.surfacing_threshold:
                await self.notifier.publish(
                    user_id,
                    "new_match",
                    {"match_id": match.id, "posting_id": match.posting_id, "score": match.score}
                )

        self.logger.info(
            "Scoring run completed",
            user_id=user_id,
            created=len(matches),
            surfaced=sum(1 for m in matches if m.score >= self.settings.surfacing_threshold)
        )
        return matches

    def rescore_after_skill_completion(
        self,
        match: Match,
        posting: Posting,
        profile: Profile,
        skill: str,
        weights: WeightVector
    ) -> ScoredPosting:
        """
        Re-score a match after the user closed a skill gap.

        Only the skill-overlap signal is recomputed and it may only rise; the
        remaining signals and the weight version are those the match was scored
        with, so the new score is never lower than the stored one.
        """
        completed = normalize_skill(skill)
        skills = list(profile.skills)
        if completed not in {normalize_skill(s) for s in skills}:
            skills.append(skill)

        overlap, recomputed_gaps = skill_overlap(skills, posting.requirements)
        remaining = {normalize_skill(g) for g in recomputed_gaps}
        gaps = [g for g in match.skill_gaps if normalize_skill(g) in remaining and normalize_skill(g) != completed]

        signals = dict(match.signals)
        signals[SKILL_OVERLAP] = max(signals.get(SKILL_OVERLAP, 0.0), overlap)
        score = max(match.score, combine(signals, weights.weights))
        return ScoredPosting(
            posting=posting,
            score=score,
            reasoning=self.build_reasoning(posting, signals, gaps, score),
            signals=signals,
            skill_gaps=gaps
        )
