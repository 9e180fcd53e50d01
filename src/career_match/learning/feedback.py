"""Feedback-driven recalibration of per-user scoring weights."""

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import FeedbackDataError, NotFoundError
from career_match.core.models import (
    Decision,
    Feedback,
    Match,
    WeightSource,
    WeightVector,
    utc_now,
)
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FeedbackAnalytics:
    """Aggregate view of a user's feedback."""
    total: int
    approved_count: int
    rejected_count: int
    reject_reasons: Dict[str, int] = field(default_factory=dict)
    top_reject_reasons: List[str] = field(default_factory=list)
    learning_active: bool = False
    last_feedback_at: Optional[datetime] = None
    weights_version: int = 0


def _mean(values: List[float]) -> float:
    return math.fsum(values) / len(values)


def recalibrate_weights(
    prior: Dict[str, float],
    feedback: Sequence[Feedback],
    learning_rate: float
) -> Dict[str, float]:
    """
    Shift each prior weight toward the features that separate approvals from rejections.

    For every feature the separation is mean(approved) - mean(rejected). The weight
    moves by ``learning_rate * separation``, is clamped to [0, 1], and the vector is
    renormalised to sum to 1. Sums use ``math.fsum`` so the result depends only on
    the feedback set, never on its order.

    Raises:
        FeedbackDataError: if a feedback record lacks a feature or holds a non-finite value.
    """
    for entry in feedback:
        for name in prior:
            value = entry.signals.get(name)
            if value is None or not math.isfinite(value):
                raise FeedbackDataError(
                    f"Feedback {entry.id} has no usable value for {name}",
                    entity_id=entry.id
                )

    approved = [f for f in feedback if f.decision == Decision.APPROVED]
    rejected = [f for f in feedback if f.decision == Decision.REJECTED]

    updated = {}
    for name, weight in prior.items():
        if approved and rejected:
            separation = (
                _mean([f.signals[name] for f in approved])
                - _mean([f.signals[name] for f in rejected])
            )
        else:
            separation = 0.0
        updated[name] = min(1.0, max(0.0, weight + learning_rate * separation))

    total = math.fsum(updated.values())
    if total <= 0.0:
        return dict(prior)
    return {name: value / total for name, value in updated.items()}


class FeedbackLearningLoop:
    """Records user decisions and recalibrates scoring weights once enough signal exists."""

    def __init__(
        self,
        repository,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = logger.bind(component="feedback_learning_loop")
        self.repository = repository
        self.settings = config or default_settings
        self.clock = clock

    @property
    def activation_threshold(self) -> int:
        return self.settings.feedback_activation_threshold

    async def record_feedback(
        self,
        match: Match,
        decision: Decision,
        reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Feedback:
        """Append an immutable feedback record carrying the match's signals."""
        feedback = Feedback(
            match_id=match.id,
            user_id=match.user_id,
            decision=decision,
            reason=reason,
            notes=notes,
            signals=dict(match.signals),
            created_at=self.clock()
        )
        await self.repository.append_feedback(feedback)
        self.logger.info(
            "Feedback recorded",
            user_id=match.user_id,
            match_id=match.id,
            decision=decision.value,
            reason=reason
        )
        return feedback

    async def is_active(self, user_id: str) -> bool:
        return await self.repository.count_feedback(user_id) >= self.activation_threshold

    async def recalibrate(self, user_id: str) -> Optional[WeightVector]:
        """
        Recompute the user's weights from all of their feedback.

        Returns:
            The newly published vector, or None when learning is inactive or the
            weights did not change.

        Raises:
            FeedbackDataError: when feedback cannot be aggregated.
        """
        feedback = await self.repository.list_feedback(user_id)
        if len(feedback) < self.activation_threshold:
            self.logger.debug(
                "Learning inactive",
                user_id=user_id,
                feedback_count=len(feedback),
                threshold=self.activation_threshold
            )
            return None

        weights = recalibrate_weights(
            dict(self.settings.default_weights),
            feedback,
            self.settings.learning_rate
        )

        current = await self.repository.get_weights(user_id)
        in_force = current.weights if current is not None else self.settings.default_weights
        if all(abs(in_force.get(name, -1.0) - value) <= 1e-12 for name, value in weights.items()):
            self.logger.debug(
                "Weights unchanged",
                user_id=user_id,
                version=current.version if current is not None else 0
            )
            return None

        vector = await self.repository.publish_weights(
            user_id,
            weights,
            WeightSource.RECALIBRATED,
            feedback_count=len(feedback),
            created_at=self.clock()
        )
        self.logger.info(
            "Weights recalibrated",
            user_id=user_id,
            version=vector.version,
            feedback_count=len(feedback),
            weights=vector.weights
        )
        return vector

    async def recalibrate_safely(self, user_id: str) -> Optional[WeightVector]:
        """Recalibrate, keeping the last-known-good vector when the feedback is malformed."""
        try:
            return await self.recalibrate(user_id)
        except FeedbackDataError as e:
            self.logger.error(
                "Recalibration skipped, keeping last-known-good weights",
                user_id=user_id,
                error=e.message
            )
            return None

    async def rollback(self, user_id: str, version: int) -> WeightVector:
        """Republish an earlier version as the newest one."""
        previous = await self.repository.get_weights_version(user_id, version)
        if previous is None:
            raise NotFoundError(f"Weight version {version} not found for user {user_id}", entity_id=user_id)
        vector = await self.repository.publish_weights(
            user_id,
            previous.weights,
            WeightSource.ROLLBACK,
            feedback_count=previous.feedback_count,
            created_at=self.clock()
        )
        self.logger.warning("Weights rolled back", user_id=user_id, to_version=version, new_version=vector.version)
        return vector

    async def history(self, user_id: str) -> List[Feedback]:
        """All feedback for a user, newest first."""
        feedback = await self.repository.list_feedback(user_id)
        return sorted(feedback, key=lambda f: (f.created_at, f.id), reverse=True)

    async def analytics(self, user_id: str) -> FeedbackAnalytics:
        feedback = await self.repository.list_feedback(user_id)
        rejected = [f for f in feedback if f.decision == Decision.REJECTED]
        reasons = Counter(f.reason for f in rejected if f.reason)
        current = await self.repository.get_weights(user_id)

        return FeedbackAnalytics(
            total=len(feedback),
            approved_count=len(feedback) - len(rejected),
            rejected_count=len(rejected),
            reject_reasons=dict(reasons),
            top_reject_reasons=[reason for reason, _ in sorted(reasons.items(), key=lambda r: (-r[1], r[0]))[:5]],
            learning_active=len(feedback) >= self.activation_threshold,
            last_feedback_at=max((f.created_at for f in feedback), default=None),
            weights_version=current.version if current is not None else 0
        )
