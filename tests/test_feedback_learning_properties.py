"""Property-based tests for the feedback learning loop."""

import asyncio
import math

import pytest
from hypothesis import given, settings, strategies as st

from career_match.core.exceptions import FeedbackDataError, NotFoundError
from career_match.core.models import Decision, Feedback, WeightSource
from career_match.learning import FeedbackLearningLoop, recalibrate_weights
from career_match.matching.scoring import FEATURES
from career_match.storage import InMemoryRepository

from conftest import FrozenClock, make_match, make_settings

DEFAULT_PRIOR = dict(make_settings().default_weights)


@st.composite
def feedback_strategy(draw):
    return Feedback(
        match_id=draw(st.uuids()).hex,
        user_id="user-1",
        decision=draw(st.sampled_from(list(Decision))),
        reason=draw(st.one_of(st.none(), st.sampled_from(["Low Salary", "Wrong City", "Too Senior"]))),
        signals={
            name: draw(st.floats(min_value=0.0, max_value=1.0, allow_nan=False))
            for name in FEATURES
        }
    )


def signals_with(skill_overlap: float) -> dict:
    signals = {name: 0.5 for name in FEATURES}
    signals["skill_overlap"] = skill_overlap
    return signals


async def record(loop: FeedbackLearningLoop, index: int, decision: Decision, skill: float, reason=None) -> None:
    match = make_match(f"m{index}", signals=signals_with(skill))
    await loop.record_feedback(match, decision, reason=reason)


class TestRecalibrationProperties:
    """Properties of the pure recalibration function."""

    @pytest.mark.property
    @given(
        feedback=st.lists(feedback_strategy(), min_size=1, max_size=30),
        learning_rate=st.floats(min_value=0.01, max_value=1.0)
    )
    @settings(max_examples=100, deadline=2000)
    def test_weights_stay_bounded_and_normalised(self, feedback, learning_rate):
        """Every weight lies in [0, 1] and the vector sums to 1."""
        weights = recalibrate_weights(DEFAULT_PRIOR, feedback, learning_rate)

        assert set(weights) == set(DEFAULT_PRIOR)
        for value in weights.values():
            assert 0.0 <= value <= 1.0
        assert math.fsum(weights.values()) == pytest.approx(1.0, abs=1e-9)

    @pytest.mark.property
    @given(data=st.data(), feedback=st.lists(feedback_strategy(), min_size=2, max_size=25))
    @settings(max_examples=60, deadline=2000)
    def test_order_independent(self, data, feedback):
        """Reordering the feedback never changes the result."""
        shuffled = data.draw(st.permutations(feedback))

        assert recalibrate_weights(DEFAULT_PRIOR, feedback, 0.2) == recalibrate_weights(DEFAULT_PRIOR, shuffled, 0.2)

    @pytest.mark.property
    @given(
        feedback=st.lists(feedback_strategy(), min_size=1, max_size=20),
        decision=st.sampled_from(list(Decision))
    )
    @settings(max_examples=40, deadline=2000)
    def test_single_class_keeps_prior(self, feedback, decision):
        """With only approvals or only rejections there is no separation to learn from."""
        same_class = [f.model_copy(update={"decision": decision}) for f in feedback]
        weights = recalibrate_weights(DEFAULT_PRIOR, same_class, 0.2)

        for name, value in DEFAULT_PRIOR.items():
            assert weights[name] == pytest.approx(value)

    @pytest.mark.parametrize("bad_value", [None, float("nan"), float("inf")])
    def test_malformed_feedback_is_rejected(self, bad_value):
        signals = signals_with(0.5)
        if bad_value is None:
            del signals["salary_fit"]
        else:
            signals["salary_fit"] = bad_value
        feedback = [Feedback(match_id="m1", user_id="user-1", decision=Decision.APPROVED, signals=signals)]

        with pytest.raises(FeedbackDataError):
            recalibrate_weights(DEFAULT_PRIOR, feedback, 0.2)


class TestFeedbackLearningLoop:
    """Behaviour of the learning loop against the repository."""

    def create_loop(self, **overrides):
        repository = InMemoryRepository()
        loop = FeedbackLearningLoop(repository, make_settings(**overrides), clock=FrozenClock())
        return repository, loop

    @pytest.mark.asyncio
    async def test_inactive_below_threshold(self):
        """Three feedback entries against a threshold of ten change nothing."""
        repository, loop = self.create_loop(feedback_activation_threshold=10)
        for index, decision in enumerate([Decision.APPROVED, Decision.REJECTED, Decision.APPROVED]):
            await record(loop, index, decision, 0.9 if decision == Decision.APPROVED else 0.1)

        assert not await loop.is_active("user-1")
        assert await loop.recalibrate("user-1") is None
        assert await repository.get_weights("user-1") is None

    @pytest.mark.asyncio
    async def test_skill_overlap_weight_rises_with_separating_feedback(self):
        """Seven high-overlap approvals and three low-overlap rejections favour skill overlap."""
        repository, loop = self.create_loop(feedback_activation_threshold=10, learning_rate=0.2)
        for index in range(7):
            await record(loop, index, Decision.APPROVED, 0.9)
        for index in range(7, 10):
            await record(loop, index, Decision.REJECTED, 0.2, reason="Skills mismatch")

        vector = await loop.recalibrate("user-1")

        assert vector is not None
        assert vector.version == 1
        assert vector.source == WeightSource.RECALIBRATED
        assert vector.feedback_count == 10
        assert vector.weights["skill_overlap"] > DEFAULT_PRIOR["skill_overlap"]
        assert vector.weights["skill_overlap"] == pytest.approx(0.44 / 1.14)
        assert math.fsum(vector.weights.values()) == pytest.approx(1.0)

        assert await loop.recalibrate("user-1") is None
        assert len(await repository.weight_history("user-1")) == 1

    @pytest.mark.asyncio
    async def test_malformed_feedback_keeps_last_known_good(self):
        repository, loop = self.create_loop(feedback_activation_threshold=2)
        await record(loop, 0, Decision.APPROVED, 0.9)
        await record(loop, 1, Decision.REJECTED, 0.1)
        good = await loop.recalibrate("user-1")

        await repository.append_feedback(Feedback(
            match_id="broken",
            user_id="user-1",
            decision=Decision.REJECTED,
            signals={"skill_overlap": 0.3}
        ))

        with pytest.raises(FeedbackDataError):
            await loop.recalibrate("user-1")
        assert await loop.recalibrate_safely("user-1") is None
        assert (await repository.get_weights("user-1")).version == good.version

    @pytest.mark.asyncio
    async def test_rollback_appends_copy_of_older_version(self):
        repository, loop = self.create_loop(feedback_activation_threshold=2)
        await record(loop, 0, Decision.APPROVED, 0.9)
        await record(loop, 1, Decision.REJECTED, 0.1)
        first = await loop.recalibrate("user-1")
        await record(loop, 2, Decision.APPROVED, 1.0)
        await record(loop, 3, Decision.REJECTED, 0.0)
        second = await loop.recalibrate("user-1")

        restored = await loop.rollback("user-1", first.version)

        assert second.version == 2
        assert restored.version == 3
        assert restored.source == WeightSource.ROLLBACK
        assert restored.weights == first.weights
        assert [v.version for v in await repository.weight_history("user-1")] == [1, 2, 3]

        with pytest.raises(NotFoundError):
            await loop.rollback("user-1", 42)

    @pytest.mark.asyncio
    async def test_analytics_and_history(self):
        _, loop = self.create_loop(feedback_activation_threshold=4)
        await record(loop, 0, Decision.APPROVED, 0.9)
        await record(loop, 1, Decision.REJECTED, 0.2, reason="Low Salary")
        await record(loop, 2, Decision.REJECTED, 0.2, reason="Low Salary")
        await record(loop, 3, Decision.REJECTED, 0.2, reason="Wrong City")
        loop.clock.advance(minutes=5)
        await record(loop, 4, Decision.REJECTED, 0.2)

        analytics = await loop.analytics("user-1")
        history = await loop.history("user-1")

        assert analytics.total == 5
        assert analytics.approved_count == 1
        assert analytics.rejected_count == 4
        assert analytics.reject_reasons == {"Low Salary": 2, "Wrong City": 1}
        assert analytics.top_reject_reasons == ["Low Salary", "Wrong City"]
        assert analytics.learning_active is True
        assert analytics.last_feedback_at == loop.clock.now
        assert history[0].match_id == "m4"

    def test_feedback_snapshot_is_immutable(self):
        _, loop = self.create_loop()
        match = make_match("m1")

        async def run_test():
            return await loop.record_feedback(match, Decision.APPROVED)

        feedback = asyncio.run(run_test())
        match.signals["skill_overlap"] = 0.0

        assert feedback.signals["skill_overlap"] == 0.5
        with pytest.raises(Exception):
            feedback.reason = "changed"
