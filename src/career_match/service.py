"""Service facade wiring scoring, learning and dispatch together."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from career_match.config import Settings, settings as default_settings
from career_match.core.models import (
    Application,
    ApplicationEvent,
    ApplicationStatus,
    Decision,
    DistributionChannel,
    Feedback,
    Match,
    Posting,
    Profile,
    WeightVector,
    utc_now,
)
from career_match.dispatch import (
    ApplicationLifecycleStateMachine,
    BackoffPolicy,
    DeliveryChannel,
    QuotaStatus,
    Scheduler,
    SendOutcome,
    SendOutcomeKind,
    StatusNotifier,
    TaskKind,
    TaskQueue,
    ThrottleGate,
    TickReport,
    build_channels,
)
from career_match.learning import FeedbackAnalytics, FeedbackLearningLoop
from career_match.matching import MatchQueueManager, MatchScoringEngine, RescoreResult, SkillGapFeedbackBridge
from career_match.storage import InMemoryRepository
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LearningStatus:
    """Whether feedback learning is active for a user, and the weights in force."""
    user_id: str
    feedback_count: int
    activation_threshold: int
    active: bool
    weights_version: int
    weights: Dict[str, float] = field(default_factory=dict)
    source: str = "default"


@dataclass
class MatchDecisionOutcome:
    """Result of deciding a match, including the application created on approval."""
    match: Match
    feedback: Feedback
    backfilled: Optional[Match] = None
    application: Optional[Application] = None


class CareerMatchService:
    """
    Single entry point used by the HTTP API and the CLI.

    Owns one instance of every component and the task queue they share.
    """

    def __init__(
        self,
        repository: Optional[InMemoryRepository] = None,
        config: Optional[Settings] = None,
        channels: Optional[Dict[DistributionChannel, DeliveryChannel]] = None,
        notifier: Optional[StatusNotifier] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = logger.bind(component="career_match_service")
        self.settings = config or default_settings
        self.repository = repository or InMemoryRepository()
        self.notifier = notifier or StatusNotifier()
        self.clock = clock

        self.task_queue = TaskQueue(BackoffPolicy.from_settings(self.settings), clock=clock)
        self.engine = MatchScoringEngine(self.repository, self.settings, notifier=self.notifier)
        self.learning_loop = FeedbackLearningLoop(self.repository, self.settings, clock=clock)
        self.queue_manager = MatchQueueManager(
            self.repository,
            self.learning_loop,
            self.settings,
            task_queue=self.task_queue
        )
        self.skill_bridge = SkillGapFeedbackBridge(self.repository, self.engine)
        self.throttle_gate = ThrottleGate.from_settings(self.repository, self.settings, clock=clock)
        self.channels = channels if channels is not None else build_channels(self.settings)
        self.lifecycle = ApplicationLifecycleStateMachine(
            self.repository,
            self.throttle_gate,
            self.channels,
            self.settings,
            notifier=self.notifier,
            clock=clock
        )
        self.scheduler = Scheduler(
            self.task_queue,
            self.lifecycle,
            self.learning_loop,
            self.repository,
            self.settings,
            clock=clock
        )

    # Profiles and postings

    async def upsert_profile(self, profile: Profile) -> Profile:
        await self.repository.put_profile(profile)
        return profile

    async def upsert_posting(self, posting: Posting) -> Posting:
        await self.repository.put_posting(posting)
        return posting

    async def set_posting_active(self, posting_id: str, is_active: bool) -> Posting:
        async with self.repository.lock("posting", posting_id):
            posting = await self.repository.get_posting(posting_id)
            posting.is_active = is_active
            await self.repository.put_posting(posting)
        return posting

    # Matching

    async def score_user(self, user_id: str) -> List[Match]:
        return await self.engine.score_user(user_id)

    async def list_surfaced_matches(self, user_id: str) -> List[Match]:
        return await self.queue_manager.list_surfaced(user_id)

    async def get_match(self, match_id: str) -> Match:
        return await self.repository.get_match(match_id)

    async def decide_match(
        self,
        match_id: str,
        user_id: str,
        decision: Decision,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        channel: Optional[DistributionChannel] = None
    ) -> MatchDecisionOutcome:
        """Approve or reject a match; approval queues an application when enabled."""
        result = await self.queue_manager.decide(match_id, user_id, decision, reason, notes)
        outcome = MatchDecisionOutcome(
            match=result.match,
            feedback=result.feedback,
            backfilled=result.backfilled
        )
        if decision == Decision.APPROVED and self.settings.auto_create_application:
            outcome.application = await self.lifecycle.create_from_match(match_id, user_id=user_id, channel=channel)
        return outcome

    async def on_skill_completed(self, user_id: str, skill: str) -> List[RescoreResult]:
        return await self.skill_bridge.on_skill_completed(user_id, skill)

    # Applications

    async def create_application_from_match(
        self,
        match_id: str,
        user_id: Optional[str] = None,
        channel: Optional[DistributionChannel] = None,
        cover_letter: Optional[str] = None,
        custom_message: Optional[str] = None
    ) -> Application:
        return await self.lifecycle.create_from_match(match_id, user_id, channel, cover_letter, custom_message)

    async def edit_application(
        self,
        application_id: str,
        cover_letter: Optional[str] = None,
        custom_message: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Application:
        return await self.lifecycle.edit(application_id, cover_letter, custom_message, user_id)

    async def send_application(
        self,
        application_id: str,
        confirm: bool = True,
        user_id: Optional[str] = None
    ) -> SendOutcome:
        """
        Send now if the throttle admits it, otherwise hand it to the scheduler.

        Deferred sends are retried once the window frees up; retryable
        delivery failures are retried with backoff.
        """
        outcome = await self.lifecycle.send(application_id, confirm=confirm, user_id=user_id)

        if outcome.kind == SendOutcomeKind.DEFERRED:
            self.task_queue.enqueue(
                TaskKind.SEND,
                application_id,
                not_before=self.clock() + outcome.retry_after
            )
        elif outcome.kind == SendOutcomeKind.RETRYING:
            delay = self.task_queue.backoff.delay(outcome.application.attempts)
            self.task_queue.enqueue(TaskKind.SEND, application_id, not_before=self.clock() + delay)
        return outcome

    async def withdraw_application(self, application_id: str, user_id: Optional[str] = None) -> Application:
        application = await self.lifecycle.withdraw(application_id, user_id)
        task = self.task_queue.get(TaskKind.SEND, application_id)
        if task is not None:
            self.task_queue.complete(task)
        return application

    async def apply_tracking_signal(
        self,
        application_id: str,
        status: ApplicationStatus,
        details: Optional[str] = None
    ) -> Application:
        return await self.lifecycle.apply_tracking_signal(application_id, status, details)

    async def get_application(self, application_id: str, user_id: Optional[str] = None) -> Application:
        return await self.lifecycle.get(application_id, user_id)

    async def list_applications(
        self,
        user_id: str,
        status: Optional[ApplicationStatus] = None
    ) -> List[Application]:
        return await self.lifecycle.list_for_user(user_id, status)

    async def application_events(self, application_id: str, user_id: Optional[str] = None) -> List[ApplicationEvent]:
        application = await self.lifecycle.get(application_id, user_id)
        return list(application.events)

    # Learning

    async def feedback_analytics(self, user_id: str) -> FeedbackAnalytics:
        return await self.learning_loop.analytics(user_id)

    async def feedback_history(self, user_id: str) -> List[Feedback]:
        return await self.learning_loop.history(user_id)

    async def learning_status(self, user_id: str) -> LearningStatus:
        count = await self.repository.count_feedback(user_id)
        weights = await self.engine.resolve_weights(user_id)
        return LearningStatus(
            user_id=user_id,
            feedback_count=count,
            activation_threshold=self.learning_loop.activation_threshold,
            active=count >= self.learning_loop.activation_threshold,
            weights_version=weights.version,
            weights=dict(weights.weights),
            source=weights.source.value
        )

    async def weight_history(self, user_id: str) -> List[WeightVector]:
        return await self.repository.weight_history(user_id)

    async def rollback_weights(self, user_id: str, version: int) -> WeightVector:
        return await self.learning_loop.rollback(user_id, version)

    # Throttle and background work

    async def quota_status(self, user_id: str) -> List[QuotaStatus]:
        return await self.throttle_gate.quota_status(user_id)

    async def run_scheduler_tick(self) -> TickReport:
        return await self.scheduler.tick()

    async def close(self) -> None:
        await self.scheduler.stop()
        for channel in self.channels.values():
            await channel.close()
        self.logger.info("Service closed")


def build_service(config: Optional[Settings] = None) -> CareerMatchService:
    """Create a service with the configured relay channels."""
    return CareerMatchService(config=config or default_settings)
