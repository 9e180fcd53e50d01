"""Review queue of surfaced matches."""

from dataclasses import dataclass
from typing import List, Optional

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import MatchAlreadyDecidedError, OwnershipError
from career_match.core.models import Decision, Feedback, Match, MatchStatus, utc_now
from career_match.dispatch.tasks import TaskKind
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DecisionResult:
    """Outcome of approving or rejecting a match."""
    match: Match
    feedback: Feedback
    backfilled: Optional[Match] = None


def queue_order(match: Match):
    """Score descending, then most recently scraped posting, then id."""
    return (-match.score, -match.posting_scraped_at.timestamp(), match.posting_id)


class MatchQueueManager:
    """Selects pending matches above the surfacing threshold for user review."""

    def __init__(self, repository, learning_loop, config: Optional[Settings] = None, task_queue=None):
        self.logger = logger.bind(component="match_queue_manager")
        self.repository = repository
        self.learning_loop = learning_loop
        self.settings = config or default_settings
        self.task_queue = task_queue

    async def _eligible(self, user_id: str) -> List[Match]:
        pending = await self.repository.list_matches(user_id, status=MatchStatus.PENDING)
        eligible = [m for m in pending if m.score >= self.settings.surfacing_threshold]
        eligible.sort(key=queue_order)
        return eligible

    async def list_surfaced(self, user_id: str) -> List[Match]:
        """Top pending matches above the threshold, best first, keeping in-queue flags in sync."""
        eligible = await self._eligible(user_id)
        visible = eligible[:self.settings.queue_size]
        visible_ids = {m.id for m in visible}

        for match in await self.repository.list_matches(user_id):
            should_queue = match.id in visible_ids
            if match.in_queue != should_queue:
                async with self.repository.lock("match", match.id):
                    current = await self.repository.get_match(match.id)
                    if current.status == MatchStatus.PENDING or not should_queue:
                        current.in_queue = should_queue
                        await self.repository.save_match(current)

        for match in visible:
            match.in_queue = True
        return visible

    async def _backfill(self, user_id: str) -> Optional[Match]:
        eligible = await self._eligible(user_id)
        queued = [m for m in eligible if m.in_queue]
        if len(queued) >= self.settings.queue_size:
            return None

        for candidate in eligible:
            if candidate.in_queue:
                continue
            async with self.repository.lock("match", candidate.id):
                current = await self.repository.get_match(candidate.id)
                if current.status != MatchStatus.PENDING or current.in_queue:
                    continue
                current.in_queue = True
                await self.repository.save_match(current)
            self.logger.debug("Queue backfilled", user_id=user_id, match_id=current.id, score=current.score)
            return current
        return None

    async def decide(
        self,
        match_id: str,
        user_id: str,
        decision: Decision,
        reason: Optional[str] = None,
        notes: Optional[str] = None
    ) -> DecisionResult:
        """
        Approve or reject a pending match.

        The match leaves the queue, a feedback record is appended, one more
        match is surfaced if available, and recalibration is scheduled once
        the user has enough feedback. The caller never waits on recalibration.

        Raises:
            NotFoundError: unknown match.
            OwnershipError: match belongs to another user.
            MatchAlreadyDecidedError: match is no longer pending.
        """
        async with self.repository.lock("match", match_id):
            match = await self.repository.get_match(match_id)
            if match.user_id != user_id:
                raise OwnershipError("User does not own this match", entity_id=match_id)
            if match.status != MatchStatus.PENDING:
                raise MatchAlreadyDecidedError(
                    f"Match {match_id} is already {match.status.value}",
                    entity_id=match_id
                )

            match.status = MatchStatus(decision.value)
            match.in_queue = False
            match.decided_at = utc_now()
            await self.repository.save_match(match)
            feedback = await self.learning_loop.record_feedback(match, decision, reason, notes)

        backfilled = await self._backfill(user_id)

        if self.task_queue is not None and await self.learning_loop.is_active(user_id):
            self.task_queue.enqueue(TaskKind.RECALIBRATE, user_id)

        self.logger.info(
            "Match decided",
            match_id=match_id,
            user_id=user_id,
            decision=decision.value,
            backfilled=backfilled.id if backfilled else None
        )
        return DecisionResult(match=match, feedback=feedback, backfilled=backfilled)
