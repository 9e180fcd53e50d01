"""Background runner for deferred sends and weight recalibration."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import AlreadySentError, InvalidTransitionError, NotFoundError
from career_match.core.models import utc_now
from career_match.dispatch.lifecycle import ApplicationLifecycleStateMachine, SendOutcomeKind
from career_match.dispatch.tasks import Task, TaskKind, TaskQueue
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TickReport:
    """Counts of what one scheduler pass did."""
    recovered: int = 0
    sent: int = 0
    deferred: int = 0
    retried: int = 0
    failed: int = 0
    dropped: int = 0
    recalibrated: int = 0


class Scheduler:
    """
    Polls the task queue and drives due work to completion.

    Sends that were confirmed but never delivered are re-enqueued on every
    pass, so a restart or a lost task never strands a Queued application.
    """

    def __init__(
        self,
        task_queue: TaskQueue,
        lifecycle: ApplicationLifecycleStateMachine,
        learning_loop,
        repository,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = logger.bind(component="scheduler")
        self.task_queue = task_queue
        self.lifecycle = lifecycle
        self.learning_loop = learning_loop
        self.repository = repository
        self.settings = config or default_settings
        self.clock = clock
        self._runner: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def recover_pending_sends(self) -> int:
        recovered = 0
        for application in await self.lifecycle.pending_sends():
            if (TaskKind.SEND, application.id) not in self.task_queue:
                self.task_queue.enqueue(TaskKind.SEND, application.id)
                recovered += 1
        if recovered:
            self.logger.info("Recovered pending sends", count=recovered)
        return recovered

    async def _run_send(self, task: Task, report: TickReport) -> None:
        try:
            outcome = await self.lifecycle.send(task.key, confirm=True)
        except (AlreadySentError, InvalidTransitionError, NotFoundError) as e:
            self.logger.debug("Send task obsolete", application_id=task.key, reason=e.message)
            self.task_queue.complete(task)
            return

        if outcome.kind == SendOutcomeKind.SENT:
            self.task_queue.complete(task)
            report.sent += 1
        elif outcome.kind == SendOutcomeKind.DEFERRED:
            self.task_queue.defer(task, self.clock() + outcome.retry_after)
            report.deferred += 1
        elif outcome.kind == SendOutcomeKind.FAILED:
            self.task_queue.complete(task)
            report.failed += 1
        elif self.task_queue.retry(
            task,
            outcome.error or "delivery failed",
            attempt=outcome.application.attempts
        ):
            report.retried += 1
        else:
            report.dropped += 1

    async def _run_recalibration(self, task: Task, report: TickReport) -> None:
        vector = await self.learning_loop.recalibrate_safely(task.key)
        self.task_queue.complete(task)
        if vector is not None:
            report.recalibrated += 1

    async def tick(self) -> TickReport:
        """Run one pass over everything that is due now."""
        report = TickReport()
        report.recovered = await self.recover_pending_sends()

        for task in self.task_queue.due(self.clock()):
            if task.kind == TaskKind.SEND:
                await self._run_send(task, report)
            elif task.kind == TaskKind.RECALIBRATE:
                await self._run_recalibration(task, report)

        self.logger.debug("Scheduler tick", **report.__dict__)
        return report

    async def _loop(self) -> None:
        interval = self.settings.scheduler_interval_seconds
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as e:
                self.logger.error("Scheduler tick failed", error=str(e), exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._runner = asyncio.create_task(self._loop())
        self.logger.info("Scheduler started", interval_seconds=self.settings.scheduler_interval_seconds)

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._stopping.set()
        await self._runner
        self._runner = None
        self.logger.info("Scheduler stopped")
