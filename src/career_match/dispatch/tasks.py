"""Background task queue with retry count, backoff and idempotency keys."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from career_match.config import Settings
from career_match.core.models import utc_now
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


class TaskKind(str, Enum):
    """Kinds of background work."""
    SEND = "send"
    RECALIBRATE = "recalibrate"


@dataclass
class Task:
    """
    Unit of background work.

    ``key`` is the idempotency key: the application id for sends, the user id
    for recalibration. At most one task exists per (kind, key).
    """
    kind: TaskKind
    key: str
    not_before: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a cap and a maximum attempt count."""
    base_seconds: float = 30.0
    factor: float = 2.0
    max_seconds: float = 3600.0
    max_attempts: int = 3

    @classmethod
    def from_settings(cls, config: Settings) -> "BackoffPolicy":
        return cls(
            base_seconds=config.backoff_base_seconds,
            factor=config.backoff_factor,
            max_seconds=config.backoff_max_seconds,
            max_attempts=config.max_send_attempts
        )

    def delay(self, attempt: int) -> timedelta:
        """Delay before retry number ``attempt`` (1-based)."""
        seconds = self.base_seconds * (self.factor ** max(0, attempt - 1))
        return timedelta(seconds=min(seconds, self.max_seconds))


class TaskQueue:
    """In-process task queue polled by the scheduler."""

    def __init__(self, backoff: Optional[BackoffPolicy] = None, clock: Callable[[], datetime] = utc_now):
        self.logger = logger.bind(component="task_queue")
        self.backoff = backoff or BackoffPolicy()
        self.clock = clock
        self._tasks: Dict[Tuple[TaskKind, str], Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, item: Tuple[TaskKind, str]) -> bool:
        return item in self._tasks

    def get(self, kind: TaskKind, key: str) -> Optional[Task]:
        return self._tasks.get((kind, key))

    def enqueue(self, kind: TaskKind, key: str, not_before: Optional[datetime] = None) -> Task:
        """Add a task; an existing task with the same key is returned unchanged."""
        existing = self._tasks.get((kind, key))
        if existing is not None:
            return existing
        now = self.clock()
        task = Task(kind=kind, key=key, not_before=not_before or now, enqueued_at=now)
        self._tasks[(kind, key)] = task
        self.logger.debug("Task enqueued", kind=kind.value, key=key, not_before=task.not_before.isoformat())
        return task

    def due(self, now: Optional[datetime] = None) -> List[Task]:
        now = now or self.clock()
        ready = [t for t in self._tasks.values() if t.not_before <= now]
        ready.sort(key=lambda t: (t.not_before, t.kind.value, t.key))
        return ready

    def complete(self, task: Task) -> None:
        self._tasks.pop((task.kind, task.key), None)

    def defer(self, task: Task, until: datetime) -> None:
        """Reschedule without counting an attempt (e.g. throttle deferral)."""
        task.not_before = until
        self.logger.debug("Task deferred", kind=task.kind.value, key=task.key, until=until.isoformat())

    def retry(self, task: Task, error: str, attempt: Optional[int] = None) -> bool:
        """
        Count a failed attempt and reschedule with backoff.

        ``attempt`` overrides the task's own count when the work item tracks
        attempts itself, as applications do.

        Returns:
            False when the task has exhausted its attempts and was dropped.
        """
        task.attempts = attempt if attempt is not None else task.attempts + 1
        task.last_error = error
        if task.attempts >= self.backoff.max_attempts:
            self.complete(task)
            self.logger.warning(
                "Task dropped after max attempts",
                kind=task.kind.value,
                key=task.key,
                attempts=task.attempts,
                error=error
            )
            return False
        task.not_before = self.clock() + self.backoff.delay(task.attempts)
        self.logger.info(
            "Task scheduled for retry",
            kind=task.kind.value,
            key=task.key,
            attempts=task.attempts,
            not_before=task.not_before.isoformat()
        )
        return True
