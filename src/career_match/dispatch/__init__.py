"""Application dispatch: throttling, lifecycle, delivery and background tasks."""

from career_match.dispatch.channels import DeliveryChannel, DeliveryReceipt, RelayDeliveryChannel, build_channels
from career_match.dispatch.lifecycle import (
    TRANSITIONS,
    ApplicationLifecycleStateMachine,
    SendOutcome,
    SendOutcomeKind,
    validate_transition
)
from career_match.dispatch.notifications import StatusNotifier
from career_match.dispatch.scheduler import Scheduler, TickReport
from career_match.dispatch.tasks import BackoffPolicy, Task, TaskKind, TaskQueue
from career_match.dispatch.throttle import ChannelLimit, QuotaStatus, ThrottleDecision, ThrottleGate

__all__ = [
    "DeliveryChannel",
    "DeliveryReceipt",
    "RelayDeliveryChannel",
    "build_channels",
    "TRANSITIONS",
    "ApplicationLifecycleStateMachine",
    "SendOutcome",
    "SendOutcomeKind",
    "validate_transition",
    "StatusNotifier",
    "Scheduler",
    "TickReport",
    "BackoffPolicy",
    "Task",
    "TaskKind",
    "TaskQueue",
    "ChannelLimit",
    "QuotaStatus",
    "ThrottleDecision",
    "ThrottleGate"
]
