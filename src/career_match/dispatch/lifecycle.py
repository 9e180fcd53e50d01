"""Application lifecycle state machine from approval to terminal outcome."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import (
    AlreadySentError,
    ApplicationNotEditableError,
    ConfirmationRequiredError,
    DeliveryError,
    InvalidTransitionError,
    MatchNotApprovedError,
    OwnershipError,
)
from career_match.core.models import (
    Application,
    ApplicationEvent,
    ApplicationEventKind,
    ApplicationStatus,
    DistributionChannel,
    MatchStatus,
    utc_now,
)
from career_match.dispatch.channels import DeliveryChannel, DeliveryReceipt
from career_match.dispatch.throttle import ThrottleGate
from career_match.utils.logging import get_logger, log_application_state

logger = get_logger(__name__)


TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.QUEUED: frozenset({
        ApplicationStatus.SENT,
        ApplicationStatus.WITHDRAWN,
        ApplicationStatus.FAILED,
    }),
    ApplicationStatus.SENT: frozenset({
        ApplicationStatus.VIEWED,
        ApplicationStatus.RESPONDED,
        ApplicationStatus.REJECTED,
    }),
    ApplicationStatus.VIEWED: frozenset({
        ApplicationStatus.RESPONDED,
        ApplicationStatus.REJECTED,
    }),
    ApplicationStatus.RESPONDED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
    ApplicationStatus.WITHDRAWN: frozenset(),
    ApplicationStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

DELIVERED_STATUSES = frozenset({
    ApplicationStatus.SENT,
    ApplicationStatus.VIEWED,
    ApplicationStatus.RESPONDED,
    ApplicationStatus.REJECTED,
})

TRACKING_STATUSES = frozenset({
    ApplicationStatus.VIEWED,
    ApplicationStatus.RESPONDED,
    ApplicationStatus.REJECTED,
})


def is_allowed(from_status: ApplicationStatus, to_status: ApplicationStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


def validate_transition(application_id: str, from_status: ApplicationStatus, to_status: ApplicationStatus) -> None:
    if not is_allowed(from_status, to_status):
        raise InvalidTransitionError(application_id, from_status.value, to_status.value)


class SendOutcomeKind(str, Enum):
    """Result of one send attempt."""
    SENT = "sent"
    DEFERRED = "deferred"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class SendOutcome:
    """What happened when an application was sent."""
    application: Application
    kind: SendOutcomeKind
    retry_after: Optional[timedelta] = None
    error: Optional[str] = None
    receipt: Optional[DeliveryReceipt] = None


class ApplicationLifecycleStateMachine:
    """
    Owns every status change of an Application.

    All check-then-act sequences on one application (send, withdraw, edit,
    tracking signals) run under the same per-application lock, so a send and
    a withdraw can never both succeed.
    """

    def __init__(
        self,
        repository,
        throttle_gate: ThrottleGate,
        channels: Dict[DistributionChannel, DeliveryChannel],
        config: Optional[Settings] = None,
        notifier=None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = logger.bind(component="application_lifecycle")
        self.repository = repository
        self.throttle_gate = throttle_gate
        self.channels = channels
        self.settings = config or default_settings
        self.notifier = notifier
        self.clock = clock

    def _record(
        self,
        application: Application,
        kind: ApplicationEventKind,
        details: Optional[str] = None,
        to_status: Optional[ApplicationStatus] = None
    ) -> None:
        application.events.append(ApplicationEvent(
            kind=kind,
            from_status=application.status,
            to_status=to_status or application.status,
            details=details,
            timestamp=self.clock()
        ))

    def _transition(self, application: Application, to_status: ApplicationStatus, details: Optional[str] = None) -> None:
        validate_transition(application.id, application.status, to_status)
        now = self.clock()
        self._record(application, ApplicationEventKind.STATUS_CHANGE, details, to_status=to_status)
        application.status = to_status

        if to_status == ApplicationStatus.SENT:
            application.sent_at = now
        elif to_status == ApplicationStatus.VIEWED:
            application.viewed_at = now
        elif to_status in (ApplicationStatus.RESPONDED, ApplicationStatus.REJECTED):
            application.responded_at = now
            if application.viewed_at is None:
                application.viewed_at = now

    async def _notify(self, application: Application) -> None:
        if self.notifier is not None:
            await self.notifier.publish(
                application.user_id,
                "application_status",
                {"application_id": application.id, "status": application.status.value}
            )

    @staticmethod
    def _check_owner(application: Application, user_id: Optional[str]) -> None:
        if user_id is not None and application.user_id != user_id:
            raise OwnershipError("User does not own this application", entity_id=application.id)

    async def create_from_match(
        self,
        match_id: str,
        user_id: Optional[str] = None,
        channel: Optional[DistributionChannel] = None,
        cover_letter: Optional[str] = None,
        custom_message: Optional[str] = None
    ) -> Application:
        """
        Create the Queued application for an approved match.

        Raises:
            MatchNotApprovedError: the match is not approved.
            DuplicateApplicationError: the match already has an application.
        """
        async with self.repository.lock("match", match_id):
            match = await self.repository.get_match(match_id)
            if user_id is not None and match.user_id != user_id:
                raise OwnershipError("User does not own this match", entity_id=match_id)
            if match.status != MatchStatus.APPROVED:
                raise MatchNotApprovedError(
                    f"Match {match_id} is {match.status.value}, not Approved",
                    entity_id=match_id
                )

            application = Application(
                match_id=match.id,
                user_id=match.user_id,
                posting_id=match.posting_id,
                channel=channel or DistributionChannel(self.settings.default_channel),
                cover_letter=cover_letter,
                custom_message=custom_message,
                created_at=self.clock()
            )
            self._record(application, ApplicationEventKind.CREATED, f"Created from match {match.id}")
            await self.repository.create_application(application)

        self.logger.info("Application created", **log_application_state(application))
        return application

    async def edit(
        self,
        application_id: str,
        cover_letter: Optional[str] = None,
        custom_message: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Application:
        """Change tailored content; only allowed while Queued."""
        async with self.repository.lock("application", application_id):
            application = await self.repository.get_application(application_id)
            self._check_owner(application, user_id)
            if application.status != ApplicationStatus.QUEUED:
                raise ApplicationNotEditableError(
                    f"Application {application_id} is {application.status.value}; only Queued applications can be edited",
                    entity_id=application_id
                )

            changed = []
            if cover_letter is not None:
                application.cover_letter = cover_letter
                changed.append("cover_letter")
            if custom_message is not None:
                application.custom_message = custom_message
                changed.append("custom_message")
            if changed:
                self._record(application, ApplicationEventKind.EDITED, "Updated " + ", ".join(changed))
                await self.repository.save_application(application)

        return application

    async def send(self, application_id: str, confirm: bool = True, user_id: Optional[str] = None) -> SendOutcome:
        """
        Send a Queued application through its channel, at most once.

        The status check, throttle admission, delivery and status change all
        happen under the application's lock. A throttle denial leaves the
        application Queued and returns a deferred outcome.

        Raises:
            ConfirmationRequiredError: ``confirm`` is false.
            AlreadySentError: the application was already delivered.
            InvalidTransitionError: the application was withdrawn or failed.
        """
        if not confirm:
            raise ConfirmationRequiredError("Sending requires confirmation", entity_id=application_id)

        async with self.repository.lock("application", application_id):
            application = await self.repository.get_application(application_id)
            self._check_owner(application, user_id)

            if application.status in DELIVERED_STATUSES:
                raise AlreadySentError(
                    f"Application {application_id} was already sent",
                    entity_id=application_id
                )
            validate_transition(application.id, application.status, ApplicationStatus.SENT)

            if not application.send_requested:
                application.send_requested = True
                self._record(application, ApplicationEventKind.SEND_REQUESTED, "Send confirmed by user")

            decision = await self.throttle_gate.admit(application.user_id, application.channel)
            if not decision.admitted:
                self._record(
                    application,
                    ApplicationEventKind.THROTTLED,
                    f"Throttled, retry after {decision.retry_after.total_seconds():.0f}s"
                )
                await self.repository.save_application(application)
                return SendOutcome(
                    application=application,
                    kind=SendOutcomeKind.DEFERRED,
                    retry_after=decision.retry_after
                )

            posting = await self.repository.get_posting(application.posting_id)
            channel = self.channels[application.channel]
            application.attempts += 1

            try:
                receipt = await channel.deliver(application, posting)
            except DeliveryError as e:
                self._record(application, ApplicationEventKind.SEND_FAILED, e.message)
                if application.attempts >= self.settings.max_send_attempts:
                    self._transition(
                        application,
                        ApplicationStatus.FAILED,
                        f"Gave up after {application.attempts} attempts"
                    )
                    kind = SendOutcomeKind.FAILED
                else:
                    kind = SendOutcomeKind.RETRYING
                await self.repository.save_application(application)
                self.logger.warning(
                    "Application delivery failed",
                    error=e.message,
                    **log_application_state(application)
                )
                outcome = SendOutcome(application=application, kind=kind, error=e.message)
            else:
                details = f"Sent via {application.channel.value}"
                if receipt.message_id:
                    details += f". Message ID: {receipt.message_id}"
                self._transition(application, ApplicationStatus.SENT, details)
                await self.repository.save_application(application)
                self.logger.info("Application sent", **log_application_state(application))
                outcome = SendOutcome(application=application, kind=SendOutcomeKind.SENT, receipt=receipt)

        if outcome.application.status != ApplicationStatus.QUEUED:
            await self._notify(outcome.application)
        return outcome

    async def withdraw(self, application_id: str, user_id: Optional[str] = None) -> Application:
        """Cancel a Queued application."""
        async with self.repository.lock("application", application_id):
            application = await self.repository.get_application(application_id)
            self._check_owner(application, user_id)
            self._transition(application, ApplicationStatus.WITHDRAWN, "Withdrawn by user")
            await self.repository.save_application(application)

        self.logger.info("Application withdrawn", **log_application_state(application))
        await self._notify(application)
        return application

    async def apply_tracking_signal(
        self,
        application_id: str,
        status: ApplicationStatus,
        details: Optional[str] = None
    ) -> Application:
        """
        Apply a Viewed/Responded/Rejected signal from the channel.

        Re-delivery of a signal that was already applied is a no-op.
        """
        if status not in TRACKING_STATUSES:
            raise InvalidTransitionError(application_id, "tracking", status.value)

        async with self.repository.lock("application", application_id):
            application = await self.repository.get_application(application_id)
            if application.status == status:
                self.logger.debug("Duplicate tracking signal ignored", application_id=application_id, status=status.value)
                return application
            self._transition(application, status, details or "Tracking signal from channel")
            await self.repository.save_application(application)

        self.logger.info("Tracking signal applied", **log_application_state(application))
        await self._notify(application)
        return application

    async def get(self, application_id: str, user_id: Optional[str] = None) -> Application:
        application = await self.repository.get_application(application_id)
        self._check_owner(application, user_id)
        return application

    async def list_for_user(self, user_id: str, status: Optional[ApplicationStatus] = None) -> List[Application]:
        applications = await self.repository.list_applications(user_id=user_id, status=status)
        return sorted(applications, key=lambda a: (a.created_at, a.id), reverse=True)

    async def pending_sends(self) -> List[Application]:
        """Queued applications whose send the user already confirmed."""
        queued = await self.repository.list_applications(status=ApplicationStatus.QUEUED)
        return [a for a in queued if a.send_requested]
