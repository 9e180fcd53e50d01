"""Property-based tests for the application lifecycle state machine."""

import asyncio
import gc
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings, strategies as st

from career_match.core.exceptions import (
    AlreadySentError,
    ApplicationNotEditableError,
    ConfirmationRequiredError,
    DuplicateApplicationError,
    InvalidTransitionError,
    MatchNotApprovedError,
    OwnershipError,
)
from career_match.core.models import (
    ApplicationEventKind,
    ApplicationStatus,
    DistributionChannel,
    MatchStatus,
)
from career_match.dispatch.lifecycle import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    ApplicationLifecycleStateMachine,
    SendOutcomeKind,
    validate_transition,
)
from career_match.dispatch.throttle import ChannelLimit, ThrottleGate
from career_match.storage import InMemoryRepository

from conftest import FrozenClock, RecordingChannel, make_match, make_posting, make_settings

ORDER = [
    ApplicationStatus.QUEUED,
    ApplicationStatus.SENT,
    ApplicationStatus.VIEWED,
    ApplicationStatus.RESPONDED,
]


class Harness:
    """Lifecycle wired to an in-memory repository, a frozen clock and recording channels."""

    def __init__(self, email_limit=20, failures=0, max_send_attempts=3):
        self.clock = FrozenClock()
        self.repository = InMemoryRepository()
        self.email = RecordingChannel(DistributionChannel.EMAIL, failures=failures)
        self.linkedin = RecordingChannel(DistributionChannel.LINKEDIN)
        self.notifier = AsyncMock()
        self.gate = ThrottleGate(
            self.repository,
            {
                DistributionChannel.EMAIL: ChannelLimit(window=timedelta(hours=1), max_count=email_limit),
                DistributionChannel.LINKEDIN: ChannelLimit(window=timedelta(days=1), max_count=50),
            },
            clock=self.clock
        )
        self.lifecycle = ApplicationLifecycleStateMachine(
            self.repository,
            self.gate,
            {DistributionChannel.EMAIL: self.email, DistributionChannel.LINKEDIN: self.linkedin},
            make_settings(max_send_attempts=max_send_attempts),
            notifier=self.notifier,
            clock=self.clock
        )

    async def approved_application(self, match_id="m1", user_id="user-1", **kwargs):
        await self.repository.put_posting(make_posting(f"posting-{match_id}"))
        await self.repository.create_match(make_match(match_id, user_id=user_id, status=MatchStatus.APPROVED))
        return await self.lifecycle.create_from_match(match_id, **kwargs)


class TestTransitionTable:
    """Properties of the central transition table."""

    @pytest.mark.property
    @given(
        from_status=st.sampled_from(list(ApplicationStatus)),
        to_status=st.sampled_from(list(ApplicationStatus))
    )
    @settings(max_examples=100)
    def test_validation_follows_table(self, from_status, to_status):
        if to_status in TRANSITIONS[from_status]:
            validate_transition("a1", from_status, to_status)
        else:
            with pytest.raises(InvalidTransitionError):
                validate_transition("a1", from_status, to_status)

    def test_no_backward_moves(self):
        """Nothing ever returns to Queued and terminal states have no exits."""
        for from_status, targets in TRANSITIONS.items():
            assert ApplicationStatus.QUEUED not in targets
            assert from_status not in targets
        assert TERMINAL_STATUSES == {
            ApplicationStatus.RESPONDED,
            ApplicationStatus.REJECTED,
            ApplicationStatus.WITHDRAWN,
            ApplicationStatus.FAILED,
        }
        for earlier, later in zip(ORDER, ORDER[1:]):
            assert earlier not in TRANSITIONS[later]

    @pytest.mark.property
    @given(signals=st.lists(
        st.sampled_from([ApplicationStatus.VIEWED, ApplicationStatus.RESPONDED, ApplicationStatus.REJECTED]),
        max_size=8
    ))
    @settings(max_examples=50, deadline=3000)
    def test_tracking_signals_only_move_forward(self, signals):
        """Any sequence of tracking signals after a send keeps the event log consistent."""
        async def run_test():
            harness = Harness()
            application = await harness.approved_application()
            await harness.lifecycle.send(application.id)
            for signal in signals:
                try:
                    await harness.lifecycle.apply_tracking_signal(application.id, signal)
                except InvalidTransitionError:
                    pass
            return await harness.lifecycle.get(application.id)

        application = asyncio.run(run_test())

        changes = [e for e in application.events if e.kind == ApplicationEventKind.STATUS_CHANGE]
        for event in changes:
            assert event.to_status in TRANSITIONS[event.from_status]
        for previous, current in zip(changes, changes[1:]):
            assert previous.to_status == current.from_status
        assert application.status != ApplicationStatus.QUEUED
        assert application.sent_at is not None


class TestApplicationLifecycle:
    """Behaviour of create, edit, send, withdraw and tracking."""

    @pytest.mark.asyncio
    async def test_create_requires_approved_match(self):
        harness = Harness()
        await harness.repository.create_match(make_match("pending"))

        with pytest.raises(MatchNotApprovedError):
            await harness.lifecycle.create_from_match("pending")

        application = await harness.approved_application("m1", cover_letter="Hello")
        assert application.status == ApplicationStatus.QUEUED
        assert application.channel == DistributionChannel.EMAIL
        assert application.events[0].kind == ApplicationEventKind.CREATED

        with pytest.raises(DuplicateApplicationError):
            await harness.lifecycle.create_from_match("m1")

    @pytest.mark.asyncio
    async def test_edit_only_while_queued(self):
        harness = Harness()
        application = await harness.approved_application()

        edited = await harness.lifecycle.edit(application.id, cover_letter="Updated", custom_message="Hi")
        assert edited.cover_letter == "Updated"
        assert edited.custom_message == "Hi"
        assert edited.events[-1].kind == ApplicationEventKind.EDITED

        with pytest.raises(OwnershipError):
            await harness.lifecycle.edit(application.id, cover_letter="x", user_id="intruder")

        await harness.lifecycle.send(application.id)
        with pytest.raises(ApplicationNotEditableError):
            await harness.lifecycle.edit(application.id, cover_letter="Too late")

    @pytest.mark.asyncio
    async def test_send_requires_confirmation(self):
        harness = Harness()
        application = await harness.approved_application()

        with pytest.raises(ConfirmationRequiredError):
            await harness.lifecycle.send(application.id, confirm=False)
        assert harness.email.calls == 0

    @pytest.mark.asyncio
    async def test_send_delivers_once(self):
        harness = Harness()
        application = await harness.approved_application()

        outcome = await harness.lifecycle.send(application.id)

        assert outcome.kind == SendOutcomeKind.SENT
        assert outcome.application.status == ApplicationStatus.SENT
        assert outcome.application.sent_at == harness.clock.now
        assert outcome.application.attempts == 1
        assert outcome.receipt.message_id == "msg-1"
        assert harness.email.delivered == [application.id]
        harness.notifier.publish.assert_awaited()

        with pytest.raises(AlreadySentError):
            await harness.lifecycle.send(application.id)
        assert harness.email.calls == 1

    @pytest.mark.property
    @given(senders=st.integers(min_value=2, max_value=10))
    @settings(max_examples=20, deadline=3000)
    def test_concurrent_double_send_delivers_once(self, senders):
        """Racing sends produce exactly one delivery and one Sent transition."""
        async def run_test():
            harness = Harness()
            application = await harness.approved_application()
            results = await asyncio.gather(
                *[harness.lifecycle.send(application.id) for _ in range(senders)],
                return_exceptions=True
            )
            stored = await harness.lifecycle.get(application.id)
            return harness, results, stored

        harness, results, stored = asyncio.run(run_test())

        sent = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(sent) == 1
        assert all(isinstance(r, AlreadySentError) for r in rejected)
        assert harness.email.calls == 1
        transitions = [e for e in stored.events if e.to_status == ApplicationStatus.SENT]
        assert len(transitions) == 1

    @pytest.mark.asyncio
    async def test_key_locks_are_released_after_use(self):
        harness = Harness()
        applications = [await harness.approved_application(f"m{i}") for i in range(5)]

        held = harness.repository.lock("application", applications[0].id)
        assert harness.repository.lock("application", applications[0].id) is held
        del held

        outcomes = await asyncio.gather(*[harness.lifecycle.send(a.id) for a in applications])
        gc.collect()

        assert all(o.kind == SendOutcomeKind.SENT for o in outcomes)
        assert harness.repository.lock_count() == 0

    @pytest.mark.asyncio
    async def test_throttled_send_is_deferred(self):
        harness = Harness(email_limit=1)
        first = await harness.approved_application("m1")
        second = await harness.approved_application("m2")
        await harness.lifecycle.send(first.id)

        harness.clock.advance(minutes=20)
        outcome = await harness.lifecycle.send(second.id)

        assert outcome.kind == SendOutcomeKind.DEFERRED
        assert outcome.retry_after == timedelta(minutes=40)
        assert outcome.application.status == ApplicationStatus.QUEUED
        assert outcome.application.send_requested is True
        assert outcome.application.events[-1].kind == ApplicationEventKind.THROTTLED
        assert harness.email.calls == 1

        harness.clock.advance(minutes=40)
        assert (await harness.lifecycle.send(second.id)).kind == SendOutcomeKind.SENT

    @pytest.mark.asyncio
    async def test_delivery_failures_lead_to_failed(self):
        harness = Harness(failures=5, max_send_attempts=2)
        application = await harness.approved_application()

        first = await harness.lifecycle.send(application.id)
        assert first.kind == SendOutcomeKind.RETRYING
        assert first.application.status == ApplicationStatus.QUEUED
        assert first.application.events[-1].kind == ApplicationEventKind.SEND_FAILED
        assert first.error == "relay unavailable"

        second = await harness.lifecycle.send(application.id)
        assert second.kind == SendOutcomeKind.FAILED
        assert second.application.status == ApplicationStatus.FAILED
        assert second.application.attempts == 2

        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.send(application.id)

    @pytest.mark.asyncio
    async def test_withdraw_only_from_queued(self):
        harness = Harness()
        queued = await harness.approved_application("m1")
        sent = await harness.approved_application("m2")
        await harness.lifecycle.send(sent.id)

        withdrawn = await harness.lifecycle.withdraw(queued.id)
        assert withdrawn.status == ApplicationStatus.WITHDRAWN

        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.withdraw(sent.id)
        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.send(queued.id)

    @pytest.mark.asyncio
    async def test_withdraw_racing_send_only_one_wins(self):
        harness = Harness()
        application = await harness.approved_application()

        results = await asyncio.gather(
            harness.lifecycle.send(application.id),
            harness.lifecycle.withdraw(application.id),
            return_exceptions=True
        )
        stored = await harness.lifecycle.get(application.id)

        assert sum(1 for r in results if isinstance(r, Exception)) == 1
        assert stored.status in (ApplicationStatus.SENT, ApplicationStatus.WITHDRAWN)
        assert harness.email.calls == (1 if stored.status == ApplicationStatus.SENT else 0)

    @pytest.mark.asyncio
    async def test_tracking_signals(self):
        harness = Harness()
        application = await harness.approved_application()

        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.VIEWED)

        await harness.lifecycle.send(application.id)
        harness.clock.advance(hours=2)
        viewed = await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.VIEWED)
        duplicate = await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.VIEWED)
        harness.clock.advance(days=1)
        responded = await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.RESPONDED)

        assert viewed.viewed_at == duplicate.viewed_at
        assert len(duplicate.events) == len(viewed.events)
        assert responded.status == ApplicationStatus.RESPONDED
        assert responded.responded_at == harness.clock.now

        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.SENT)
        with pytest.raises(InvalidTransitionError):
            await harness.lifecycle.apply_tracking_signal(application.id, ApplicationStatus.REJECTED)

    @pytest.mark.asyncio
    async def test_listing_and_pending_sends(self):
        harness = Harness(email_limit=1)
        first = await harness.approved_application("m1")
        harness.clock.advance(minutes=1)
        second = await harness.approved_application("m2")
        await harness.lifecycle.send(first.id)
        await harness.lifecycle.send(second.id)

        listed = await harness.lifecycle.list_for_user("user-1")
        queued = await harness.lifecycle.list_for_user("user-1", ApplicationStatus.QUEUED)
        pending = await harness.lifecycle.pending_sends()

        assert [a.id for a in listed] == [second.id, first.id]
        assert [a.id for a in queued] == [second.id]
        assert [a.id for a in pending] == [second.id]
