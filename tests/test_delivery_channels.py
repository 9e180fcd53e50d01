"""Tests for relay delivery channels, the status notifier and settings."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import ValidationError

from career_match.core.exceptions import DeliveryError
from career_match.core.models import Application, DistributionChannel
from career_match.dispatch.channels import RelayDeliveryChannel, build_channels, build_payload
from career_match.dispatch.notifications import StatusNotifier

from conftest import make_posting, make_settings


def make_application(channel=DistributionChannel.EMAIL) -> Application:
    return Application(
        id="app-1",
        match_id="m1",
        user_id="user-1",
        posting_id="p1",
        channel=channel,
        cover_letter="Dear team"
    )


class TestRelayDeliveryChannel:
    """Relay channel behaviour with a mocked HTTP client."""

    @pytest.mark.asyncio
    async def test_posts_payload_with_idempotency_key(self):
        channel = RelayDeliveryChannel(DistributionChannel.EMAIL, "https://relay.example/email")
        response = MagicMock()
        response.content = b'{"message_id": "abc"}'
        response.json.return_value = {"message_id": "abc"}
        response.raise_for_status.return_value = None
        channel.client.post = AsyncMock(return_value=response)

        receipt = await channel.deliver(make_application(), make_posting("p1"))

        assert receipt.message_id == "abc"
        kwargs = channel.client.post.await_args.kwargs
        assert kwargs["headers"] == {"Idempotency-Key": "app-1"}
        assert kwargs["json"]["recipient"] == "hr@acme.example"
        assert kwargs["json"]["cover_letter"] == "Dear team"
        await channel.close()

    @pytest.mark.asyncio
    async def test_http_failure_becomes_delivery_error(self):
        channel = RelayDeliveryChannel(DistributionChannel.LINKEDIN, "https://relay.example/linkedin")
        channel.client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(DeliveryError):
            await channel.deliver(make_application(DistributionChannel.LINKEDIN), make_posting("p1"))
        await channel.close()

    @pytest.mark.asyncio
    async def test_missing_destination_is_a_delivery_error(self):
        unconfigured = RelayDeliveryChannel(DistributionChannel.EMAIL, None)
        email = RelayDeliveryChannel(DistributionChannel.EMAIL, "https://relay.example/email")
        email.client.post = AsyncMock()

        with pytest.raises(DeliveryError):
            await unconfigured.deliver(make_application(), make_posting("p1"))
        with pytest.raises(DeliveryError):
            await email.deliver(make_application(), make_posting("p1", contact_email=None))
        email.client.post.assert_not_awaited()
        await unconfigured.close()
        await email.close()

    def test_payload_and_channel_factory(self):
        payload = build_payload(make_application(), make_posting("p1", title="Data Engineer"))
        channels = build_channels(make_settings(email_relay_url="https://relay.example/email"))

        assert payload["subject"] == "Application for Data Engineer at Acme"
        assert set(channels) == set(DistributionChannel)
        assert channels[DistributionChannel.EMAIL].url == "https://relay.example/email"
        assert channels[DistributionChannel.LINKEDIN].url is None


class TestStatusNotifier:
    """Notifications are best effort."""

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        notifier = StatusNotifier()
        failing = AsyncMock(side_effect=RuntimeError("socket closed"))
        working = AsyncMock()
        notifier.subscribe(failing)
        notifier.subscribe(working)

        await notifier.publish("user-1", "application_status", {"status": "Sent"})

        failing.assert_awaited_once()
        working.assert_awaited_once_with("user-1", "application_status", {"status": "Sent"})


class TestSettings:
    """Configuration validation."""

    def test_default_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            make_settings(default_weights={"embedding_similarity": 0.5, "skill_overlap": 0.2})

    def test_throttle_limits(self):
        config = make_settings(throttle_linkedin_limit=80)

        assert config.throttle_limits() == {"Email": (3600, 20), "LinkedIn": (86400, 80)}
