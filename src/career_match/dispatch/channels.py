"""Delivery adapters for the Email and LinkedIn distribution channels."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from career_match.config import Settings, settings as default_settings
from career_match.core.exceptions import DeliveryError
from career_match.core.models import Application, DistributionChannel, Posting
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeliveryReceipt:
    """Acknowledgement from a channel."""
    channel: DistributionChannel
    message_id: Optional[str] = None
    details: Optional[str] = None


class DeliveryChannel(ABC):
    """Performs the single side-effecting delivery of an application."""

    channel: DistributionChannel

    @abstractmethod
    async def deliver(self, application: Application, posting: Posting) -> DeliveryReceipt:
        """Deliver the application, raising DeliveryError on failure."""

    async def close(self) -> None:
        return None


def build_payload(application: Application, posting: Posting) -> Dict[str, Any]:
    return {
        "application_id": application.id,
        "user_id": application.user_id,
        "posting_id": posting.id,
        "channel": application.channel.value,
        "subject": f"Application for {posting.title} at {posting.company}",
        "recipient": posting.contact_email,
        "source_url": posting.source_url,
        "cover_letter": application.cover_letter,
        "custom_message": application.custom_message,
    }


class RelayDeliveryChannel(DeliveryChannel):
    """
    Hands the application to an external relay (mail sender or LinkedIn worker).

    The relay owns transport details; this adapter only posts the payload and
    maps failures to DeliveryError. The application id doubles as the
    idempotency key so the relay can drop duplicates.
    """

    def __init__(self, channel: DistributionChannel, url: Optional[str], timeout: float = 30.0):
        self.logger = logger.bind(component="relay_channel", channel=channel.value)
        self.channel = channel
        self.url = url
        self.client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=timeout
        )

    async def deliver(self, application: Application, posting: Posting) -> DeliveryReceipt:
        if not self.url:
            raise DeliveryError(f"No relay configured for {self.channel.value}", entity_id=application.id)
        if self.channel == DistributionChannel.EMAIL and not posting.contact_email:
            raise DeliveryError("Posting has no contact e-mail", entity_id=application.id)
        if self.channel == DistributionChannel.LINKEDIN and not posting.source_url:
            raise DeliveryError("Posting has no source URL", entity_id=application.id)

        try:
            response = await self.client.post(
                self.url,
                json=build_payload(application, posting),
                headers={"Idempotency-Key": application.id}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"{self.channel.value} relay failed: {e}", entity_id=application.id) from e

        body = response.json() if response.content else {}
        receipt = DeliveryReceipt(
            channel=self.channel,
            message_id=body.get("message_id"),
            details=body.get("details")
        )
        self.logger.info("Application handed to relay", application_id=application.id, message_id=receipt.message_id)
        return receipt

    async def close(self) -> None:
        await self.client.aclose()


def build_channels(config: Optional[Settings] = None) -> Dict[DistributionChannel, DeliveryChannel]:
    config = config or default_settings
    return {
        DistributionChannel.EMAIL: RelayDeliveryChannel(
            DistributionChannel.EMAIL, config.email_relay_url, config.relay_timeout
        ),
        DistributionChannel.LINKEDIN: RelayDeliveryChannel(
            DistributionChannel.LINKEDIN, config.linkedin_relay_url, config.relay_timeout
        ),
    }
