"""Shared fixtures and builders for Career Match tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from career_match.config import Settings
from career_match.core.exceptions import DeliveryError
from career_match.core.models import (
    Application,
    DistributionChannel,
    Match,
    MatchStatus,
    Posting,
    Profile,
)
from career_match.dispatch.channels import DeliveryChannel, DeliveryReceipt
from career_match.storage import InMemoryRepository

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(DeliveryChannel):
    """Delivery channel that records deliveries and can be told to fail."""

    def __init__(self, channel: DistributionChannel = DistributionChannel.EMAIL, failures: int = 0):
        self.channel = channel
        self.failures = failures
        self.delivered: List[str] = []
        self.calls = 0
        self.closed = False

    async def deliver(self, application: Application, posting: Posting) -> DeliveryReceipt:
        self.calls += 1
        # Yield so concurrent senders get a chance to interleave
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryError("relay unavailable", entity_id=application.id)
        self.delivered.append(application.id)
        return DeliveryReceipt(channel=self.channel, message_id=f"msg-{len(self.delivered)}")

    async def close(self) -> None:
        self.closed = True


def make_settings(**overrides) -> Settings:
    values = {"run_scheduler": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_profile(
    user_id: str = "user-1",
    embedding: Sequence[float] = (1.0, 0.0, 0.0),
    skills: Sequence[str] = ("Python", "SQL"),
    **kwargs
) -> Profile:
    return Profile(user_id=user_id, embedding=list(embedding), skills=list(skills), **kwargs)


def make_posting(
    posting_id: str,
    embedding: Optional[Sequence[float]] = (1.0, 0.0, 0.0),
    requirements: Sequence[str] = ("Python", "SQL"),
    scraped_at: datetime = T0,
    **kwargs
) -> Posting:
    values = {
        "title": f"Engineer {posting_id}",
        "company": "Acme",
        "contact_email": "hr@acme.example",
        "source_url": f"https://jobs.example/{posting_id}",
    }
    values.update(kwargs)
    return Posting(
        id=posting_id,
        embedding=list(embedding) if embedding is not None else None,
        requirements=list(requirements),
        scraped_at=scraped_at,
        **values
    )


def make_match(
    match_id: str,
    user_id: str = "user-1",
    score: float = 90.0,
    status: MatchStatus = MatchStatus.PENDING,
    scraped_at: datetime = T0,
    posting_id: Optional[str] = None,
    **kwargs
) -> Match:
    values = {
        "signals": {
            "embedding_similarity": 0.9,
            "skill_overlap": 0.5,
            "sector_match": 1.0,
            "city_match": 1.0,
            "salary_fit": 1.0,
            "remote_match": 1.0,
        },
    }
    values.update(kwargs)
    return Match(
        id=match_id,
        user_id=user_id,
        posting_id=posting_id or f"posting-{match_id}",
        score=score,
        status=status,
        posting_scraped_at=scraped_at,
        **values
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()
