"""Sliding-window admission control per (user, distribution channel)."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from career_match.config import Settings, settings as default_settings
from career_match.core.models import DistributionChannel, ThrottleRecord, utc_now
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChannelLimit:
    """At most ``max_count`` admissions per ``window``."""
    window: timedelta
    max_count: int


@dataclass
class ThrottleDecision:
    """Result of an admission request."""
    admitted: bool
    retry_after: Optional[timedelta] = None
    used: int = 0
    limit: int = 0


@dataclass
class QuotaStatus:
    """Current usage for one channel."""
    channel: DistributionChannel
    used: int
    limit: int
    window: timedelta
    resets_at: Optional[datetime]


class ThrottleGate:
    """Protects distribution channels against anti-automation detection."""

    def __init__(
        self,
        repository,
        limits: Dict[DistributionChannel, ChannelLimit],
        clock: Callable[[], datetime] = utc_now
    ):
        self.logger = logger.bind(component="throttle_gate")
        self.repository = repository
        self.limits = dict(limits)
        self.clock = clock

        missing = [c.value for c in DistributionChannel if c not in self.limits]
        if missing:
            raise ValueError(f"Throttle limits missing for channels: {', '.join(missing)}")

    @classmethod
    def from_settings(
        cls,
        repository,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ) -> "ThrottleGate":
        config = config or default_settings
        limits = {
            DistributionChannel(name): ChannelLimit(window=timedelta(seconds=window), max_count=limit)
            for name, (window, limit) in config.throttle_limits().items()
        }
        return cls(repository, limits, clock)

    async def _in_window(self, user_id: str, channel: DistributionChannel, now: datetime) -> List[ThrottleRecord]:
        limit = self.limits[channel]
        records = await self.repository.throttle_records(user_id, channel, since=now - limit.window)
        return sorted(records, key=lambda r: r.timestamp)

    async def admit(self, user_id: str, channel: DistributionChannel) -> ThrottleDecision:
        """
        Admit one outbound action if the window has room.

        Counting and recording happen under one lock per (user, channel), so
        concurrent callers can never jointly exceed the limit. A denial is a
        deferral: ``retry_after`` is the time until the oldest in-window
        record expires.
        """
        limit = self.limits[channel]
        async with self.repository.lock("throttle", user_id, channel):
            now = self.clock()
            records = await self._in_window(user_id, channel, now)

            if len(records) < limit.max_count:
                await self.repository.append_throttle_record(
                    ThrottleRecord(user_id=user_id, channel=channel, timestamp=now)
                )
                self.logger.debug(
                    "Admission granted",
                    user_id=user_id,
                    channel=channel.value,
                    used=len(records) + 1,
                    limit=limit.max_count
                )
                return ThrottleDecision(admitted=True, used=len(records) + 1, limit=limit.max_count)

            retry_after = records[0].timestamp + limit.window - now
            self.logger.info(
                "Admission deferred",
                user_id=user_id,
                channel=channel.value,
                used=len(records),
                limit=limit.max_count,
                retry_after_seconds=retry_after.total_seconds()
            )
            return ThrottleDecision(
                admitted=False,
                retry_after=retry_after,
                used=len(records),
                limit=limit.max_count
            )

    async def quota_status(self, user_id: str) -> List[QuotaStatus]:
        now = self.clock()
        statuses = []
        for channel, limit in self.limits.items():
            records = await self._in_window(user_id, channel, now)
            statuses.append(QuotaStatus(
                channel=channel,
                used=len(records),
                limit=limit.max_count,
                window=limit.window,
                resets_at=records[0].timestamp + limit.window if records else None
            ))
        return statuses
