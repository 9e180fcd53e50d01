"""In-memory repository with per-key locking.

Every read returns a deep copy so callers never observe a half-written
entity; writes replace the stored copy wholesale. Mutual exclusion for
check-then-act sequences is provided by ``lock(...)``, which hands out one
``asyncio.Lock`` per key (application id, match id, (user, channel) pair).
Locks are held weakly and disappear once no caller references them.
"""

import asyncio
import weakref
from collections import defaultdict
from datetime import datetime
from typing import Dict, Hashable, List, Optional, Set, Tuple

from career_match.core.exceptions import (
    DuplicateApplicationError,
    DuplicateMatchError,
    NotFoundError,
)
from career_match.core.models import (
    Application,
    ApplicationStatus,
    DistributionChannel,
    Feedback,
    Match,
    MatchStatus,
    Posting,
    Profile,
    ThrottleRecord,
    WeightSource,
    WeightVector,
    utc_now,
)
from career_match.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryRepository:
    """Stores profiles, postings, matches, feedback, weights, applications and throttle records."""

    def __init__(self):
        self.logger = logger.bind(component="repository")

        self._profiles: Dict[str, Profile] = {}
        self._postings: Dict[str, Posting] = {}
        self._matches: Dict[str, Match] = {}
        self._match_pairs: Dict[Tuple[str, str], str] = {}
        self._feedback: Dict[str, List[Feedback]] = defaultdict(list)
        self._weights: Dict[str, List[WeightVector]] = defaultdict(list)
        self._applications: Dict[str, Application] = {}
        self._applications_by_match: Dict[str, str] = {}
        self._throttle: Dict[Tuple[str, DistributionChannel], List[ThrottleRecord]] = defaultdict(list)

        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._write_lock = asyncio.Lock()

    def lock(self, *key: Hashable) -> asyncio.Lock:
        """
        Return the lock guarding ``key``.

        The same lock is returned for as long as any caller still holds it.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def lock_count(self) -> int:
        return len(self._locks)

    # Profiles and postings (owned by external collaborators)

    async def put_profile(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = profile.model_copy(deep=True)

    async def get_profile(self, user_id: str) -> Profile:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise NotFoundError(f"Profile not found for user {user_id}", entity_id=user_id)
        return profile.model_copy(deep=True)

    async def put_posting(self, posting: Posting) -> None:
        self._postings[posting.id] = posting.model_copy(deep=True)

    async def get_posting(self, posting_id: str) -> Posting:
        posting = self._postings.get(posting_id)
        if posting is None:
            raise NotFoundError(f"Posting not found: {posting_id}", entity_id=posting_id)
        return posting.model_copy(deep=True)

    async def get_active_postings(self) -> List[Posting]:
        return [p.model_copy(deep=True) for p in self._postings.values() if p.is_active]

    # Matches

    async def create_match(self, match: Match) -> Match:
        async with self._write_lock:
            pair = (match.user_id, match.posting_id)
            if pair in self._match_pairs:
                raise DuplicateMatchError(
                    f"Match already exists for user {match.user_id} and posting {match.posting_id}",
                    entity_id=self._match_pairs[pair]
                )
            self._matches[match.id] = match.model_copy(deep=True)
            self._match_pairs[pair] = match.id
        return match

    async def get_match(self, match_id: str) -> Match:
        match = self._matches.get(match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}", entity_id=match_id)
        return match.model_copy(deep=True)

    async def save_match(self, match: Match) -> None:
        if match.id not in self._matches:
            raise NotFoundError(f"Match not found: {match.id}", entity_id=match.id)
        self._matches[match.id] = match.model_copy(deep=True)

    async def list_matches(self, user_id: str, status: Optional[MatchStatus] = None) -> List[Match]:
        return [
            m.model_copy(deep=True)
            for m in self._matches.values()
            if m.user_id == user_id and (status is None or m.status == status)
        ]

    async def matched_posting_ids(self, user_id: str) -> Set[str]:
        return {posting_id for (uid, posting_id) in self._match_pairs if uid == user_id}

    # Feedback (append-only)

    async def append_feedback(self, feedback: Feedback) -> None:
        self._feedback[feedback.user_id].append(feedback)

    async def list_feedback(self, user_id: str) -> List[Feedback]:
        return list(self._feedback.get(user_id, []))

    async def count_feedback(self, user_id: str) -> int:
        return len(self._feedback.get(user_id, []))

    async def feedback_user_ids(self) -> List[str]:
        return [user_id for user_id, entries in self._feedback.items() if entries]

    # Weight vectors (versioned)

    async def get_weights(self, user_id: str) -> Optional[WeightVector]:
        history = self._weights.get(user_id)
        return history[-1] if history else None

    async def get_weights_version(self, user_id: str, version: int) -> Optional[WeightVector]:
        for vector in self._weights.get(user_id, []):
            if vector.version == version:
                return vector
        return None

    async def weight_history(self, user_id: str) -> List[WeightVector]:
        return list(self._weights.get(user_id, []))

    async def publish_weights(
        self,
        user_id: str,
        weights: Dict[str, float],
        source: WeightSource,
        feedback_count: int = 0,
        created_at: Optional[datetime] = None
    ) -> WeightVector:
        """Store a new version; readers see either the old or the new vector, never a mix."""
        async with self.lock("weights", user_id):
            history = self._weights[user_id]
            vector = WeightVector(
                user_id=user_id,
                version=(history[-1].version + 1) if history else 1,
                weights=dict(weights),
                source=source,
                feedback_count=feedback_count,
                created_at=created_at or utc_now()
            )
            history.append(vector)
        self.logger.info(
            "Weight vector published",
            user_id=user_id,
            version=vector.version,
            source=source.value
        )
        return vector

    # Applications

    async def create_application(self, application: Application) -> Application:
        async with self._write_lock:
            existing = self._applications_by_match.get(application.match_id)
            if existing is not None:
                raise DuplicateApplicationError(
                    f"Match {application.match_id} already has application {existing}",
                    entity_id=existing
                )
            self._applications[application.id] = application.model_copy(deep=True)
            self._applications_by_match[application.match_id] = application.id
        return application

    async def get_application(self, application_id: str) -> Application:
        application = self._applications.get(application_id)
        if application is None:
            raise NotFoundError(f"Application not found: {application_id}", entity_id=application_id)
        return application.model_copy(deep=True)

    async def save_application(self, application: Application) -> None:
        if application.id not in self._applications:
            raise NotFoundError(f"Application not found: {application.id}", entity_id=application.id)
        self._applications[application.id] = application.model_copy(deep=True)

    async def application_for_match(self, match_id: str) -> Optional[Application]:
        application_id = self._applications_by_match.get(match_id)
        if application_id is None:
            return None
        return self._applications[application_id].model_copy(deep=True)

    async def list_applications(
        self,
        user_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None
    ) -> List[Application]:
        return [
            a.model_copy(deep=True)
            for a in self._applications.values()
            if (user_id is None or a.user_id == user_id) and (status is None or a.status == status)
        ]

    # Throttle records (append-only)

    async def append_throttle_record(self, record: ThrottleRecord) -> None:
        self._throttle[(record.user_id, record.channel)].append(record)

    async def throttle_records(
        self,
        user_id: str,
        channel: DistributionChannel,
        since: datetime
    ) -> List[ThrottleRecord]:
        return [
            r for r in self._throttle.get((user_id, channel), [])
            if r.timestamp > since
        ]
