"""Best-effort status notifications.

Subscribers are a side channel only: the repository is the source of truth,
and a failing or slow subscriber never affects the operation that published.
"""

from typing import Any, Awaitable, Callable, Dict, List

from career_match.utils.logging import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


class StatusNotifier:
    """Fan-out of (user_id, event, payload) to registered subscribers."""

    def __init__(self):
        self.logger = logger.bind(component="status_notifier")
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber(user_id, event, payload)
            except Exception as e:
                self.logger.warning("Notification dropped", user_id=user_id, event=event, error=str(e))
