"""Typed progress channel for pipeline stages."""

import logging
from typing import Any, Callable, Dict, List, Optional

from afterburn.models.events import Stage, StageEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[StageEvent], None]


class EventChannel:
    """
    Fan-out of StageEvents to subscribers.

    Subscribers are called synchronously in subscription order. A failing
    subscriber is logged and skipped; progress reporting never breaks a scan.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._subscribers: List[Subscriber] = []
        self.history: List[StageEvent] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, stage: Stage, message: str, data: Optional[Dict[str, Any]] = None) -> StageEvent:
        event = StageEvent(
            stage=stage,
            message=message,
            session_id=self.session_id,
            data=data or {},
        )
        self.history.append(event)
        logger.debug(f"[{self.session_id}] {stage.value}: {message}")

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.warning(f"[{self.session_id}] Event subscriber failed: {e}")

        return event
