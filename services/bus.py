"""In-process publish/subscribe for freshly ingested readings."""

from __future__ import annotations

import itertools
import logging
from threading import Lock
from typing import Callable, Dict

from models.records import Reading

logger = logging.getLogger(__name__)

Subscriber = Callable[[Reading], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """Live-push fanout: no buffering, no delivery to absent subscribers.

    ``publish`` iterates over a snapshot of the registry so callbacks may
    subscribe or unsubscribe while a publish is in flight. A failing callback
    is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[int, Subscriber] = {}
        self._tokens = itertools.count()
        self._lock = Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, reading: Reading) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())

        for callback in subscribers:
            try:
                callback(reading)
            except Exception:
                logger.exception(
                    "Reading subscriber failed",
                    extra={"device_id": reading.device_id, "subscribers": len(subscribers)},
                )
