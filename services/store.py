"""Bounded, TTL-pruned reading history and the ingestion pipeline."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional, Set

from datastore.device_preferences import build_default_preferences
from models.records import Reading, parse_timestamp
from services.alerts import AlertEngine
from services.bus import EventBus
from services.notifier import NotificationDispatcher, build_default_dispatcher
from settings import get_settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingStore:
    """Per-device reading history feeding the live bus and the alert engine.

    Each device keeps at most ``capacity`` readings. Pruning removes entries
    older than the TTL but always keeps the most recent one, so a device that
    went quiet still shows up with its last known values.
    """

    def __init__(
        self,
        bus: EventBus,
        alerts: AlertEngine,
        capacity: int = 500,
        ttl_seconds: float = 60.0,
        clock: Clock = _utcnow,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.bus = bus
        self.alerts = alerts
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.dispatcher = dispatcher
        self._histories: Dict[str, Deque[Reading]] = {}
        self._real_devices: Set[str] = set()
        self._lock = Lock()

    def add(self, reading: Reading) -> None:
        cutoff = self._cutoff(None)
        with self._lock:
            history = self._histories.get(reading.device_id)
            if history is None:
                history = deque(maxlen=self.capacity)
                self._histories[reading.device_id] = history
            else:
                self._prune_history(history, cutoff, keep_sentinel=False)
            history.append(reading)
            if not reading.is_demo:
                self._real_devices.add(reading.device_id)

        self.bus.publish(reading)
        try:
            self.alerts.evaluate(reading)
        except Exception:
            logger.exception(
                "Alert evaluation failed; reading kept",
                extra={"device_id": reading.device_id},
            )

    def latest(self, device_id: str) -> Optional[Reading]:
        with self._lock:
            history = self._histories.get(device_id)
            if not history:
                return None
            return history[-1]

    def history(self, device_id: str, limit: Optional[int] = None) -> List[Reading]:
        with self._lock:
            data = list(self._histories.get(device_id, ()))
        if limit:
            return data[-limit:]
        return data

    def device_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._histories)

    def prune(self, ttl_seconds: Optional[float] = None) -> None:
        cutoff = self._cutoff(ttl_seconds)
        with self._lock:
            for history in self._histories.values():
                self._prune_history(history, cutoff)

    def list_latest(self, ttl_seconds: Optional[float] = None) -> List[Reading]:
        cutoff = self._cutoff(ttl_seconds)
        with self._lock:
            latest: List[Reading] = []
            for history in self._histories.values():
                self._prune_history(history, cutoff)
                if history:
                    latest.append(history[-1])
            return latest

    def active_device_count(self, ttl_seconds: Optional[float] = None) -> int:
        cutoff = self._cutoff(ttl_seconds)
        with self._lock:
            return sum(
                1
                for device_id in self._real_devices
                if self._is_fresh(self._latest_real(device_id), cutoff)
            )

    def total_device_count(self) -> int:
        with self._lock:
            return len(self._real_devices)

    def has_real_devices(self) -> bool:
        return self.total_device_count() > 0

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()

    def _cutoff(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return None
        return self.clock() - timedelta(seconds=ttl)

    def _latest_real(self, device_id: str) -> Optional[Reading]:
        for reading in reversed(self._histories.get(device_id, ())):
            if not reading.is_demo:
                return reading
        return None

    @staticmethod
    def _is_fresh(reading: Optional[Reading], cutoff: Optional[datetime]) -> bool:
        if reading is None:
            return False
        if cutoff is None:
            return True
        timestamp = parse_timestamp(reading.timestamp)
        return timestamp is not None and timestamp >= cutoff

    @classmethod
    def _prune_history(
        cls,
        history: Deque[Reading],
        cutoff: Optional[datetime],
        keep_sentinel: bool = True,
    ) -> None:
        """Drop stale entries in place, retaining the newest as a sentinel."""
        if cutoff is None or not history:
            return
        fresh = [reading for reading in history if cls._is_fresh(reading, cutoff)]
        if len(fresh) == len(history):
            return
        if not fresh and keep_sentinel:
            fresh = [history[-1]]
        history.clear()
        history.extend(fresh)


@lru_cache
def build_default_store() -> ReadingStore:
    """Factory that wires the store, bus, alert engine and dispatcher."""
    settings = get_settings()
    preferences = build_default_preferences()
    dispatcher = build_default_dispatcher()
    alerts = AlertEngine(preferences=preferences, dispatcher=dispatcher)
    preferences.on_thresholds_changed(alerts.reconcile_device)
    return ReadingStore(
        bus=EventBus(),
        alerts=alerts,
        capacity=settings.history_capacity,
        ttl_seconds=settings.reading_ttl_seconds,
        dispatcher=dispatcher,
    )
