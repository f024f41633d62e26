"""Hysteresis alerting keyed by (device, viewer).

A key moves between ``ok``, ``low`` and ``high`` on every evaluated reading.
Notifications fire only on a change of mode, never for repeated samples of
the same breach. ``triggered_at`` is stamped when a breach begins and kept
until the key returns to ``ok``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Protocol

from app.schemas import ActiveAlert, AlertVariant, TemperatureThresholds
from datastore.device_preferences import DevicePreferenceStore
from models.records import Reading, parse_timestamp

logger = logging.getLogger(__name__)

LEGACY_VIEWER = "__legacy__"

OK = "ok"


class AlertSink(Protocol):
    def send(self, alert: ActiveAlert) -> None: ...


def evaluate_mode(temperature_c: float, thresholds: Optional[TemperatureThresholds]) -> str:
    if thresholds is None:
        return OK
    if thresholds.high_c is not None and temperature_c > thresholds.high_c:
        return AlertVariant.high.value
    if thresholds.low_c is not None and temperature_c < thresholds.low_c:
        return AlertVariant.low.value
    return OK


class AlertEngine:
    def __init__(self, preferences: DevicePreferenceStore, dispatcher: AlertSink) -> None:
        self.preferences = preferences
        self.dispatcher = dispatcher
        # device_id -> viewer -> mode / alert; a missing key means "ok".
        self._modes: Dict[str, Dict[str, str]] = {}
        self._active: Dict[str, Dict[str, ActiveAlert]] = {}
        self._lock = Lock()

    def evaluate(self, reading: Reading) -> None:
        if reading.is_demo:
            return

        device_id = reading.device_id
        thresholds_by_viewer = self._resolve_thresholds(device_id)
        if not thresholds_by_viewer:
            self.clear_device(device_id)
            return

        room_labels = {
            viewer: self.preferences.label_for(
                device_id, None if viewer == LEGACY_VIEWER else viewer
            )
            for viewer in thresholds_by_viewer
        }

        transitions: List[ActiveAlert] = []
        with self._lock:
            for viewer, thresholds in thresholds_by_viewer.items():
                alert = self._apply(reading, viewer, thresholds, room_labels[viewer])
                if alert is not None:
                    transitions.append(alert)

        for alert in transitions:
            self._dispatch(alert)

    def clear_device(self, device_id: str) -> None:
        with self._lock:
            self._modes.pop(device_id, None)
            cleared = self._active.pop(device_id, None)
        if cleared:
            logger.info(
                "Cleared alerts for device without thresholds", extra={"device_id": device_id}
            )

    def reconcile_device(self, device_id: str) -> None:
        """Bring active alerts on ``device_id`` in line with its current thresholds.

        Alerts for viewers without thresholds, or whose last temperature no
        longer breaches the same bound, are dropped. The rest keep their
        ``triggered_at`` and pick up the new bound.
        """
        thresholds_by_viewer = self._resolve_thresholds(device_id)
        if not thresholds_by_viewer:
            self.clear_device(device_id)
            return

        with self._lock:
            viewers = set(self._modes.get(device_id, {})) | set(self._active.get(device_id, {}))
            for viewer in viewers:
                thresholds = thresholds_by_viewer.get(viewer)
                alert = self._active.get(device_id, {}).get(viewer)
                mode = OK
                if thresholds is not None and alert is not None:
                    mode = evaluate_mode(alert.temperature_c, thresholds)
                if alert is None or mode != alert.variant.value:
                    self._discard(device_id, viewer)
                    logger.info(
                        "Alert dropped after threshold change",
                        extra={"device_id": device_id, "viewer": viewer},
                    )
                    continue
                alert.threshold_c = (
                    thresholds.high_c if mode == AlertVariant.high.value else thresholds.low_c
                )

    def list_active(self) -> List[ActiveAlert]:
        with self._lock:
            return [
                alert.model_copy(deep=True)
                for viewers in self._active.values()
                for alert in viewers.values()
            ]

    def _resolve_thresholds(self, device_id: str) -> Dict[str, TemperatureThresholds]:
        by_viewer = self.preferences.user_thresholds(device_id)
        if by_viewer:
            return by_viewer
        preference = self.preferences.get(device_id)
        if preference is not None and preference.thresholds is not None:
            return {LEGACY_VIEWER: preference.thresholds}
        return {}

    def _apply(
        self,
        reading: Reading,
        viewer: str,
        thresholds: TemperatureThresholds,
        room_label: Optional[str],
    ) -> Optional[ActiveAlert]:
        """Update one key; return the alert when its mode changed to a breach."""
        device_id = reading.device_id
        new_mode = evaluate_mode(reading.temperature_c, thresholds)
        prev_mode = self._modes.get(device_id, {}).get(viewer, OK)

        if new_mode == OK:
            if prev_mode != OK:
                self._discard(device_id, viewer)
                logger.info(
                    "Temperature back within thresholds",
                    extra={
                        "device_id": device_id,
                        "viewer": viewer,
                        "temperature_c": reading.temperature_c,
                    },
                )
            return None

        threshold_c = thresholds.high_c if new_mode == AlertVariant.high.value else thresholds.low_c
        if threshold_c is None:
            return None

        existing = self._active.get(device_id, {}).get(viewer)
        triggered_at = existing.triggered_at if existing else self._stamp(reading)
        alert = ActiveAlert(
            device_id=device_id,
            variant=AlertVariant(new_mode),
            temperature_c=reading.temperature_c,
            threshold_c=threshold_c,
            triggered_at=triggered_at,
            room_label=room_label,
            viewer_identity=None if viewer == LEGACY_VIEWER else viewer,
        )
        self._active.setdefault(device_id, {})[viewer] = alert
        self._modes.setdefault(device_id, {})[viewer] = new_mode

        if new_mode == prev_mode:
            return None
        logger.warning(
            "Temperature threshold breached",
            extra={
                "device_id": device_id,
                "viewer": viewer,
                "variant": new_mode,
                "temperature_c": reading.temperature_c,
                "threshold_c": threshold_c,
            },
        )
        return alert.model_copy(deep=True)

    def _discard(self, device_id: str, viewer: str) -> None:
        for states in (self._modes, self._active):
            viewers = states.get(device_id)
            if viewers is None:
                continue
            viewers.pop(viewer, None)
            if not viewers:
                del states[device_id]

    @staticmethod
    def _stamp(reading: Reading) -> datetime:
        parsed = parse_timestamp(reading.timestamp)
        if parsed is None:
            logger.warning(
                "Unparseable reading timestamp; stamping breach with current time",
                extra={"device_id": reading.device_id, "reason": repr(reading.timestamp)},
            )
            return datetime.now(timezone.utc)
        return parsed

    def _dispatch(self, alert: ActiveAlert) -> None:
        try:
            self.dispatcher.send(alert)
        except Exception:
            logger.exception(
                "Notification dispatch failed",
                extra={"device_id": alert.device_id, "viewer": alert.viewer_identity},
            )

