from __future__ import annotations

import logging
import math
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from app.schemas import DevicePreferences, TemperatureThresholds
from storage.backends import StorageBackend, StorageError, build_default_storage

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "device-preferences"

ThresholdListener = Callable[[str], None]


def normalize_viewer(viewer: str) -> str:
    return viewer.strip().lower()


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def normalize_label(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _normalize_bound(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return round(float(value), 1)


def normalize_thresholds(value: Any) -> Optional[TemperatureThresholds]:
    """Round bounds to 0.1 degrees, drop invalid ones and order low <= high."""
    if isinstance(value, TemperatureThresholds):
        raw = {"lowC": value.low_c, "highC": value.high_c}
    elif isinstance(value, dict):
        raw = value
    else:
        return None

    low_c = _normalize_bound(raw.get("lowC", raw.get("low_c")))
    high_c = _normalize_bound(raw.get("highC", raw.get("high_c")))
    if low_c is None and high_c is None:
        return None
    if low_c is not None and high_c is not None and low_c > high_c:
        low_c, high_c = high_c, low_c
    return TemperatureThresholds(low_c=low_c, high_c=high_c)


class DevicePreferenceStore:
    """Per-device labels and thresholds, with per-viewer overrides.

    State is held in memory and written through to the storage backend after
    every change. A failed write is logged and the in-memory state is kept.
    """

    def __init__(self, storage: StorageBackend, key: str = PREFERENCES_KEY) -> None:
        self.storage = storage
        self.key = key
        self._preferences: Dict[str, DevicePreferences] = {}
        self._listeners: List[ThresholdListener] = []
        self._lock = Lock()
        self._load()

    # -- reads --

    def get(self, device_id: str) -> Optional[DevicePreferences]:
        with self._lock:
            preference = self._preferences.get(device_id.strip())
            return preference.model_copy(deep=True) if preference else None

    def list_all(self) -> Dict[str, DevicePreferences]:
        with self._lock:
            return {
                device_id: preference.model_copy(deep=True)
                for device_id, preference in self._preferences.items()
            }

    def user_thresholds(self, device_id: str) -> Dict[str, TemperatureThresholds]:
        """Every per-viewer threshold configured for ``device_id``."""
        preference = self.get(device_id)
        if preference is None:
            return {}
        return dict(preference.thresholds_by_user)

    def thresholds_for(self, device_id: str, viewer: str) -> Optional[TemperatureThresholds]:
        preference = self.get(device_id)
        if preference is None:
            return None
        return preference.thresholds_by_user.get(normalize_viewer(viewer)) or preference.thresholds

    def label_for(self, device_id: str, viewer: Optional[str] = None) -> Optional[str]:
        preference = self.get(device_id)
        if preference is None:
            return None
        if viewer:
            override = preference.labels_by_user.get(normalize_viewer(viewer))
            if override:
                return override
        return preference.label

    def list_labels(self, viewer: Optional[str] = None) -> Dict[str, str]:
        labels: Dict[str, str] = {}
        for device_id in self.list_all():
            label = self.label_for(device_id, viewer)
            if label:
                labels[device_id] = label
        return labels

    def list_for_user(self, viewer: str) -> Dict[str, DevicePreferences]:
        """Preferences as one viewer sees them: own label and thresholds only."""
        result: Dict[str, DevicePreferences] = {}
        for device_id in self.list_all():
            thresholds = self.thresholds_for(device_id, viewer)
            result[device_id] = DevicePreferences(
                label=self.label_for(device_id, viewer),
                thresholds=thresholds,
            )
        return result

    def has_thresholds(self, device_id: str) -> bool:
        preference = self.get(device_id)
        if preference is None:
            return False
        return bool(preference.thresholds or preference.thresholds_by_user)

    # -- writes --

    def set_label(self, device_id: str, label: Optional[str]) -> None:
        self._update(device_id, lambda pref: setattr(pref, "label", normalize_label(label)))

    def set_user_label(self, device_id: str, viewer: str, label: Optional[str]) -> None:
        email = normalize_viewer(viewer)
        normalized = normalize_label(label)

        def apply(pref: DevicePreferences) -> None:
            if normalized:
                pref.labels_by_user[email] = normalized
            else:
                pref.labels_by_user.pop(email, None)

        self._update(device_id, apply)

    def set_device_thresholds(self, device_id: str, thresholds: Any) -> None:
        normalized = normalize_thresholds(thresholds)
        changed = self._update(
            device_id, lambda pref: setattr(pref, "thresholds", normalized)
        )
        if changed:
            self._notify(device_id.strip())

    def set_user_thresholds(self, device_id: str, viewer: str, thresholds: Any) -> None:
        email = normalize_viewer(viewer)
        normalized = normalize_thresholds(thresholds)

        def apply(pref: DevicePreferences) -> None:
            if normalized:
                pref.thresholds_by_user[email] = normalized
            else:
                pref.thresholds_by_user.pop(email, None)

        if self._update(device_id, apply):
            self._notify(device_id.strip())

    def on_thresholds_changed(self, listener: ThresholdListener) -> None:
        self._listeners.append(listener)

    # -- internal --

    def _update(self, device_id: str, apply: Callable[[DevicePreferences], None]) -> bool:
        normalized_id = device_id.strip()
        if not normalized_id:
            return False
        with self._lock:
            current = self._preferences.get(normalized_id)
            updated = current.model_copy(deep=True) if current else DevicePreferences()
            apply(updated)
            if updated == (current or DevicePreferences()):
                return False
            if updated.is_empty():
                self._preferences.pop(normalized_id, None)
            else:
                self._preferences[normalized_id] = updated
            self._persist()
        return True

    def _notify(self, device_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(device_id)
            except Exception:
                logger.exception(
                    "Threshold change listener failed", extra={"device_id": device_id}
                )

    def _persist(self) -> None:
        payload = {
            device_id: preference.model_dump(mode="json", by_alias=True, exclude_none=True)
            for device_id, preference in self._preferences.items()
        }
        try:
            self.storage.write(self.key, payload)
        except StorageError as exc:
            logger.warning(
                "Keeping device preferences in memory only",
                extra={"storage_key": self.key, "reason": str(exc)},
            )

    def _load(self) -> None:
        data = self.storage.read(self.key)
        if not isinstance(data, dict):
            return

        for device_id, value in data.items():
            normalized_id = str(device_id).strip()
            if not normalized_id:
                continue
            preference = self._parse_entry(value)
            if preference is not None and not preference.is_empty():
                self._preferences[normalized_id] = preference

    @staticmethod
    def _parse_entry(value: Any) -> Optional[DevicePreferences]:
        # Older files map a device straight to its label.
        if isinstance(value, str):
            return DevicePreferences(label=normalize_label(value))
        if not isinstance(value, dict):
            return None

        thresholds_by_user: Dict[str, TemperatureThresholds] = {}
        for email, raw in _as_dict(value.get("thresholdsByUser")).items():
            normalized = normalize_thresholds(raw)
            if normalized and normalize_viewer(email):
                thresholds_by_user[normalize_viewer(email)] = normalized

        labels_by_user: Dict[str, str] = {}
        for email, raw in _as_dict(value.get("labelsByUser")).items():
            normalized_label = normalize_label(raw)
            if normalized_label and normalize_viewer(email):
                labels_by_user[normalize_viewer(email)] = normalized_label

        try:
            return DevicePreferences(
                label=normalize_label(value.get("label")),
                thresholds=normalize_thresholds(value.get("thresholds")),
                thresholds_by_user=thresholds_by_user,
                labels_by_user=labels_by_user,
            )
        except ValidationError:
            return None


@lru_cache
def build_default_preferences() -> DevicePreferenceStore:
    return DevicePreferenceStore(storage=build_default_storage())
