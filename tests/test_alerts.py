from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from app.schemas import ActiveAlert, AlertVariant, TemperatureThresholds
from datastore.device_preferences import DevicePreferenceStore
from models.records import Reading
from services.alerts import AlertEngine, evaluate_mode
from storage.backends import MemoryStorage

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: List[ActiveAlert] = []

    def send(self, alert: ActiveAlert) -> None:
        self.sent.append(alert)


class FailingDispatcher:
    def send(self, alert: ActiveAlert) -> None:
        raise RuntimeError("provider down")


@pytest.fixture
def preferences() -> DevicePreferenceStore:
    return DevicePreferenceStore(storage=MemoryStorage())


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def engine(preferences: DevicePreferenceStore, dispatcher: RecordingDispatcher) -> AlertEngine:
    alerts = AlertEngine(preferences=preferences, dispatcher=dispatcher)
    preferences.on_thresholds_changed(alerts.reconcile_device)
    return alerts


def _reading(temperature: float, offset_s: int = 0, device_id: str = "Room-1", **kwargs) -> Reading:
    return Reading(
        device_id=device_id,
        timestamp=START + timedelta(seconds=offset_s),
        temperature_c=temperature,
        **kwargs,
    )


def test_evaluate_mode_boundaries() -> None:
    thresholds = TemperatureThresholds(low_c=18.0, high_c=30.0)

    assert evaluate_mode(30.0, thresholds) == "ok"
    assert evaluate_mode(30.1, thresholds) == "high"
    assert evaluate_mode(18.0, thresholds) == "ok"
    assert evaluate_mode(17.9, thresholds) == "low"
    assert evaluate_mode(50.0, None) == "ok"
    assert evaluate_mode(50.0, TemperatureThresholds(low_c=18.0)) == "ok"


def test_hysteresis_dispatches_once_per_breach(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})

    engine.evaluate(_reading(29.0, 0))
    assert dispatcher.sent == []
    assert engine.list_active() == []

    engine.evaluate(_reading(31.0, 1))
    engine.evaluate(_reading(32.0, 2))
    assert len(dispatcher.sent) == 1
    alert = dispatcher.sent[0]
    assert alert.variant is AlertVariant.high
    assert alert.temperature_c == 31.0
    assert alert.threshold_c == 30.0
    assert alert.viewer_identity is None

    active = engine.list_active()
    assert len(active) == 1
    assert active[0].temperature_c == 32.0

    engine.evaluate(_reading(29.0, 3))
    assert len(dispatcher.sent) == 1
    assert engine.list_active() == []


def test_triggered_at_is_stable_within_a_breach(engine, preferences) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})

    engine.evaluate(_reading(31.0, 10))
    first = engine.list_active()[0].triggered_at
    engine.evaluate(_reading(32.0, 20))
    second = engine.list_active()[0].triggered_at

    assert first == second == START + timedelta(seconds=10)


def test_new_breach_after_recovery_restamps(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})

    engine.evaluate(_reading(31.0, 0))
    engine.evaluate(_reading(25.0, 5))
    engine.evaluate(_reading(33.0, 10))

    assert len(dispatcher.sent) == 2
    assert engine.list_active()[0].triggered_at == START + timedelta(seconds=10)


def test_low_breach_uses_low_bound(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"lowC": 18, "highC": 30})

    engine.evaluate(_reading(17.0))

    assert len(dispatcher.sent) == 1
    assert dispatcher.sent[0].variant is AlertVariant.low
    assert dispatcher.sent[0].threshold_c == 18.0


def test_switching_direction_dispatches_again(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"lowC": 18, "highC": 30})

    engine.evaluate(_reading(31.0, 0))
    engine.evaluate(_reading(17.0, 5))

    assert [alert.variant for alert in dispatcher.sent] == [AlertVariant.high, AlertVariant.low]
    assert len(engine.list_active()) == 1


def test_per_viewer_thresholds_override_device_default(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 20})
    preferences.set_user_thresholds("Room-1", "Alice@Example.com", {"highC": 30})
    preferences.set_user_thresholds("Room-1", "bob@example.com", {"highC": 25})

    engine.evaluate(_reading(27.0))

    assert len(dispatcher.sent) == 1
    assert dispatcher.sent[0].viewer_identity == "bob@example.com"
    assert dispatcher.sent[0].threshold_c == 25.0

    engine.evaluate(_reading(31.0, 1))
    viewers = sorted(alert.viewer_identity for alert in engine.list_active())
    assert viewers == ["alice@example.com", "bob@example.com"]
    assert len(dispatcher.sent) == 2


def test_room_label_prefers_viewer_override(engine, preferences, dispatcher) -> None:
    preferences.set_label("Room-1", "Lab")
    preferences.set_user_label("Room-1", "bob@example.com", "Bob's lab")
    preferences.set_user_thresholds("Room-1", "bob@example.com", {"highC": 25})
    preferences.set_user_thresholds("Room-1", "carol@example.com", {"highC": 25})

    engine.evaluate(_reading(26.0))

    labels = {alert.viewer_identity: alert.room_label for alert in dispatcher.sent}
    assert labels == {"bob@example.com": "Bob's lab", "carol@example.com": "Lab"}


def test_removing_thresholds_clears_active_alerts(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})
    engine.evaluate(_reading(31.0))
    assert len(engine.list_active()) == 1

    preferences.set_device_thresholds("Room-1", None)

    assert engine.list_active() == []
    engine.evaluate(_reading(35.0, 5))
    assert len(dispatcher.sent) == 1
    assert engine.list_active() == []


def test_removing_one_viewer_keeps_the_other(engine, preferences) -> None:
    preferences.set_user_thresholds("Room-1", "alice@example.com", {"highC": 25})
    preferences.set_user_thresholds("Room-1", "bob@example.com", {"highC": 25})
    engine.evaluate(_reading(30.0))

    preferences.set_user_thresholds("Room-1", "alice@example.com", None)

    assert [alert.viewer_identity for alert in engine.list_active()] == ["bob@example.com"]


def test_changing_to_a_different_bound_drops_the_breach(engine, preferences, dispatcher) -> None:
    preferences.set_user_thresholds("Room-1", "a@x.com", {"highC": 30})
    engine.evaluate(_reading(35.0))
    assert len(engine.list_active()) == 1

    preferences.set_user_thresholds("Room-1", "a@x.com", {"lowC": 10})

    assert engine.list_active() == []
    engine.evaluate(_reading(35.0, 5))
    assert engine.list_active() == []
    assert len(dispatcher.sent) == 1


def test_raising_the_bound_above_the_reading_clears_the_breach(engine, preferences) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})
    engine.evaluate(_reading(35.0))

    preferences.set_device_thresholds("Room-1", {"highC": 40})

    assert engine.list_active() == []


def test_tightened_bound_is_reflected_in_active_alert(engine, preferences, dispatcher) -> None:
    preferences.set_user_thresholds("Room-1", "a@x.com", {"highC": 30})
    engine.evaluate(_reading(35.0, 10))

    preferences.set_user_thresholds("Room-1", "a@x.com", {"highC": 32, "lowC": 5})

    active = engine.list_active()
    assert len(active) == 1
    assert active[0].threshold_c == 32.0
    assert active[0].variant is AlertVariant.high
    assert active[0].triggered_at == START + timedelta(seconds=10)

    engine.evaluate(_reading(36.0, 20))
    assert len(dispatcher.sent) == 1
    assert engine.list_active()[0].threshold_c == 32.0


def test_switching_from_device_to_viewer_thresholds_drops_legacy_alert(engine, preferences) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 25})
    engine.evaluate(_reading(30.0))
    assert engine.list_active()[0].viewer_identity is None

    preferences.set_user_thresholds("Room-1", "bob@example.com", {"highC": 35})

    assert engine.list_active() == []


def test_demo_readings_never_alert(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})

    engine.evaluate(_reading(40.0, is_demo=True))

    assert dispatcher.sent == []
    assert engine.list_active() == []


def test_devices_are_tracked_independently(engine, preferences, dispatcher) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})
    preferences.set_device_thresholds("Room-2", {"highC": 30})

    engine.evaluate(_reading(31.0, device_id="Room-1"))
    engine.evaluate(_reading(31.0, device_id="Room-2"))
    engine.evaluate(_reading(25.0, 1, device_id="Room-1"))

    assert len(dispatcher.sent) == 2
    assert [alert.device_id for alert in engine.list_active()] == ["Room-2"]


def test_dispatch_failure_keeps_alert_state(preferences) -> None:
    engine = AlertEngine(preferences=preferences, dispatcher=FailingDispatcher())
    preferences.set_device_thresholds("Room-1", {"highC": 30})

    engine.evaluate(_reading(31.0))

    assert len(engine.list_active()) == 1


def test_unparseable_timestamp_is_stamped_with_current_time(engine, preferences) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})
    before = datetime.now(timezone.utc)

    engine.evaluate(Reading(device_id="Room-1", timestamp="yesterday", temperature_c=31.0))

    triggered_at = engine.list_active()[0].triggered_at
    assert triggered_at >= before


def test_list_active_returns_copies(engine, preferences) -> None:
    preferences.set_device_thresholds("Room-1", {"highC": 30})
    engine.evaluate(_reading(31.0))

    snapshot = engine.list_active()
    snapshot[0].temperature_c = 99.0

    assert engine.list_active()[0].temperature_c == 31.0
