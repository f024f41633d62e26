from __future__ import annotations

from pathlib import Path
from typing import Iterable

from datastore.device_preferences import build_default_preferences
from services.notifier import build_default_dispatcher
from services.store import build_default_store
from settings import get_settings
from storage.backends import FileStorage, MemoryStorage, build_default_storage


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


CACHES = (
    get_settings,
    build_default_storage,
    build_default_preferences,
    build_default_dispatcher,
    build_default_store,
)


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    storage_root = tmp_path / "data"

    monkeypatch.setenv("READING_TTL_SECONDS", "30")
    monkeypatch.setenv("READING_HISTORY_CAPACITY", "10")
    monkeypatch.setenv("STORAGE_BACKEND", "file")
    monkeypatch.setenv("STORAGE_ROOT_PATH", str(storage_root))
    monkeypatch.setenv("NOTIFIER_WORKER_COUNT", "2")
    monkeypatch.setenv("NOTIFIER_TIMEOUT_SECONDS", "3.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    _clear_caches(CACHES)

    settings = get_settings()
    store = build_default_store()

    try:
        assert settings.log_level == "DEBUG"
        assert store.ttl_seconds == 30.0
        assert store.capacity == 10
        storage = build_default_storage()
        assert isinstance(storage, FileStorage)
        assert storage.root_path == Path(str(storage_root))
        assert store.dispatcher.executor._max_workers == 2
        assert store.dispatcher.client.timeout.read == 3.5
    finally:
        store.shutdown()
        _clear_caches(CACHES)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("READING_TTL_SECONDS", "-5")
    monkeypatch.setenv("READING_HISTORY_CAPACITY", "lots")
    monkeypatch.setenv("STREAM_HEARTBEAT_SECONDS", "")
    monkeypatch.setenv("STORAGE_BACKEND", "s3")
    monkeypatch.delenv("STORAGE_ROOT_PATH", raising=False)
    monkeypatch.setenv("IOT_API_KEY", "   ")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.reading_ttl_seconds == 60.0
        assert settings.history_capacity == 500
        assert settings.stream_heartbeat_seconds == 15.0
        assert settings.storage_backend == "file"
        assert settings.storage_root_path == "./data"
        assert settings.api_key is None
    finally:
        get_settings.cache_clear()


def test_notification_channels_require_complete_configuration(monkeypatch) -> None:
    monkeypatch.setenv("ALERT_RESEND_API_KEY", "re_test")
    monkeypatch.setenv("ALERT_EMAIL_FROM", "alerts@example.com")
    monkeypatch.setenv("ALERT_EMAIL_TO", "ops@example.com")
    monkeypatch.setenv("ALERT_TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.delenv("ALERT_TWILIO_AUTH_TOKEN", raising=False)
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.email is not None
        assert settings.email.recipient == "ops@example.com"
        assert settings.sms is None
    finally:
        get_settings.cache_clear()


def test_memory_backend_is_selectable(monkeypatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    _clear_caches(CACHES)

    try:
        assert isinstance(build_default_storage(), MemoryStorage)
    finally:
        _clear_caches(CACHES)
