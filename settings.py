from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_TTL_ENV = "READING_TTL_SECONDS"
_CAPACITY_ENV = "READING_HISTORY_CAPACITY"
_HEARTBEAT_ENV = "STREAM_HEARTBEAT_SECONDS"
_STREAM_QUEUE_ENV = "STREAM_QUEUE_SIZE"
_STORAGE_BACKEND_ENV = "STORAGE_BACKEND"
_STORAGE_ROOT_ENV = "STORAGE_ROOT_PATH"
_API_KEY_ENV = "IOT_API_KEY"
_WORKER_COUNT_ENV = "NOTIFIER_WORKER_COUNT"
_NOTIFIER_TIMEOUT_ENV = "NOTIFIER_TIMEOUT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_RESEND_API_KEY_ENV = "ALERT_RESEND_API_KEY"
_EMAIL_FROM_ENV = "ALERT_EMAIL_FROM"
_EMAIL_TO_ENV = "ALERT_EMAIL_TO"
_TWILIO_SID_ENV = "ALERT_TWILIO_ACCOUNT_SID"
_TWILIO_TOKEN_ENV = "ALERT_TWILIO_AUTH_TOKEN"
_SMS_FROM_ENV = "ALERT_SMS_FROM"
_SMS_TO_ENV = "ALERT_SMS_TO"

_STORAGE_BACKENDS = {"file", "memory"}


@dataclass(frozen=True)
class EmailSettings:
    api_key: str
    sender: str
    recipient: str


@dataclass(frozen=True)
class SmsSettings:
    account_sid: str
    auth_token: str
    sender: str
    recipient: str


@dataclass(frozen=True)
class Settings:
    reading_ttl_seconds: float
    history_capacity: int
    stream_heartbeat_seconds: float
    stream_queue_size: int
    storage_backend: str
    storage_root_path: Optional[str]
    api_key: Optional[str]
    notifier_workers: int
    notifier_timeout_seconds: float
    log_level: str
    email: Optional[EmailSettings] = None
    sms: Optional[SmsSettings] = None


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def _read_storage_backend(default: str) -> str:
    candidate = _read_str_env(_STORAGE_BACKEND_ENV, default).lower()
    return candidate if candidate in _STORAGE_BACKENDS else default


def _read_email_settings() -> Optional[EmailSettings]:
    api_key = _read_optional_env(_RESEND_API_KEY_ENV, None)
    sender = _read_optional_env(_EMAIL_FROM_ENV, None)
    recipient = _read_optional_env(_EMAIL_TO_ENV, None)
    if not (api_key and sender and recipient):
        return None
    return EmailSettings(api_key=api_key, sender=sender, recipient=recipient)


def _read_sms_settings() -> Optional[SmsSettings]:
    account_sid = _read_optional_env(_TWILIO_SID_ENV, None)
    auth_token = _read_optional_env(_TWILIO_TOKEN_ENV, None)
    sender = _read_optional_env(_SMS_FROM_ENV, None)
    recipient = _read_optional_env(_SMS_TO_ENV, None)
    if not (account_sid and auth_token and sender and recipient):
        return None
    return SmsSettings(
        account_sid=account_sid,
        auth_token=auth_token,
        sender=sender,
        recipient=recipient,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings(
        reading_ttl_seconds=_read_positive_float(_TTL_ENV, 60.0),
        history_capacity=_read_positive_int(_CAPACITY_ENV, 500),
        stream_heartbeat_seconds=_read_positive_float(_HEARTBEAT_ENV, 15.0),
        stream_queue_size=_read_positive_int(_STREAM_QUEUE_ENV, 256),
        storage_backend=_read_storage_backend("file"),
        storage_root_path=_read_optional_env(_STORAGE_ROOT_ENV, "./data"),
        api_key=_read_optional_env(_API_KEY_ENV, None),
        notifier_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        notifier_timeout_seconds=_read_positive_float(_NOTIFIER_TIMEOUT_ENV, 10.0),
        log_level=_read_log_level("INFO"),
        email=_read_email_settings(),
        sms=_read_sms_settings(),
    )
