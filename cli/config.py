from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_DEVICE_ID = "Room-Temperature"

_BASE_URL_ENV = "API_BASE_URL"
_API_KEY_ENV = "IOT_API_KEY"
_DEVICE_ID_ENV = "IOT_DEVICE_ID"
_TEMP_OFFSET_ENV = "IOT_TEMP_OFFSET_C"
_HUMIDITY_OFFSET_ENV = "IOT_HUMIDITY_OFFSET_PCT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    device_id: str = DEFAULT_DEVICE_ID
    temperature_offset_c: float = 0.0
    humidity_offset_pct: float = 0.0


def _read_offset(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return float(candidate)
    except ValueError:
        return default


def _read_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def load_config(
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    device_id: Optional[str] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    return CLIConfig(
        base_url=url.rstrip("/"),
        api_key=api_key or _read_optional(os.getenv(_API_KEY_ENV)),
        device_id=device_id or _read_optional(os.getenv(_DEVICE_ID_ENV)) or DEFAULT_DEVICE_ID,
        temperature_offset_c=_read_offset(os.getenv(_TEMP_OFFSET_ENV), 0.0),
        humidity_offset_pct=_read_offset(os.getenv(_HUMIDITY_OFFSET_ENV), 0.0),
    )
