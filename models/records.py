"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

Timestamp = Union[datetime, str]


@dataclass(frozen=True, slots=True)
class Reading:
    """A single sensor sample reported by a device.

    ``timestamp`` is normally an aware ``datetime`` stamped at the ingestion
    boundary. Readings replayed from other sources may carry an ISO-8601
    string instead; consumers go through :func:`parse_timestamp` and treat
    values it cannot parse as having an unknown age.
    """

    device_id: str
    timestamp: Timestamp
    temperature_c: float
    humidity_pct: Optional[float] = None
    rssi: Optional[int] = None
    is_demo: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation used by the HTTP API and the live stream."""
        timestamp = self.timestamp
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        return {
            "deviceId": self.device_id,
            "ts": timestamp,
            "temperatureC": self.temperature_c,
            "humidityPct": self.humidity_pct,
            "rssi": self.rssi,
            "isDemo": self.is_demo,
        }


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort conversion of ``value`` to an aware UTC datetime.

    Returns ``None`` when the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch seconds, or milliseconds for large values.
        seconds = value / 1000 if value > 1e12 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
