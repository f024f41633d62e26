"""Parsing and calibration of sensor console output for the serial bridge.

The sensor sketch prints lines such as::

    Humidity: 45.00 %	Temperature: 23.10 *C

and ``Failed to read from DHT sensor!`` when a sample could not be taken.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_HUMIDITY_PATTERN = re.compile(r"Humidity:\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
_TEMPERATURE_PATTERN = re.compile(r"Temperature:\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)

SENSOR_ERROR_MARKER = "Failed to read"


@dataclass(frozen=True)
class SensorSample:
    temperature_c: float
    humidity_pct: Optional[float] = None


def is_sensor_error(line: str) -> bool:
    return SENSOR_ERROR_MARKER in line


def parse_sensor_line(line: str) -> Optional[SensorSample]:
    """Extract a sample from one console line; ``None`` without a temperature."""
    temperature_match = _TEMPERATURE_PATTERN.search(line)
    if temperature_match is None:
        return None
    humidity_match = _HUMIDITY_PATTERN.search(line)
    humidity = float(humidity_match.group(1)) if humidity_match else None
    return SensorSample(temperature_c=float(temperature_match.group(1)), humidity_pct=humidity)


def apply_calibration(
    sample: SensorSample, temperature_offset_c: float, humidity_offset_pct: float
) -> SensorSample:
    humidity = sample.humidity_pct
    if humidity is not None:
        humidity = round(humidity + humidity_offset_pct, 1)
    return SensorSample(
        temperature_c=round(sample.temperature_c + temperature_offset_c, 2),
        humidity_pct=humidity,
    )
