"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.records import Reading


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AlertVariant(str, Enum):
    """Direction of a threshold breach."""

    high = "high"
    low = "low"


class ActiveAlert(CamelModel):
    """Externally visible record of a current breach."""

    device_id: str
    variant: AlertVariant
    temperature_c: float
    threshold_c: float
    triggered_at: datetime
    room_label: Optional[str] = None
    viewer_identity: Optional[str] = None


class TemperatureThresholds(CamelModel):
    """Lower/upper temperature bounds in degrees Celsius."""

    low_c: Optional[float] = None
    high_c: Optional[float] = None


class DevicePreferences(CamelModel):
    """Labels and thresholds configured for a single device."""

    label: Optional[str] = None
    thresholds: Optional[TemperatureThresholds] = None
    thresholds_by_user: Dict[str, TemperatureThresholds] = Field(default_factory=dict)
    labels_by_user: Dict[str, str] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.label or self.thresholds or self.thresholds_by_user or self.labels_by_user
        )


class ReadingPayload(CamelModel):
    """Reading as accepted at the ingestion boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )

    device_id: str = Field(..., min_length=1)
    temperature_c: float
    humidity_pct: Optional[float] = None
    rssi: Optional[float] = None

    @field_validator("device_id", mode="before")
    @classmethod
    def strip_device_id(cls, value):
        return value.strip() if isinstance(value, str) else value

    def to_reading(self, timestamp: datetime, is_demo: bool = False) -> Reading:
        return Reading(
            device_id=self.device_id,
            timestamp=timestamp,
            temperature_c=self.temperature_c,
            humidity_pct=self.humidity_pct,
            rssi=round(self.rssi) if self.rssi is not None else None,
            is_demo=is_demo,
        )


class IngestResponse(BaseModel):
    ok: bool = True


class ReadingsResponse(CamelModel):
    """Latest reading per device plus fleet counters."""

    readings: List[dict]
    real_device_count: int
    demo_device_count: int
    is_demo_mode: bool
    active_device_count: int
    total_device_count: int


class PreferenceUpdate(CamelModel):
    """Label and/or threshold change for one device.

    Fields left out of the request body are not touched; ``thresholds: null``
    removes the configured bounds.
    """

    device_id: str = Field(..., min_length=1)
    viewer: Optional[str] = None
    label: Optional[str] = None
    thresholds: Optional[TemperatureThresholds] = None


class PreferencesResponse(BaseModel):
    labels: Dict[str, str]
    preferences: Dict[str, DevicePreferences]
