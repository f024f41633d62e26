"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
import random
import secrets
from typing import List, Mapping, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import ValidationError

from app.schemas import (
    ActiveAlert,
    IngestResponse,
    PreferenceUpdate,
    PreferencesResponse,
    ReadingPayload,
    ReadingsResponse,
)
from datastore.device_preferences import DevicePreferenceStore, build_default_preferences
from models.records import Reading
from services.store import ReadingStore, build_default_store
from settings import get_settings

logger = logging.getLogger(__name__)

DEMO_DEVICE_ID = "Room-Temperature"
_REQUIRED_FIELDS_DETAIL = "deviceId and temperatureC are required"
_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "text/plain", "text/html")

router = APIRouter()


def get_store() -> ReadingStore:
    return build_default_store()


def get_preferences() -> DevicePreferenceStore:
    return build_default_preferences()


def require_api_key(
    key: Optional[str] = Query(None, include_in_schema=False),
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    required = get_settings().api_key
    if not required:
        return
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[len("Bearer "):]
    for candidate in (key, x_api_key, bearer):
        if candidate and secrets.compare_digest(candidate, required):
            return
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _payload_from_params(params: Mapping[str, str]) -> Optional[ReadingPayload]:
    fields = {
        name: value.strip()
        for name, value in params.items()
        if name in {"deviceId", "temperatureC", "humidityPct", "rssi"} and value.strip()
    }
    try:
        return ReadingPayload.model_validate(fields)
    except ValidationError:
        return None


def _payload_from_json(body: object) -> ReadingPayload:
    if not isinstance(body, dict):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=_REQUIRED_FIELDS_DETAIL)
    # JSON carries real numbers; string coercion is only for query and form input.
    try:
        return ReadingPayload.model_validate(body, strict=True)
    except ValidationError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=_REQUIRED_FIELDS_DETAIL) from exc


async def _read_json(request: Request) -> object:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from exc


def _ingest(store: ReadingStore, payload: ReadingPayload) -> Reading:
    reading = payload.to_reading(timestamp=store.clock())
    store.add(reading)
    logger.debug(
        "Reading ingested",
        extra={"device_id": reading.device_id, "temperature_c": reading.temperature_c},
    )
    return reading


@router.get(
    "/ingest",
    response_model=IngestResponse,
    dependencies=[Depends(require_api_key)],
    summary="Ingest a reading passed as query parameters.",
)
async def ingest_from_query(
    request: Request,
    store: ReadingStore = Depends(get_store),
) -> IngestResponse:
    payload = _payload_from_params(request.query_params)
    if payload is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=_REQUIRED_FIELDS_DETAIL)
    _ingest(store, payload)
    return IngestResponse()


@router.post(
    "/ingest",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestResponse,
    dependencies=[Depends(require_api_key)],
    summary="Ingest a reading sent as JSON, form data or query parameters.",
)
async def ingest(
    request: Request,
    store: ReadingStore = Depends(get_store),
) -> IngestResponse:
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        payload = _payload_from_json(await _read_json(request))
    elif any(kind in content_type for kind in _FORM_CONTENT_TYPES):
        text = (await request.body()).decode("utf-8", errors="replace")
        payload = _payload_from_params(dict(parse_qsl(text)))
        if payload is None:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=_REQUIRED_FIELDS_DETAIL)
    else:
        # Constrained clients sometimes append the reading to the POST URL.
        payload = _payload_from_params(request.query_params)
        if payload is None:
            raise HTTPException(
                status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="Unsupported content-type"
            )

    _ingest(store, payload)
    return IngestResponse()


def _add_demo_reading(store: ReadingStore) -> None:
    store.add(
        Reading(
            device_id=DEMO_DEVICE_ID,
            timestamp=store.clock(),
            temperature_c=round(22 + random.random() * 4, 1),
            humidity_pct=float(round(45 + random.random() * 15)),
            is_demo=True,
        )
    )


@router.get(
    "/readings",
    response_model=ReadingsResponse,
    summary="Latest reading per device with fleet counters.",
)
async def list_readings(
    demo: Optional[str] = Query(None, description="Pass 1 to generate a demo reading."),
    store: ReadingStore = Depends(get_store),
) -> ReadingsResponse:
    if demo == "1" and not store.has_real_devices():
        _add_demo_reading(store)

    readings = store.list_latest()
    real = [reading for reading in readings if not reading.is_demo]
    demo_readings = [reading for reading in readings if reading.is_demo]
    return ReadingsResponse(
        readings=[reading.to_dict() for reading in readings],
        real_device_count=len(real),
        demo_device_count=len(demo_readings),
        is_demo_mode=not real and bool(demo_readings),
        active_device_count=store.active_device_count(),
        total_device_count=store.total_device_count(),
    )


@router.post(
    "/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestResponse,
    dependencies=[Depends(require_api_key)],
    summary="Ingest a JSON reading.",
)
async def create_reading(
    request: Request,
    store: ReadingStore = Depends(get_store),
) -> IngestResponse:
    payload = _payload_from_json(await _read_json(request))
    _ingest(store, payload)
    return IngestResponse()


@router.get(
    "/readings/{device_id}",
    summary="Stored history for one device, oldest first.",
)
async def device_history(
    device_id: str,
    limit: Optional[int] = Query(None, ge=1),
    store: ReadingStore = Depends(get_store),
) -> dict:
    if store.latest(device_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No readings for device {device_id!r}.",
        )
    history = store.history(device_id, limit)
    return {"deviceId": device_id, "readings": [reading.to_dict() for reading in history]}


@router.get(
    "/alerts",
    response_model=List[ActiveAlert],
    summary="Currently active threshold breaches.",
)
async def list_alerts(store: ReadingStore = Depends(get_store)) -> List[ActiveAlert]:
    return store.alerts.list_active()


def _preferences_response(
    preferences: DevicePreferenceStore, viewer: Optional[str]
) -> PreferencesResponse:
    if viewer:
        return PreferencesResponse(
            labels=preferences.list_labels(viewer),
            preferences=preferences.list_for_user(viewer),
        )
    return PreferencesResponse(
        labels=preferences.list_labels(),
        preferences=preferences.list_all(),
    )


@router.get(
    "/device-preferences",
    response_model=PreferencesResponse,
    summary="Device labels and thresholds, optionally as seen by one viewer.",
)
async def get_device_preferences(
    viewer: Optional[str] = Query(None),
    preferences: DevicePreferenceStore = Depends(get_preferences),
) -> PreferencesResponse:
    return _preferences_response(preferences, viewer)


@router.post(
    "/device-preferences",
    response_model=PreferencesResponse,
    summary="Update a device label and/or thresholds.",
)
async def update_device_preferences(
    update: PreferenceUpdate,
    preferences: DevicePreferenceStore = Depends(get_preferences),
) -> PreferencesResponse:
    device_id = update.device_id.strip()
    if not device_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="deviceId is required")

    if "label" in update.model_fields_set:
        if update.viewer:
            preferences.set_user_label(device_id, update.viewer, update.label)
        else:
            preferences.set_label(device_id, update.label)

    if "thresholds" in update.model_fields_set:
        if update.viewer:
            preferences.set_user_thresholds(device_id, update.viewer, update.thresholds)
        else:
            preferences.set_device_thresholds(device_id, update.thresholds)

    return _preferences_response(preferences, update.viewer)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
