from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        headers = {"X-API-Key": config.api_key} if config.api_key else {}
        self._client = httpx.Client(base_url=config.base_url, timeout=30.0, headers=headers)

    def close(self) -> None:
        self._client.close()

    def post_reading(
        self,
        device_id: str,
        temperature_c: float,
        humidity_pct: Optional[float] = None,
        rssi: Optional[int] = None,
    ) -> None:
        """Send one reading; raises ``httpx.HTTPError`` on failure."""
        payload: Dict[str, Any] = {"deviceId": device_id, "temperatureC": temperature_c}
        if humidity_pct is not None:
            payload["humidityPct"] = humidity_pct
        if rssi is not None:
            payload["rssi"] = rssi
        response = self._client.post("/ingest", json=payload)
        response.raise_for_status()

    def get_readings(self) -> Dict[str, Any]:
        try:
            response = self._client.get("/readings")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def get_alerts(self) -> List[Dict[str, Any]]:
        try:
            response = self._client.get("/alerts")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            self._handle_transport_error(exc)
        return response.json()

    def _handle_transport_error(self, exc: httpx.HTTPError) -> None:
        typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
