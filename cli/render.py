from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_optional(value: Any, suffix: str) -> str:
    if value is None:
        return "-"
    return f"{value}{suffix}"


def render_readings(payload: Dict[str, Any]) -> None:
    echo_heading("Devices")
    echo_key_values(
        [
            ("active", payload.get("activeDeviceCount")),
            ("total", payload.get("totalDeviceCount")),
            ("demo_mode", payload.get("isDemoMode")),
        ]
    )

    readings = payload.get("readings") or []
    typer.echo()
    echo_heading("Latest Readings")
    if not readings:
        typer.echo("No readings received yet.")
        return
    for reading in readings:
        demo = " (demo)" if reading.get("isDemo") else ""
        typer.echo(
            f"  - {reading.get('deviceId')}{demo}: "
            f"{_format_optional(reading.get('temperatureC'), '°C')}, "
            f"humidity {_format_optional(reading.get('humidityPct'), '%')}, "
            f"rssi {_format_optional(reading.get('rssi'), '')} "
            f"at {reading.get('ts')}"
        )


def render_alerts(alerts: List[Dict[str, Any]]) -> None:
    echo_heading("Active Alerts")
    if not alerts:
        typer.echo("No active alerts.")
        return
    for alert in alerts:
        label = alert.get("roomLabel") or alert.get("deviceId")
        viewer = alert.get("viewerIdentity")
        owner = f" for {viewer}" if viewer else ""
        typer.secho(
            f"  - {label} {str(alert.get('variant')).upper()}{owner}: "
            f"{alert.get('temperatureC')}°C vs {alert.get('thresholdC')}°C "
            f"since {alert.get('triggeredAt')}",
            fg=typer.colors.RED,
        )
