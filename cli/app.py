from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
import typer

from cli.bridge import apply_calibration, is_sensor_error, parse_sensor_line
from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_alerts, render_readings


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the room telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    api_key: Optional[str] = typer.Option(
        None,
        "--api-key",
        help="Ingest API key (defaults to IOT_API_KEY env).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, api_key=api_key)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("send")
def send_command(
    ctx: typer.Context,
    temperature: float = typer.Argument(..., help="Temperature in degrees Celsius."),
    device_id: Optional[str] = typer.Option(
        None, "--device-id", "-d", help="Device identifier (defaults to IOT_DEVICE_ID env)."
    ),
    humidity: Optional[float] = typer.Option(None, "--humidity", help="Relative humidity in percent."),
    rssi: Optional[int] = typer.Option(None, "--rssi", help="Signal strength in dBm."),
) -> None:
    """Send a single reading to the ingest endpoint."""
    state = _get_state(ctx)
    target = device_id or state.config.device_id
    try:
        state.client.post_reading(target, temperature, humidity_pct=humidity, rssi=rssi)
    except httpx.HTTPStatusError as exc:
        ApiClient._handle_http_error(exc)
    except httpx.HTTPError as exc:
        typer.secho(f"Could not reach {state.config.base_url}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Sent {temperature}°C for {target}.", fg=typer.colors.GREEN)


@app.command("bridge")
def bridge_command(
    ctx: typer.Context,
    source: typer.FileText = typer.Argument(
        "-",
        help="Serial device (already configured with stty) or file to read sensor lines from ('-' for stdin).",
    ),
    device_id: Optional[str] = typer.Option(
        None, "--device-id", "-d", help="Device identifier (defaults to IOT_DEVICE_ID env)."
    ),
    temp_offset: Optional[float] = typer.Option(
        None, "--temp-offset", help="Calibration offset added to temperature (defaults to IOT_TEMP_OFFSET_C env)."
    ),
    humidity_offset: Optional[float] = typer.Option(
        None,
        "--humidity-offset",
        help="Calibration offset added to humidity (defaults to IOT_HUMIDITY_OFFSET_PCT env).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo every line read from the source."),
) -> None:
    """Forward sensor console output to the ingest endpoint, one reading per line.

    A serial port is read as a plain text file, so configure the line first,
    for example `stty -F /dev/ttyUSB0 9600 raw -echo` to match the sensor's
    baud rate.
    """
    state = _get_state(ctx)
    target = device_id or state.config.device_id
    t_offset = temp_offset if temp_offset is not None else state.config.temperature_offset_c
    h_offset = humidity_offset if humidity_offset is not None else state.config.humidity_offset_pct

    typer.echo(f"Forwarding readings for {target} to {state.config.base_url} ...")
    sent = 0
    for raw_line in source:
        line = raw_line.strip()
        if not line:
            continue
        if verbose:
            typer.echo(f"serial: {line}")
        if is_sensor_error(line):
            typer.secho(f"Sensor error: {line}", fg=typer.colors.YELLOW, err=True)
            continue
        sample = parse_sensor_line(line)
        if sample is None:
            continue
        sample = apply_calibration(sample, t_offset, h_offset)
        try:
            state.client.post_reading(target, sample.temperature_c, humidity_pct=sample.humidity_pct)
        except httpx.HTTPError as exc:
            typer.secho(f"Failed to send reading: {exc}", fg=typer.colors.RED, err=True)
            continue
        sent += 1
        if verbose:
            typer.echo(f"sent: {sample.temperature_c}°C, humidity {sample.humidity_pct}")
    typer.secho(f"Forwarded {sent} reading(s).", fg=typer.colors.GREEN)


@app.command("readings")
def readings_command(ctx: typer.Context) -> None:
    """Show the latest reading per device."""
    state = _get_state(ctx)
    render_readings(state.client.get_readings())


@app.command("alerts")
def alerts_command(ctx: typer.Context) -> None:
    """List currently active temperature alerts."""
    state = _get_state(ctx)
    render_alerts(state.client.get_alerts())
