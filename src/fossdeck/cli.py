"""CLI entry point for the fossdeck daemon."""

import asyncio
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import aiohttp
import click

from fossdeck import __version__
from fossdeck.config import Config, load_config
from fossdeck.device_store import DeviceStore
from fossdeck.formatting import format_date, format_time_ago
from fossdeck.logging import setup_logging

API_TIMEOUT = 5.0


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """FOSS-Deck - Control this computer from your phone."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


# =============================================================================
# Local API helpers
# =============================================================================


def _base_url(config: Config) -> str:
    return f"http://127.0.0.1:{config.port}"


async def _api_request(
    config: Config, method: str, path: str
) -> Optional[tuple[int, dict[str, Any]]]:
    """Call the running daemon's local API.

    Returns:
        (status, json body), or None if the daemon is not reachable.
    """
    timeout = aiohttp.ClientTimeout(total=API_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as http:
            async with http.request(method, f"{_base_url(config)}{path}") as resp:
                try:
                    body = await resp.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = {}
                return resp.status, body
    except (aiohttp.ClientConnectorError, asyncio.TimeoutError):
        return None


def _open_store(config: Config) -> DeviceStore:
    store = DeviceStore(Path(config.store_path) if config.store_path else None)
    store.load()
    return store


def _not_running(config: Config) -> None:
    click.echo(f"Error: Cannot connect to daemon on port {config.port}. Is it running?", err=True)
    click.echo("Start the daemon with: fossdeck daemon start", err=True)


# =============================================================================
# Daemon
# =============================================================================


@main.group()
def daemon() -> None:
    """Daemon control commands."""
    pass


@daemon.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the daemon in the foreground."""
    from fossdeck.daemon import Daemon, StartupError

    config = ctx.obj["config"]

    async def _start():
        daemon = Daemon(config=config)

        try:
            await daemon.start()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)

        click.echo(f"Daemon started on port {daemon.port}")
        click.echo(f"Pairing code: {daemon.authority.current_code().value}")
        click.echo("Press Ctrl+C to stop")
        await daemon.run_forever()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@daemon.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon status."""
    config = ctx.obj["config"]
    result = asyncio.run(_api_request(config, "GET", "/api/status"))

    if result is None:
        click.echo("Daemon status: not running")
        return

    code, data = result
    if code != 200:
        click.echo(f"Daemon status: error (HTTP {code})", err=True)
        raise SystemExit(1)

    click.echo(f"Daemon status: running (version {data.get('version')})")
    active = data.get("active_device_id")
    click.echo(f"Active session: {active if active else 'none'}")
    click.echo(f"Authorized devices: {data.get('authorized_count', 0)}")
    click.echo(f"Open connections: {data.get('connections', 0)}")
    if data.get("save_failures"):
        click.echo(
            f"Warning: {data['save_failures']} consecutive device store save failure(s)",
            err=True,
        )


# =============================================================================
# Pairing
# =============================================================================


@main.command()
@click.option("--new", "rotate", is_flag=True, help="Issue a fresh pairing code first.")
@click.pass_context
def pair(ctx: click.Context, rotate: bool) -> None:
    """Show the pairing code to enter on the companion app."""
    config = ctx.obj["config"]

    if rotate:
        result = asyncio.run(_api_request(config, "POST", "/api/pairing-code"))
        if result is None:
            _not_running(config)
            raise SystemExit(1)
        _, data = result
        if not data.get("rotated"):
            click.echo("A device holds the active session; keeping the current code.")
        click.echo(f"Pairing code: {data.get('pairing_code')}")
        return

    result = asyncio.run(_api_request(config, "GET", "/api/status"))
    if result is None:
        _not_running(config)
        raise SystemExit(1)

    _, data = result
    click.echo(f"Pairing code: {data.get('pairing_code')}")
    if data.get("code_expired"):
        click.echo("(expired - a new code is issued on the next pairing attempt)")


# =============================================================================
# Devices
# =============================================================================


@main.group()
def devices() -> None:
    """Device management commands."""
    pass


def _fetch_devices(config: Config) -> tuple[list[dict[str, Any]], bool]:
    """Devices from the daemon if it runs, else from the store file.

    Returns:
        (devices, via_daemon)
    """
    result = asyncio.run(_api_request(config, "GET", "/api/devices"))
    if result is not None and result[0] == 200:
        return result[1].get("devices", []), True

    store = _open_store(config)
    return [
        {
            "device_id": device_id,
            "name": device.display_name,
            "added_at": device.added_at,
            "last_seen": device.last_seen,
            "active": False,
        }
        for device_id, device in store.list()
    ], False


@devices.command("list")
@click.option("--full", is_flag=True, help="Show full device IDs")
@click.pass_context
def devices_list(ctx: click.Context, full: bool) -> None:
    """List all authorized devices."""
    all_devices, _ = _fetch_devices(ctx.obj["config"])

    if not all_devices:
        click.echo("No paired devices.")
        return

    click.echo(f"{'ID':<12} {'NAME':<20} {'PAIRED':<12} {'LAST SEEN'}")
    click.echo("-" * 70)

    # Already sorted most recent first
    for device in all_devices:
        device_id = device["device_id"]
        device_id_display = device_id if full else device_id[:8]
        name = device.get("name") or "(unnamed)"
        last_seen = format_time_ago(device.get("last_seen"))
        if device.get("active"):
            last_seen += " (active)"

        click.echo(
            f"{device_id_display:<12} "
            f"{name:<20} "
            f"{format_date(device.get('added_at', 0)):<12} "
            f"{last_seen}"
        )


@devices.command("remove")
@click.argument("device_id", required=False)
@click.option("--all", "remove_all", is_flag=True, help="Remove all devices")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def devices_remove(
    ctx: click.Context,
    device_id: str | None,
    remove_all: bool,
    force: bool,
) -> None:
    """Revoke a paired device.

    Use the short DEVICE_ID from 'fossdeck devices list' (e.g., 0e49b502),
    or use --all to remove all devices. A revoked device that currently
    holds the session is disconnected from it immediately.
    """
    config = ctx.obj["config"]
    all_devices, via_daemon = _fetch_devices(config)

    if remove_all:
        if not all_devices:
            click.echo("No devices to remove.")
            return
        if not force and not click.confirm(f"Remove all {len(all_devices)} devices?"):
            click.echo("Aborted.")
            return
        targets = all_devices

    elif device_id:
        # Exact match first, then prefix (like git short hashes)
        matches = [d for d in all_devices if d["device_id"] == device_id]
        if not matches:
            matches = [d for d in all_devices if d["device_id"].startswith(device_id)]

        if len(matches) == 0:
            click.echo(f"Error: Device '{device_id}' not found.", err=True)
            raise SystemExit(1)
        if len(matches) > 1:
            click.echo(f"Error: Ambiguous device ID '{device_id}'. Matches:", err=True)
            for d in matches:
                click.echo(f"  {d['device_id'][:8]} - {d.get('name') or '(unnamed)'}", err=True)
            raise SystemExit(1)

        device = matches[0]
        if not force:
            name = device.get("name") or device["device_id"][:8]
            last_seen = format_time_ago(device.get("last_seen"))
            if not click.confirm(f"Remove device '{name}' (last seen {last_seen})?"):
                click.echo("Aborted.")
                return
        targets = matches

    else:
        click.echo("Error: Specify a device ID or use --all", err=True)
        raise SystemExit(1)

    if via_daemon:
        async def _revoke_all() -> list[str]:
            failed = []
            for d in targets:
                path = f"/api/devices/{quote(d['device_id'], safe='')}"
                result = await _api_request(config, "DELETE", path)
                if result is None or result[0] != 200:
                    failed.append(d["device_id"])
            return failed

        failed = asyncio.run(_revoke_all())
    else:
        store = _open_store(config)
        failed = [d["device_id"] for d in targets if not store.remove(d["device_id"])]

    for device_id in failed:
        click.echo(f"Error: Failed to remove device '{device_id}'.", err=True)

    removed = len(targets) - len(failed)
    if failed:
        click.echo(f"Removed {removed} of {len(targets)} devices.", err=True)
        raise SystemExit(1)

    if removed == 1:
        click.echo("Device removed.")
    else:
        click.echo(f"Removed {removed} devices.")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"fossdeck version {__version__}")
