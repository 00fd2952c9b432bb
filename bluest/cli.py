"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio

import typer

from bluest.core.device_match import best_profile_for_device
from bluest.core.errors import BlueStError
from bluest.core.features import describe_mask
from bluest.core.service import BlueStService

app = typer.Typer(help="BlueST sensor nodes over Bluetooth Low Energy")


def _build_service() -> BlueStService:
    service = BlueStService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("profiles")
def list_profiles() -> None:
    """List available sensor profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            for layout in profile.aggregates:
                members = ", ".join(describe_mask(f) for f in layout.features)
                typer.echo(f"  aggregate: {members}")
            if profile.notifications:
                typer.echo(f"  notifications: {describe_mask(profile.notifications)}")
    except BlueStError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    timeout: float = typer.Option(5.0, "--timeout", help="Scan duration in seconds"),
) -> None:
    """Scan for advertising BlueST devices and show the matched profile."""
    try:
        service = _build_service()
        devices = asyncio.run(service.list_devices(timeout))
        if not devices:
            typer.echo("No BlueST devices found")
            return

        for device in devices:
            profile = best_profile_for_device(device, service.profiles)
            matched = profile.id if profile else "<no-match>"
            features = describe_mask(device.advertisement.feature_mask)
            typer.echo(f"{device.address} {device.name} -> {matched} [{features}]")
    except BlueStError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("registers")
def dump_registers(
    device: str | None = typer.Option(None, "--device", help="Address or partial name"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
    timeout: float = typer.Option(5.0, "--timeout", help="Scan duration in seconds"),
) -> None:
    """Read the configuration register map of the resolved device."""
    try:
        service = _build_service()

        async def _run() -> tuple[str, dict[str, int]]:
            target = await service.resolve_target(profile, device, timeout_s=timeout)
            async with service.open_session(target.device.address, target.profile) as session:
                values = await service.read_register_map(session, target.profile)
            return target.device.address, values

        address, values = asyncio.run(_run())
        typer.echo(f"Registers of {address}:")
        for name, value in values.items():
            typer.echo(f"  {name}: {value} (0x{value:04X})")
    except BlueStError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
