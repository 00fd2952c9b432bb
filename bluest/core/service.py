"""Service layer used by the CLI and other frontends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from bluest.core.device_match import best_profile_for_device
from bluest.core.errors import BlueStError, DeviceSelectionError
from bluest.core.features import describe_mask
from bluest.core.model import DetectedDevice, ResolvedTarget, SensorProfile, TransportSettings
from bluest.core.profile_loader import load_profiles
from bluest.core.registers import (
    WESU_REGISTER_MAP,
    RegisterPersistence,
    load_registers,
    save_registers,
)
from bluest.core.session import DeviceSession
from bluest.transports.base import GattTransport
from bluest.transports.ble_gatt import BleakGattTransport, scan_advertisements

Scanner = Callable[[float], Awaitable[list[DetectedDevice]]]
Connector = Callable[..., Awaitable[GattTransport]]
LOGGER = logging.getLogger(__name__)


class BlueStService:
    def __init__(
        self,
        *,
        scanner: Scanner | None = None,
        connector: Connector | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self._scanner = scanner or scan_advertisements
        self._connector = connector or BleakGattTransport.connect

    def list_profiles(self) -> list[SensorProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    async def list_devices(self, timeout_s: float = 5.0) -> list[DetectedDevice]:
        return await self._scanner(timeout_s)

    async def resolve_target(
        self,
        profile_id: str | None = None,
        device_hint: str | None = None,
        *,
        timeout_s: float = 5.0,
    ) -> ResolvedTarget:
        devices = await self.list_devices(timeout_s)
        if not devices:
            raise DeviceSelectionError("No BlueST devices found. Ensure the device is advertising.")

        profile_override: SensorProfile | None = None
        if profile_id:
            profile_override = self.profiles.get(profile_id)
            if profile_override is None:
                raise DeviceSelectionError(
                    f"Unknown profile '{profile_id}'. Use 'bluest profiles' to inspect available profiles."
                )

        candidates: list[ResolvedTarget] = []
        for device in devices:
            if profile_override:
                profile = profile_override
            else:
                profile = best_profile_for_device(device, self.profiles)
                if profile is None:
                    continue
            candidates.append(ResolvedTarget(device=device, profile=profile))

        if device_hint:
            hint = device_hint.lower()
            candidates = [
                c
                for c in candidates
                if hint in c.device.address.lower() or hint in c.device.name.lower()
            ]
            if not candidates:
                raise DeviceSelectionError(f"No device found matching '{device_hint}'")

        if not candidates:
            raise DeviceSelectionError(
                "No BlueST device matched any profile. Use --profile to target explicitly or add a profile."
            )

        if len(candidates) > 1:
            LOGGER.info("Several BlueST devices found; using %s", candidates[0].device.address)
        return candidates[0]

    @asynccontextmanager
    async def open_session(
        self,
        address: str,
        profile: SensorProfile | None = None,
    ) -> AsyncIterator[DeviceSession]:
        """Connect, build a session, and keep notifications off outside the block."""
        settings = profile.transport if profile else TransportSettings()
        transport = await self._connector(address, timeout_s=settings.connect_timeout_s)
        try:
            session = await DeviceSession.discover(
                transport,
                profile.aggregates if profile else (),
                poll_interval_s=settings.poll_interval_s,
            )
            LOGGER.info("Supported features on %s: %s", address, describe_mask(session.capabilities))
            await session.disable_all_notifications()
            try:
                yield session
            except BaseException:
                try:
                    await session.disable_all_notifications()
                except BlueStError as exc:
                    LOGGER.warning("Notification teardown on %s failed: %s", address, exc)
                raise
            await session.disable_all_notifications()
        finally:
            await transport.disconnect()

    async def read_register_map(
        self,
        session: DeviceSession,
        profile: SensorProfile | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> dict[str, int]:
        settings = profile.transport if profile else TransportSettings()
        return await load_registers(
            session.registers,
            WESU_REGISTER_MAP,
            cancel_event=cancel_event,
            timeout_s=settings.register_timeout_s,
        )

    async def apply_profile(
        self,
        session: DeviceSession,
        profile: SensorProfile,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[str]:
        """Write the profile's register values and arm its notifications."""
        written: list[str] = []
        if profile.register_values:
            written = await save_registers(
                session.registers,
                profile.register_values,
                WESU_REGISTER_MAP,
                persistence=RegisterPersistence(profile.register_persistence),
                cancel_event=cancel_event,
                timeout_s=profile.transport.register_timeout_s,
            )
            LOGGER.info("Applied registers from profile %s: %s", profile.id, ", ".join(written))
        if profile.notifications:
            await session.enable_notifications(profile.notifications)
        return written
