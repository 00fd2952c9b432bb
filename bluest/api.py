"""Stable public API for building tooling on top of bluest.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from bluest.core.errors import (
    ArgumentError,
    BlueStError,
    ConfigurationError,
    DeviceSelectionError,
    FormatError,
    NotificationError,
    OperationCancelledError,
    ProfileLoadError,
    ProfileValidationError,
    RecordBoundsError,
    RegisterAccessError,
    TransportConnectError,
    TransportError,
    TransportUnreachableError,
    TruncatedFrameError,
    UnsupportedError,
)
from bluest.core.features import (
    DeviceId,
    FeatureMask,
    describe_mask,
    feature_characteristic_uuid,
    feature_mask_from_uuid,
    parse_advertisement,
)
from bluest.core.frames import (
    BatteryPayload,
    ByteCursor,
    MotionAxesPayload,
    decode_aggregate,
    decode_single,
)
from bluest.core.model import (
    AdvertisementRecord,
    AggregateLayout,
    CharacteristicIdentity,
    DetectedDevice,
    DiscoveredCharacteristic,
    FeatureFrame,
    ResolvedTarget,
    SensorProfile,
)
from bluest.core.pipeline import NotificationPipeline
from bluest.core.registers import (
    WESU_REGISTER_MAP,
    RegisterAccessProtocol,
    RegisterDescriptor,
    RegisterPersistence,
    load_registers,
    save_registers,
)
from bluest.core.service import BlueStService, Connector, Scanner
from bluest.core.session import DeviceSession
from bluest.transports.base import GattTransport
from bluest.transports.ble_gatt import BleakGattTransport, scan_advertisements

__all__ = [
    "ArgumentError",
    "BlueStError",
    "ConfigurationError",
    "DeviceSelectionError",
    "FormatError",
    "NotificationError",
    "OperationCancelledError",
    "ProfileLoadError",
    "ProfileValidationError",
    "RecordBoundsError",
    "RegisterAccessError",
    "TransportConnectError",
    "TransportError",
    "TransportUnreachableError",
    "TruncatedFrameError",
    "UnsupportedError",
    "DeviceId",
    "FeatureMask",
    "describe_mask",
    "feature_characteristic_uuid",
    "feature_mask_from_uuid",
    "parse_advertisement",
    "BatteryPayload",
    "ByteCursor",
    "MotionAxesPayload",
    "decode_aggregate",
    "decode_single",
    "AdvertisementRecord",
    "AggregateLayout",
    "CharacteristicIdentity",
    "DetectedDevice",
    "DiscoveredCharacteristic",
    "FeatureFrame",
    "ResolvedTarget",
    "SensorProfile",
    "NotificationPipeline",
    "WESU_REGISTER_MAP",
    "RegisterAccessProtocol",
    "RegisterDescriptor",
    "RegisterPersistence",
    "load_registers",
    "save_registers",
    "BlueStService",
    "DeviceSession",
    "GattTransport",
    "BleakGattTransport",
    "scan_advertisements",
    "DeviceReport",
    "Client",
]


@dataclass(frozen=True)
class DeviceReport:
    """Capabilities discovered on a resolved target device."""

    target: ResolvedTarget
    capabilities: int
    register_access: bool

    @property
    def feature_names(self) -> tuple[str, ...]:
        names = describe_mask(self.capabilities)
        return tuple(names.split("|")) if self.capabilities else ()


class Client:
    """Public client for interacting with bluest core capabilities.

    A `Client` instance wraps profile loading, advertisement scanning and
    profile matching, and GATT sessions behind a stable API intended for
    third-party tools (dashboards/loggers/services/scripts).
    """

    def __init__(
        self,
        *,
        scanner: Scanner | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._service = BlueStService(scanner=scanner, connector=connector)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[SensorProfile]:
        return self._service.list_profiles()

    async def list_devices(self, timeout_s: float = 5.0) -> list[DetectedDevice]:
        return await self._service.list_devices(timeout_s)

    async def resolve_target(
        self,
        *,
        profile_id: str | None = None,
        device_hint: str | None = None,
        timeout_s: float = 5.0,
    ) -> ResolvedTarget:
        return await self._service.resolve_target(profile_id, device_hint, timeout_s=timeout_s)

    def open_session(self, target: ResolvedTarget) -> AbstractAsyncContextManager[DeviceSession]:
        return self._service.open_session(target.device.address, target.profile)

    async def describe_device(
        self,
        *,
        profile_id: str | None = None,
        device_hint: str | None = None,
        timeout_s: float = 5.0,
    ) -> DeviceReport:
        target = await self.resolve_target(
            profile_id=profile_id, device_hint=device_hint, timeout_s=timeout_s
        )
        async with self.open_session(target) as session:
            return DeviceReport(
                target=target,
                capabilities=session.capabilities,
                register_access=session.supports_register_access,
            )

    async def read_registers(
        self,
        *,
        profile_id: str | None = None,
        device_hint: str | None = None,
        timeout_s: float = 5.0,
    ) -> tuple[ResolvedTarget, dict[str, int]]:
        target = await self.resolve_target(
            profile_id=profile_id, device_hint=device_hint, timeout_s=timeout_s
        )
        async with self.open_session(target) as session:
            values = await self._service.read_register_map(session, target.profile)
        return target, values
