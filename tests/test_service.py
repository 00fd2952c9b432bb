from __future__ import annotations

import asyncio

import pytest

from bluest.core.errors import DeviceSelectionError, RegisterAccessError, TransportError
from bluest.core.features import REGISTER_ACCESS_UUID, FeatureMask, feature_characteristic_uuid
from bluest.core.model import AdvertisementRecord, DetectedDevice, DiscoveredCharacteristic
from bluest.core.service import BlueStService

MOTION_MASK = FeatureMask.ACC | FeatureMask.GYRO | FeatureMask.MAG
REGISTERS = 0x30


def _device(address: str, name: str, device_id: int = 0x01) -> DetectedDevice:
    return DetectedDevice(
        address=address,
        name=name,
        advertisement=AdvertisementRecord(
            protocol_version=1,
            device_id=device_id,
            feature_mask=FeatureMask.BATTERY | MOTION_MASK,
        ),
    )


class FakeSensorTransport:
    """A WeSU-like node with a register bank that answers on the first poll."""

    def __init__(self) -> None:
        self._characteristics = [
            DiscoveredCharacteristic(feature_characteristic_uuid(FeatureMask.BATTERY), 0x10, ("notify",)),
            DiscoveredCharacteristic(feature_characteristic_uuid(FeatureMask.ACC), 0x12, ("notify",)),
            DiscoveredCharacteristic(feature_characteristic_uuid(MOTION_MASK), 0x18, ("notify",)),
            DiscoveredCharacteristic(REGISTER_ACCESS_UUID, REGISTERS, ("read", "write")),
        ]
        self.registers: dict[int, int] = {0x00: 0x0102, 0x21: 133}
        self.requests: list[bytes] = []
        self.started: list[int] = []
        self.stopped: list[int] = []
        self.disconnected = False
        self.stop_error: Exception | None = None

    async def characteristics(self) -> list[DiscoveredCharacteristic]:
        return list(self._characteristics)

    def can_notify(self, handle: int) -> bool:
        return handle != REGISTERS

    async def start_notify(self, handle, callback) -> None:
        self.started.append(handle)

    async def stop_notify(self, handle: int) -> None:
        self.stopped.append(handle)
        if self.stop_error is not None:
            raise self.stop_error

    async def write(self, handle: int, data: bytes, *, response: bool = True) -> None:
        self.requests.append(data)
        if data[0] & 0x20:
            self.registers[data[1]] = int.from_bytes(data[4:], "little")

    async def read(self, handle: int) -> bytes:
        request = self.requests[-1]
        value = self.registers.get(request[1], 0)
        return bytes([request[0] & 0x7F, request[1], 0, request[3]]) + value.to_bytes(2, "little")

    async def disconnect(self) -> None:
        self.disconnected = True


class Harness:
    def __init__(self, devices: list[DetectedDevice]) -> None:
        self.devices = devices
        self.transport = FakeSensorTransport()
        self.connects: list[tuple[str, float]] = []
        self.scans: list[float] = []

    async def scanner(self, timeout_s: float) -> list[DetectedDevice]:
        self.scans.append(timeout_s)
        return list(self.devices)

    async def connector(self, address: str, *, timeout_s: float) -> FakeSensorTransport:
        self.connects.append((address, timeout_s))
        return self.transport

    def service(self) -> BlueStService:
        return BlueStService(scanner=self.scanner, connector=self.connector)


@pytest.fixture(autouse=True)
def _no_user_profiles(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def test_resolve_target_matches_profile_by_device_id() -> None:
    harness = Harness([_device("C0:00:00:00:00:01", "<unknown-device>")])
    service = harness.service()

    target = asyncio.run(service.resolve_target(timeout_s=2.0))

    assert target.device.address == "C0:00:00:00:00:01"
    assert target.profile.id == "steval_wesu1"
    assert harness.scans == [2.0]


def test_no_devices_found() -> None:
    service = Harness([]).service()

    with pytest.raises(DeviceSelectionError):
        asyncio.run(service.resolve_target())


def test_unknown_profile_rejected() -> None:
    service = Harness([_device("C0:00:00:00:00:01", "WeSU")]).service()

    with pytest.raises(DeviceSelectionError) as exc:
        asyncio.run(service.resolve_target("nope"))
    assert "Unknown profile 'nope'" in str(exc.value)


def test_unmatched_device_requires_profile() -> None:
    service = Harness([_device("C0:00:00:00:00:01", "Nucleo", device_id=0x80)]).service()

    with pytest.raises(DeviceSelectionError):
        asyncio.run(service.resolve_target())

    target = asyncio.run(service.resolve_target("steval_wesu1"))
    assert target.profile.id == "steval_wesu1"


def test_device_hint_filters_candidates() -> None:
    service = Harness(
        [
            _device("C0:00:00:00:00:01", "WeSU left"),
            _device("C0:00:00:00:00:02", "WeSU right"),
        ]
    ).service()

    assert asyncio.run(service.resolve_target()).device.address == "C0:00:00:00:00:01"
    assert asyncio.run(service.resolve_target(device_hint="right")).device.address == "C0:00:00:00:00:02"
    with pytest.raises(DeviceSelectionError):
        asyncio.run(service.resolve_target(device_hint="middle"))


def test_open_session_quiets_notifications_and_disconnects() -> None:
    harness = Harness([_device("C0:00:00:00:00:01", "WeSU")])
    service = harness.service()
    profile = service.profiles["steval_wesu1"]

    async def scenario() -> int:
        async with service.open_session("C0:00:00:00:00:01", profile) as session:
            assert harness.transport.stopped == [0x10, 0x12, 0x18]
            return session.capabilities

    capabilities = asyncio.run(scenario())

    assert capabilities == FeatureMask.BATTERY | MOTION_MASK
    assert harness.connects == [("C0:00:00:00:00:01", 10.0)]
    assert harness.transport.stopped == [0x10, 0x12, 0x18] * 2
    assert harness.transport.disconnected


def test_read_register_map() -> None:
    harness = Harness([_device("C0:00:00:00:00:01", "WeSU")])
    service = harness.service()

    async def scenario() -> dict[str, int]:
        async with service.open_session("C0:00:00:00:00:01") as session:
            return await service.read_register_map(session)

    values = asyncio.run(scenario())

    assert values["firmware_version"] == 0x0102
    assert values["timer_frequency"] == 133
    assert values["gyro_full_scale"] == 0
    assert len(values) == 8


def test_apply_profile_writes_registers_and_arms_notifications() -> None:
    harness = Harness([_device("C0:00:00:00:00:01", "WeSU")])
    service = harness.service()
    profile = service.profiles["steval_wesu1"]

    async def scenario() -> list[str]:
        async with service.open_session("C0:00:00:00:00:01", profile) as session:
            return await service.apply_profile(session, profile)

    written = asyncio.run(scenario())

    assert set(written) == set(profile.register_values)
    assert all(request[0] == 0xE8 for request in harness.transport.requests)
    assert harness.transport.registers[0x76] == 2000
    assert harness.transport.registers[0x79] == 80
    assert harness.transport.started == [0x10, 0x12, 0x18]


def test_body_error_survives_failed_teardown(caplog: pytest.LogCaptureFixture) -> None:
    harness = Harness([_device("C0:00:00:00:00:01", "WeSU")])
    service = harness.service()

    async def scenario() -> None:
        async with service.open_session("C0:00:00:00:00:01"):
            harness.transport.stop_error = TransportError("busy")
            raise RegisterAccessError(0x74, 0x05)

    with caplog.at_level("WARNING", logger="bluest.core.service"):
        with pytest.raises(RegisterAccessError):
            asyncio.run(scenario())

    assert harness.transport.disconnected
    assert "Notification teardown on C0:00:00:00:00:01 failed" in caplog.text
