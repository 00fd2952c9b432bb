from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

from bluest.core.errors import TransportError, TransportUnreachableError
from bluest.core.features import FeatureMask
from bluest.core.model import AggregateLayout
from bluest.core.session import DeviceSession
from bluest.transports.ble_gatt import BleakGattTransport, advertisement_from_manufacturer_data

MASK = FeatureMask.BATTERY | FeatureMask.ACC


class FakeCharacteristic:
    def __init__(self, uuid: str, handle: int, properties: list[str]) -> None:
        self.uuid = uuid
        self.handle = handle
        self.properties = properties


class FakeServices:
    def __init__(self, characteristics: list[FakeCharacteristic]) -> None:
        self.characteristics = characteristics

    def __iter__(self):
        return iter([SimpleNamespace(characteristics=self.characteristics)])

    def get_characteristic(self, handle: int):
        for characteristic in self.characteristics:
            if characteristic.handle == handle:
                return characteristic
        return None


class FakeClient:
    def __init__(self) -> None:
        self.is_connected = True
        self.services = FakeServices(
            [
                FakeCharacteristic("00820000-0001-11E1-AC36-0002A5D5C51B", 0x10, ["read", "notify"]),
                FakeCharacteristic("00000001-000f-11e1-ac36-0002a5d5c51b", 0x20, ["read", "write"]),
            ]
        )
        self.read_error: Exception | None = None
        self.descriptor_writes: list[tuple[int, bytes]] = []
        self.stopped: list[int] = []
        self.notify_handlers: dict[int, object] = {}

    async def read_gatt_char(self, characteristic):
        if self.read_error is not None:
            raise self.read_error
        return bytearray(b"\x08\x00\x00\x01\x01\x00")

    async def write_gatt_char(self, characteristic, data, response=True):
        return None

    async def start_notify(self, characteristic, handler):
        self.notify_handlers[characteristic.handle] = handler

    async def stop_notify(self, characteristic):
        self.stopped.append(characteristic.handle)

    async def write_gatt_descriptor(self, handle, data):
        self.descriptor_writes.append((handle, data))
        raise BleakError("[org.bluez.Error.NotPermitted] Write not permitted")

    async def disconnect(self):
        self.is_connected = False


def test_manufacturer_data_is_rebuilt_into_advertisement() -> None:
    payload = int(MASK).to_bytes(4, "little") + bytes.fromhex("C0123456789A")

    record = advertisement_from_manufacturer_data({0x0101: payload})

    assert record is not None
    assert record.device_id == 0x01
    assert record.feature_mask == MASK
    assert record.mac_address == "C0:12:34:56:78:9A"


def test_foreign_manufacturer_data_is_skipped() -> None:
    blue_st = int(MASK).to_bytes(4, "little")

    assert advertisement_from_manufacturer_data({0x004C: b"\x02\x15"}) is None
    record = advertisement_from_manufacturer_data({0x004C: b"\x02\x15", 0x8001: blue_st})
    assert record is not None
    assert record.device_id == 0x80


def test_characteristics_are_listed_lowercase() -> None:
    transport = BleakGattTransport(FakeClient())

    discovered = asyncio.run(transport.characteristics())

    assert [c.uuid for c in discovered] == [
        "00820000-0001-11e1-ac36-0002a5d5c51b",
        "00000001-000f-11e1-ac36-0002a5d5c51b",
    ]
    assert transport.can_notify(0x10)
    assert not transport.can_notify(0x20)


def test_read_error_maps_to_transport_error() -> None:
    client = FakeClient()
    client.read_error = BleakError("gatt busy")
    transport = BleakGattTransport(client)

    with pytest.raises(TransportError) as exc:
        asyncio.run(transport.read(0x20))
    assert not isinstance(exc.value, TransportUnreachableError)


def test_read_after_drop_maps_to_unreachable() -> None:
    client = FakeClient()
    transport = BleakGattTransport(client)
    client.is_connected = False

    with pytest.raises(TransportUnreachableError):
        asyncio.run(transport.read(0x20))


def test_unknown_handle_is_transport_error() -> None:
    transport = BleakGattTransport(FakeClient())

    with pytest.raises(TransportError):
        asyncio.run(transport.read(0x99))


def test_notification_callback_receives_handle_and_bytes() -> None:
    client = FakeClient()
    transport = BleakGattTransport(client)
    received: list[tuple[int, bytes]] = []

    asyncio.run(transport.start_notify(0x10, lambda handle, at, data: received.append((handle, data))))
    client.notify_handlers[0x10](object(), bytearray(b"\x01\x02"))

    assert received == [(0x10, b"\x01\x02")]


def test_stop_notify_is_noop_when_not_started_here() -> None:
    client = FakeClient()
    transport = BleakGattTransport(client)

    asyncio.run(transport.stop_notify(0x10))

    assert client.stopped == []
    assert client.descriptor_writes == []


def test_fresh_session_teardown_makes_no_gatt_calls() -> None:
    client = FakeClient()
    transport = BleakGattTransport(client)

    async def scenario() -> None:
        session = await DeviceSession.discover(
            transport, [AggregateLayout.of(FeatureMask.BATTERY, FeatureMask.ACC)]
        )
        await session.disable_all_notifications()

    asyncio.run(scenario())

    assert client.stopped == []
    assert client.descriptor_writes == []


def test_stop_notify_uses_client_for_started_handles() -> None:
    client = FakeClient()
    transport = BleakGattTransport(client)

    async def scenario() -> None:
        await transport.start_notify(0x10, lambda *args: None)
        await transport.stop_notify(0x10)

    asyncio.run(scenario())

    assert client.stopped == [0x10]
    assert client.descriptor_writes == []
