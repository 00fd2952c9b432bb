"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from bluest.core.errors import (
    BlueStError,
    TransportConnectError,
    TransportError,
    TransportUnreachableError,
)
from bluest.core.features import ADVERTISEMENT_FIELD_TYPE, parse_advertisement
from bluest.core.model import AdvertisementRecord, DetectedDevice, DiscoveredCharacteristic
from bluest.transports.base import NotificationCallback

_TRANSPORT_ERRORS = (BleakError, OSError, asyncio.TimeoutError)
LOGGER = logging.getLogger(__name__)


def advertisement_from_manufacturer_data(
    manufacturer_data: Mapping[int, bytes],
) -> AdvertisementRecord | None:
    """Rebuild and parse the BlueST record from bleak's manufacturer data.

    BlueST puts the protocol version and device id where a company identifier
    normally sits, so bleak reports them as the mapping key.
    """
    for company_id, payload in manufacturer_data.items():
        body = company_id.to_bytes(2, "little") + bytes(payload)
        record = bytes([len(body) + 1, ADVERTISEMENT_FIELD_TYPE]) + body
        try:
            return parse_advertisement(record)
        except BlueStError:
            continue
    return None


async def scan_advertisements(timeout_s: float = 5.0) -> list[DetectedDevice]:
    try:
        discovered = await BleakScanner.discover(timeout=timeout_s, return_adv=True)
    except _TRANSPORT_ERRORS as exc:
        raise TransportConnectError(f"BLE scan failed: {exc}") from exc

    devices: list[DetectedDevice] = []
    for device, advertisement in discovered.values():
        record = advertisement_from_manufacturer_data(advertisement.manufacturer_data)
        if record is None:
            continue
        devices.append(
            DetectedDevice(
                address=device.address.upper(),
                name=advertisement.local_name or device.name or "<unknown-device>",
                advertisement=record,
                rssi=advertisement.rssi,
            )
        )
    return sorted(devices, key=lambda d: d.address)


class BleakGattTransport:
    """GATT access to one connected device through a bleak client."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._notifying: set[int] = set()

    @classmethod
    async def connect(cls, address: str, *, timeout_s: float = 10.0) -> BleakGattTransport:
        LOGGER.info("Connecting to device %s", address)
        client = BleakClient(address, timeout=timeout_s)
        try:
            await client.connect()
        except _TRANSPORT_ERRORS as exc:
            raise TransportConnectError(f"BLE connect failed for {address}: {exc}") from exc
        if not client.is_connected:
            raise TransportConnectError(f"BLE connect failed for {address}")
        LOGGER.info("Connection successful")
        return cls(client)

    async def disconnect(self) -> None:
        self._notifying.clear()
        try:
            await self._client.disconnect()
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"BLE disconnect failed: {exc}") from exc
        LOGGER.debug("Disconnected from device.")

    async def __aenter__(self) -> BleakGattTransport:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def characteristics(self) -> list[DiscoveredCharacteristic]:
        self._require_connected()
        discovered: list[DiscoveredCharacteristic] = []
        for service in self._client.services:
            for characteristic in service.characteristics:
                discovered.append(
                    DiscoveredCharacteristic(
                        uuid=characteristic.uuid.lower(),
                        handle=characteristic.handle,
                        properties=tuple(characteristic.properties),
                    )
                )
        return discovered

    def can_notify(self, handle: int) -> bool:
        return "notify" in self._characteristic(handle).properties

    async def write(self, handle: int, data: bytes, *, response: bool = True) -> None:
        characteristic = self._characteristic(handle)
        try:
            await self._client.write_gatt_char(characteristic, data, response=response)
        except _TRANSPORT_ERRORS as exc:
            raise self._wrap("write", handle, exc) from exc

    async def read(self, handle: int) -> bytes:
        characteristic = self._characteristic(handle)
        try:
            return bytes(await self._client.read_gatt_char(characteristic))
        except _TRANSPORT_ERRORS as exc:
            raise self._wrap("read", handle, exc) from exc

    async def start_notify(self, handle: int, callback: NotificationCallback) -> None:
        characteristic = self._characteristic(handle)

        def _deliver(_sender: Any, data: bytearray) -> None:
            callback(handle, datetime.now(timezone.utc), bytes(data))

        try:
            await self._client.start_notify(characteristic, _deliver)
        except _TRANSPORT_ERRORS as exc:
            raise self._wrap("start notify", handle, exc) from exc
        self._notifying.add(handle)

    async def stop_notify(self, handle: int) -> None:
        if handle not in self._notifying:
            # Notification state does not survive reconnects without bonding.
            LOGGER.debug("Notifications not armed on handle %s; nothing to stop", handle)
            return
        characteristic = self._characteristic(handle)
        try:
            await self._client.stop_notify(characteristic)
        except _TRANSPORT_ERRORS as exc:
            raise self._wrap("stop notify", handle, exc) from exc
        self._notifying.discard(handle)

    def _characteristic(self, handle: int) -> Any:
        self._require_connected()
        characteristic = self._client.services.get_characteristic(handle)
        if characteristic is None:
            raise TransportError(f"Characteristic handle {handle} not found on device")
        return characteristic

    def _require_connected(self) -> None:
        if not self._client.is_connected:
            raise TransportUnreachableError("BLE device is not connected")

    def _wrap(self, action: str, handle: int, exc: BaseException) -> TransportError:
        if not self._client.is_connected:
            return TransportUnreachableError(f"BLE {action} failed on handle {handle}: device disconnected")
        return TransportError(f"BLE {action} failed on handle {handle}: {exc}")
