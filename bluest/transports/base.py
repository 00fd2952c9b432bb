"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from bluest.core.model import DiscoveredCharacteristic

NotificationCallback = Callable[[int, datetime, bytes], None]


class GattTransport(Protocol):
    async def characteristics(self) -> list[DiscoveredCharacteristic]:
        """Enumerate the characteristics exposed by the connected device."""

    async def write(self, handle: int, data: bytes, *, response: bool = True) -> None:
        """Write a characteristic value, acknowledged when ``response`` is set."""

    async def read(self, handle: int) -> bytes:
        """Read a characteristic value from the device, bypassing any cache."""

    def can_notify(self, handle: int) -> bool:
        """Report whether a characteristic supports notifications."""

    async def start_notify(self, handle: int, callback: NotificationCallback) -> None:
        """Deliver notifications as ``callback(handle, received_at, payload)``."""

    async def stop_notify(self, handle: int) -> None:
        """Stop notification delivery for a characteristic."""

    async def disconnect(self) -> None:
        """Close the connection to the device."""
