"""Configuration register access over the single register-access characteristic.

Request frame::

    +---------+-------+----------+------------+------------------+
    | Control | Index | Reserved | Word count | Data (writes)    |
    | 1 byte  | 1     | 0x00     | 1 byte     | 2 * words bytes  |
    +---------+-------+----------+------------+------------------+

Response frame::

    +---------+-----+------------+-----+------------------+
    | Control | --  | Error code | --  | Data (reads)     |
    +---------+-----+------------+-----+------------------+

A request is written with acknowledgement, then the characteristic is read
back until the device clears PendingExec or sets Error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, IntFlag

from bluest.core.errors import (
    ArgumentError,
    FormatError,
    OperationCancelledError,
    RegisterAccessError,
    TruncatedFrameError,
)
from bluest.transports.base import GattTransport

_HEADER_SIZE = 4
_MAX_WIDTH = 0xFF * 2
LOGGER = logging.getLogger(__name__)


class RegisterAccessControl(IntFlag):
    NONE = 0
    ACK_REQUIRED = 1 << 3
    ERROR = 1 << 4
    WRITE = 1 << 5
    PERSISTENT = 1 << 6
    PENDING_EXEC = 1 << 7


class RegisterPersistence(Enum):
    SESSION = "session"
    PERSISTENT = "persistent"


class RegisterAccessState(Enum):
    IDLE = "idle"
    REQUEST_SENT = "request_sent"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RegisterDescriptor:
    name: str
    index: int
    width: int = 2
    writable: bool = True
    persistence: RegisterPersistence = RegisterPersistence.PERSISTENT


WESU_REGISTER_MAP: tuple[RegisterDescriptor, ...] = (
    RegisterDescriptor("firmware_version", 0x00, writable=False),
    RegisterDescriptor("timer_frequency", 0x21),
    RegisterDescriptor("accelerometer_full_scale", 0x74),
    RegisterDescriptor("accelerometer_output_data_rate", 0x75),
    RegisterDescriptor("gyro_full_scale", 0x76),
    RegisterDescriptor("gyro_output_data_rate", 0x77),
    RegisterDescriptor("magnetometer_full_scale", 0x78),
    RegisterDescriptor("magnetometer_output_data_rate", 0x79),
)


def build_request(
    index: int,
    persistence: RegisterPersistence,
    width: int,
    data: bytes = b"",
    *,
    write: bool = False,
) -> bytes:
    _check_index(index)
    _check_width(width)
    control = RegisterAccessControl.PENDING_EXEC | RegisterAccessControl.ACK_REQUIRED
    if write:
        control |= RegisterAccessControl.WRITE
    if persistence is RegisterPersistence.PERSISTENT:
        control |= RegisterAccessControl.PERSISTENT
    return bytes([int(control), index, 0x00, width // 2]) + data


def _check_index(index: int) -> None:
    if not 0 <= index <= 0xFF:
        raise ArgumentError(f"Register index must fit in one byte, got {index}")


def _check_width(width: int) -> None:
    if width % 2 != 0:
        raise ArgumentError(f"Register width must be a multiple of 2 bytes, got {width}")
    if not 2 <= width <= _MAX_WIDTH:
        raise ArgumentError(f"Register width must be between 2 and {_MAX_WIDTH} bytes, got {width}")


class RegisterAccessProtocol:
    """Request/poll state machine bound to one register-access characteristic.

    One transaction is in flight at a time; concurrent callers queue on an
    internal lock.
    """

    def __init__(
        self,
        transport: GattTransport,
        handle: int,
        *,
        poll_interval_s: float = 0.0,
    ) -> None:
        self._transport = transport
        self._handle = handle
        self._poll_interval_s = poll_interval_s
        self._lock = asyncio.Lock()
        self.state = RegisterAccessState.IDLE

    @property
    def handle(self) -> int:
        return self._handle

    async def read_register(
        self,
        index: int,
        persistence: RegisterPersistence = RegisterPersistence.SESSION,
        width: int = 2,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> bytes:
        request = build_request(index, persistence, width)
        async with self._lock:
            response = await self._transact(index, request, cancel_event, timeout_s)
        value = response[_HEADER_SIZE:]
        if len(value) < width:
            raise TruncatedFrameError(
                f"Register 0x{index:02X} returned {len(value)} bytes, expected {width}"
            )
        return value[-width:]

    async def write_register(
        self,
        index: int,
        persistence: RegisterPersistence,
        data: bytes,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> None:
        request = build_request(index, persistence, len(data), bytes(data), write=True)
        async with self._lock:
            await self._transact(index, request, cancel_event, timeout_s)

    async def _transact(
        self,
        index: int,
        request: bytes,
        cancel_event: asyncio.Event | None,
        timeout_s: float | None,
    ) -> bytes:
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        self.state = RegisterAccessState.REQUEST_SENT
        try:
            LOGGER.debug("Register request %s", request.hex())
            await self._transport.write(self._handle, request, response=True)

            self.state = RegisterAccessState.POLLING
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(f"Access to register 0x{index:02X} was cancelled")
                if deadline is not None and time.monotonic() >= deadline:
                    raise OperationCancelledError(
                        f"Access to register 0x{index:02X} timed out after {timeout_s}s"
                    )

                response = await self._transport.read(self._handle)
                LOGGER.debug("Register response %s", response.hex())
                if len(response) < _HEADER_SIZE:
                    raise FormatError(
                        f"Register response has {len(response)} bytes, header needs {_HEADER_SIZE}"
                    )
                control = RegisterAccessControl(response[0])
                if control & RegisterAccessControl.ERROR:
                    raise RegisterAccessError(index, response[2])
                if control & RegisterAccessControl.PENDING_EXEC:
                    await asyncio.sleep(self._poll_interval_s)
                    continue

                self.state = RegisterAccessState.DONE
                return response
        except BaseException:
            self.state = RegisterAccessState.FAILED
            raise


async def load_registers(
    protocol: RegisterAccessProtocol,
    table: tuple[RegisterDescriptor, ...] = WESU_REGISTER_MAP,
    **options: object,
) -> dict[str, int]:
    """Read every register in ``table`` order and return ``{name: value}``."""
    values: dict[str, int] = {}
    for descriptor in table:
        raw = await protocol.read_register(
            descriptor.index, descriptor.persistence, descriptor.width, **options
        )
        values[descriptor.name] = int.from_bytes(raw, "little")
    return values


async def save_registers(
    protocol: RegisterAccessProtocol,
    values: Mapping[str, int],
    table: tuple[RegisterDescriptor, ...] = WESU_REGISTER_MAP,
    *,
    persistence: RegisterPersistence | None = None,
    **options: object,
) -> list[str]:
    """Write each writable register present in ``values``; return the names written.

    Read-only registers in ``values`` are skipped so a mapping returned by
    :func:`load_registers` can be edited and saved back as a whole.
    """
    by_name = {descriptor.name: descriptor for descriptor in table}
    unknown = sorted(set(values) - set(by_name))
    if unknown:
        raise ArgumentError(f"Unknown registers: {', '.join(unknown)}")

    written: list[str] = []
    for descriptor in table:
        if descriptor.name not in values:
            continue
        if not descriptor.writable:
            LOGGER.debug("Skipping read-only register %s", descriptor.name)
            continue
        value = values[descriptor.name]
        try:
            data = int(value).to_bytes(descriptor.width, "little")
        except OverflowError as exc:
            raise ArgumentError(
                f"Value {value} does not fit register {descriptor.name} ({descriptor.width} bytes)"
            ) from exc
        await protocol.write_register(
            descriptor.index, persistence or descriptor.persistence, data, **options
        )
        written.append(descriptor.name)
    return written
