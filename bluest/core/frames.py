"""Telemetry frame decoding.

Frame layout::

    +-----------+-----------+-----------+-----+
    | Timestamp | Payload 0 | Payload 1 | ... |
    | 2 bytes   | fixed     | fixed     |     |
    +-----------+-----------+-----------+-----+

- Timestamp: little-endian uint16 device tick, shared by every payload
- Payloads: one for a single-feature characteristic, one per member feature
  (in caller-declared order) for an aggregate characteristic
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import ClassVar, Union

from bluest.core.errors import TruncatedFrameError, UnsupportedError
from bluest.core.features import FeatureMask, describe_mask

_TIMESTAMP = struct.Struct("<H")


class ByteCursor:
    """Forward-only reader over a telemetry buffer."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, size: int) -> bytes:
        if self.remaining < size:
            raise TruncatedFrameError(
                f"Need {size} bytes at offset {self.offset}, only {self.remaining} remain"
            )
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def unpack(self, layout: struct.Struct) -> tuple:
        return layout.unpack(self.take(layout.size))


@dataclass(frozen=True)
class BatteryPayload:
    level: int
    voltage: int
    current: int
    status: int

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<hhhB")
    WIDTH: ClassVar[int] = LAYOUT.size

    @property
    def level_ratio(self) -> float:
        return self.level / 1000.0

    @classmethod
    def decode(cls, cursor: ByteCursor) -> BatteryPayload:
        level, voltage, current, status = cursor.unpack(cls.LAYOUT)
        return cls(level=level, voltage=voltage, current=current, status=status)


@dataclass(frozen=True)
class MotionAxesPayload:
    x: int
    y: int
    z: int

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<hhh")
    WIDTH: ClassVar[int] = LAYOUT.size

    @classmethod
    def decode(cls, cursor: ByteCursor) -> MotionAxesPayload:
        x, y, z = cursor.unpack(cls.LAYOUT)
        return cls(x=x, y=y, z=z)


Payload = Union[BatteryPayload, MotionAxesPayload]
PayloadType = Union[type[BatteryPayload], type[MotionAxesPayload]]

PAYLOAD_TYPES: dict[int, PayloadType] = {
    FeatureMask.BATTERY: BatteryPayload,
    FeatureMask.ACC: MotionAxesPayload,
    FeatureMask.GYRO: MotionAxesPayload,
    FeatureMask.MAG: MotionAxesPayload,
}


def payload_type_for(feature: int) -> PayloadType:
    payload_type = PAYLOAD_TYPES.get(feature)
    if payload_type is None:
        raise UnsupportedError(f"No payload decoder for feature {describe_mask(feature)}")
    return payload_type


def decode_single(cursor: ByteCursor, payload_type: PayloadType) -> tuple[int, Payload]:
    (timestamp,) = cursor.unpack(_TIMESTAMP)
    return timestamp, payload_type.decode(cursor)


def decode_aggregate(
    cursor: ByteCursor, payload_types: Sequence[PayloadType]
) -> tuple[int, list[Payload]]:
    (timestamp,) = cursor.unpack(_TIMESTAMP)
    return timestamp, [payload_type.decode(cursor) for payload_type in payload_types]
