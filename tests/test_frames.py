from __future__ import annotations

import struct

import pytest

from bluest.core.errors import TruncatedFrameError, UnsupportedError
from bluest.core.features import FeatureMask
from bluest.core.frames import (
    BatteryPayload,
    ByteCursor,
    MotionAxesPayload,
    decode_aggregate,
    decode_single,
    payload_type_for,
)


def test_payload_widths() -> None:
    assert BatteryPayload.WIDTH == 7
    assert MotionAxesPayload.WIDTH == 6


def test_decode_battery_frame() -> None:
    data = struct.pack("<HhhhB", 0x1234, 875, 3900, -120, 0x02)
    cursor = ByteCursor(data)
    timestamp, payload = decode_single(cursor, BatteryPayload)
    assert timestamp == 0x1234
    assert payload == BatteryPayload(level=875, voltage=3900, current=-120, status=2)
    assert payload.level_ratio == pytest.approx(0.875)
    assert cursor.remaining == 0


def test_decode_single_advances_exact_width() -> None:
    data = struct.pack("<Hhhh", 7, 1, -2, 3) + b"\xaa\xbb"
    cursor = ByteCursor(data)
    timestamp, payload = decode_single(cursor, MotionAxesPayload)
    assert timestamp == 7
    assert payload == MotionAxesPayload(x=1, y=-2, z=3)
    assert cursor.offset == 8
    assert cursor.remaining == 2


def test_decode_aggregate_keeps_declared_order() -> None:
    data = struct.pack("<H9h", 500, 1, 2, 3, 10, 20, 30, -100, -200, -300)
    timestamp, payloads = decode_aggregate(
        ByteCursor(data), [MotionAxesPayload, MotionAxesPayload, MotionAxesPayload]
    )
    assert timestamp == 500
    assert payloads == [
        MotionAxesPayload(1, 2, 3),
        MotionAxesPayload(10, 20, 30),
        MotionAxesPayload(-100, -200, -300),
    ]


def test_decode_aggregate_mixed_types() -> None:
    data = struct.pack("<HhhhBhhh", 1, 1000, 4100, 0, 1, 4, 5, 6)
    _, payloads = decode_aggregate(ByteCursor(data), [BatteryPayload, MotionAxesPayload])
    assert isinstance(payloads[0], BatteryPayload)
    assert payloads[1] == MotionAxesPayload(4, 5, 6)


def test_short_payload_is_truncated_not_partial() -> None:
    cursor = ByteCursor(struct.pack("<Hhh", 1, 2, 3))
    with pytest.raises(TruncatedFrameError):
        decode_single(cursor, MotionAxesPayload)


def test_missing_timestamp_is_truncated() -> None:
    with pytest.raises(TruncatedFrameError):
        decode_single(ByteCursor(b"\x01"), BatteryPayload)


def test_aggregate_short_second_payload() -> None:
    data = struct.pack("<H3h", 1, 1, 2, 3) + b"\x01\x02\x03"
    with pytest.raises(TruncatedFrameError):
        decode_aggregate(ByteCursor(data), [MotionAxesPayload, MotionAxesPayload])


def test_payload_type_lookup() -> None:
    assert payload_type_for(FeatureMask.BATTERY) is BatteryPayload
    assert payload_type_for(FeatureMask.MAG) is MotionAxesPayload
    with pytest.raises(UnsupportedError):
        payload_type_for(FeatureMask.TEMPERATURE)
