"""Feature bitmasks, characteristic UUIDs, and advertisement records.

A BlueST data characteristic carries its feature mask in the first UUID field::

    XXXXXXXX-0001-11e1-ac36-0002a5d5c51b

so deriving the UUID from a mask and reading the mask back out are exact
inverses for every 32-bit value.

Advertisement layout (manufacturer-specific AD structure)::

    +--------+------+---------+-----------+-----------+----------+
    | Length | Type | Version | Device ID | Mask (LE) | MAC      |
    | 1 byte | 0xFF | 0x01    | 1 byte    | 4 bytes   | 6 (opt.) |
    +--------+------+---------+-----------+-----------+----------+

The length byte counts everything after itself: 7 without MAC, 13 with MAC.
"""

from __future__ import annotations

import uuid
from enum import IntEnum, IntFlag

from bluest.core.errors import ArgumentError, FormatError, RecordBoundsError
from bluest.core.model import AdvertisementRecord

DATA_SERVICE_UUID = "00000000-0001-11e1-9ab4-0002a5d5c51b"
DEBUG_SERVICE_UUID = "00000000-000e-11e1-9ab4-0002a5d5c51b"
CONFIG_SERVICE_UUID = "00000000-000f-11e1-9ab4-0002a5d5c51b"
REGISTER_ACCESS_UUID = "00000001-000f-11e1-ac36-0002a5d5c51b"

FEATURE_UUID_SUFFIX = "-0001-11e1-ac36-0002a5d5c51b"

ADVERTISEMENT_FIELD_TYPE = 0xFF
PROTOCOL_VERSION = 0x01
_SHORT_RECORD_LENGTH = 0x07
_LONG_RECORD_LENGTH = 0x0D
_MAC_LENGTH = 6

# Single-feature characteristics occupy bits 0..30.
SINGLE_FEATURE_BITS = 31
_MASK_LIMIT = 0xFFFFFFFF


class FeatureMask(IntFlag):
    NONE = 0
    GESTURE = 1 << 2
    CARRY_POSITION = 1 << 3
    ACTIVITY = 1 << 4
    SENSOR_FUSION = 1 << 7
    SENSOR_FUSION_COMPACT = 1 << 8
    BATTERY = 1 << 17
    TEMPERATURE = 1 << 18
    HUMIDITY = 1 << 19
    PRESSURE = 1 << 20
    MAG = 1 << 21
    GYRO = 1 << 22
    ACC = 1 << 23
    LUX = 1 << 24
    PROXIMITY = 1 << 25
    MIC_LEVEL = 1 << 26


class DeviceId(IntEnum):
    GENERIC = 0x00
    STEVAL_WESU1 = 0x01
    GENERIC_NUCLEO = 0x80


_FEATURE_NAMES = {
    member.name.lower(): member for member in FeatureMask if member is not FeatureMask.NONE
}
_FEATURE_BY_BIT = {int(member): member for member in _FEATURE_NAMES.values()}


def feature_by_name(name: str) -> FeatureMask:
    try:
        return _FEATURE_NAMES[name.strip().lower()]
    except KeyError:
        known = ", ".join(sorted(_FEATURE_NAMES))
        raise ArgumentError(f"Unknown feature '{name}'. Known: {known}") from None


def bit_count(mask: int) -> int:
    return bin(mask).count("1")


def is_aggregate_mask(mask: int) -> bool:
    return bit_count(mask) >= 2


def single_features(mask: int) -> list[int]:
    """Split a mask into its single-bit components, lowest bit first."""
    return [1 << bit for bit in range(32) if mask & (1 << bit)]


def describe_mask(mask: int) -> str:
    names = []
    for bit in single_features(mask):
        known = _FEATURE_BY_BIT.get(bit)
        names.append(known.name if known is not None else f"BIT{bit.bit_length() - 1}")
    return "|".join(names) if names else "NONE"


def feature_characteristic_uuid(mask: int) -> str:
    mask = int(mask)
    if not 0 <= mask <= _MASK_LIMIT:
        raise ArgumentError(f"Feature mask 0x{mask:X} does not fit in 32 bits")
    return f"{mask:08x}{FEATURE_UUID_SUFFIX}"


def is_feature_characteristic(char_uuid: str) -> bool:
    try:
        normalized = str(uuid.UUID(char_uuid))
    except ValueError:
        return False
    return normalized.endswith(FEATURE_UUID_SUFFIX)


def feature_mask_from_uuid(char_uuid: str) -> int:
    try:
        parsed = uuid.UUID(char_uuid)
    except ValueError as exc:
        raise FormatError(f"'{char_uuid}' is not a UUID") from exc
    if not str(parsed).endswith(FEATURE_UUID_SUFFIX):
        raise FormatError(f"'{char_uuid}' is not a BlueST feature characteristic")
    return parsed.time_low


def parse_advertisement(data: bytes, offset: int = 0) -> AdvertisementRecord:
    """Parse one BlueST manufacturer-specific record starting at ``offset``."""
    if offset < 0:
        raise ArgumentError(f"offset must not be negative, got {offset}")
    if offset >= len(data):
        raise RecordBoundsError(f"offset {offset} is past the end of a {len(data)}-byte buffer")

    length = data[offset]
    if length not in (_SHORT_RECORD_LENGTH, _LONG_RECORD_LENGTH):
        raise FormatError(f"Invalid advertisement length field 0x{length:02X}")
    if offset + 1 + length > len(data):
        raise RecordBoundsError(
            f"Advertisement declares {length} bytes at offset {offset} "
            f"but the buffer holds {len(data)} bytes"
        )

    field_type = data[offset + 1]
    if field_type != ADVERTISEMENT_FIELD_TYPE:
        raise FormatError(f"Invalid advertisement field type 0x{field_type:02X}")

    version = data[offset + 2]
    if version != PROTOCOL_VERSION:
        raise FormatError(f"Unsupported protocol version 0x{version:02X}")

    device_id = data[offset + 3]
    mask = int.from_bytes(data[offset + 4 : offset + 8], "little")

    mac = None
    if length == _LONG_RECORD_LENGTH:
        mac = bytes(data[offset + 8 : offset + 8 + _MAC_LENGTH])

    return AdvertisementRecord(
        protocol_version=version,
        device_id=device_id,
        feature_mask=mask,
        device_mac=mac,
    )
