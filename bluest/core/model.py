"""Core data models used across codec, session, loader, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bluest.core.frames import Payload


@dataclass(frozen=True)
class AdvertisementRecord:
    protocol_version: int
    device_id: int
    feature_mask: int
    device_mac: bytes | None = None

    @property
    def mac_address(self) -> str | None:
        if self.device_mac is None:
            return None
        return ":".join(f"{b:02X}" for b in self.device_mac)


@dataclass(frozen=True)
class DiscoveredCharacteristic:
    """A GATT characteristic as reported by the transport."""

    uuid: str
    handle: int
    properties: tuple[str, ...] = ()

    @property
    def can_notify(self) -> bool:
        return "notify" in self.properties


@dataclass(frozen=True)
class CharacteristicIdentity:
    handle: int
    uuid: str
    feature_mask: int

    @property
    def is_aggregate(self) -> bool:
        return bin(self.feature_mask).count("1") >= 2


@dataclass(frozen=True)
class AggregateLayout:
    """Features delivered together in one frame, in decode order."""

    features: tuple[int, ...]

    @classmethod
    def of(cls, *features: int) -> AggregateLayout:
        return cls(features=tuple(int(f) for f in features))

    @property
    def mask(self) -> int:
        mask = 0
        for feature in self.features:
            mask |= feature
        return mask


@dataclass(frozen=True)
class FeatureFrame:
    characteristic: CharacteristicIdentity
    received_at: datetime
    timestamp: int
    payloads: tuple[Payload, ...]

    @property
    def feature_mask(self) -> int:
        return self.characteristic.feature_mask

    @property
    def payload(self) -> Payload:
        return self.payloads[0]


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str
    advertisement: AdvertisementRecord
    rssi: int | None = None


@dataclass(frozen=True)
class ProfileMatch:
    device_ids: tuple[int, ...] = ()
    name_contains: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransportSettings:
    connect_timeout_s: float = 10.0
    poll_interval_s: float = 0.0
    register_timeout_s: float | None = 10.0


@dataclass(frozen=True)
class SensorProfile:
    id: str
    name: str
    match: ProfileMatch
    aggregates: tuple[AggregateLayout, ...] = ()
    notifications: int = 0
    register_persistence: str = "persistent"
    register_values: dict[str, int] = field(default_factory=dict)
    transport: TransportSettings = field(default_factory=TransportSettings)


@dataclass(frozen=True)
class ResolvedTarget:
    device: DetectedDevice
    profile: SensorProfile
