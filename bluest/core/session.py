"""Device session: capabilities, notifications, and register access for one device."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from bluest.core.errors import (
    ArgumentError,
    BlueStError,
    ConfigurationError,
    NotificationError,
    TransportError,
    TransportUnreachableError,
    UnsupportedError,
)
from bluest.core.features import (
    REGISTER_ACCESS_UUID,
    SINGLE_FEATURE_BITS,
    bit_count,
    describe_mask,
    feature_mask_from_uuid,
    is_feature_characteristic,
)
from bluest.core.frames import (
    PAYLOAD_TYPES,
    ByteCursor,
    PayloadType,
    decode_aggregate,
    decode_single,
    payload_type_for,
)
from bluest.core.model import (
    AggregateLayout,
    CharacteristicIdentity,
    DiscoveredCharacteristic,
    FeatureFrame,
)
from bluest.core.registers import RegisterAccessProtocol, RegisterPersistence
from bluest.transports.base import GattTransport

FrameListener = Callable[[FeatureFrame], None]
LOGGER = logging.getLogger(__name__)


def _validate_aggregate(layout: AggregateLayout) -> tuple[PayloadType, ...]:
    mask = layout.mask
    if bit_count(mask) < 2:
        raise ArgumentError(
            f"Aggregate {describe_mask(mask)} is not an aggregate: it needs at least two features"
        )
    for feature in layout.features:
        if bit_count(feature) != 1:
            raise ArgumentError(
                f"Aggregate member {describe_mask(feature)} must be a single feature"
            )
    if len(layout.features) != bit_count(mask):
        raise ArgumentError(f"Aggregate {describe_mask(mask)} repeats a feature")
    try:
        return tuple(payload_type_for(feature) for feature in layout.features)
    except UnsupportedError as exc:
        raise ConfigurationError(f"Aggregate {describe_mask(mask)}: {exc}") from exc


class DeviceSession:
    """Feature characteristics and register access discovered on one device.

    Notification listeners run on the transport's delivery context, in the
    order they subscribed, and should return quickly.
    """

    def __init__(
        self,
        transport: GattTransport,
        characteristics: Iterable[DiscoveredCharacteristic],
        aggregates: Sequence[AggregateLayout] = (),
        *,
        poll_interval_s: float = 0.0,
    ) -> None:
        self._transport = transport
        aggregate_shapes = {layout.mask: _validate_aggregate(layout) for layout in aggregates}

        self._identities: list[CharacteristicIdentity] = []
        self._by_handle: dict[int, CharacteristicIdentity] = {}
        self._shapes: dict[int, tuple[PayloadType, ...]] = {}
        self._listeners: list[FrameListener] = []
        self._registers: RegisterAccessProtocol | None = None

        for characteristic in characteristics:
            if characteristic.uuid.lower() == REGISTER_ACCESS_UUID:
                self._registers = RegisterAccessProtocol(
                    transport, characteristic.handle, poll_interval_s=poll_interval_s
                )
                continue
            if not is_feature_characteristic(characteristic.uuid):
                LOGGER.debug("Ignoring characteristic %s", characteristic.uuid)
                continue

            mask = feature_mask_from_uuid(characteristic.uuid)
            if mask in aggregate_shapes:
                shape = aggregate_shapes[mask]
            elif bit_count(mask) == 1 and mask < (1 << SINGLE_FEATURE_BITS):
                payload_type = PAYLOAD_TYPES.get(mask)
                shape = (payload_type,) if payload_type is not None else ()
            else:
                LOGGER.debug("Ignoring unregistered feature characteristic %s", characteristic.uuid)
                continue

            identity = CharacteristicIdentity(
                handle=characteristic.handle,
                uuid=characteristic.uuid.lower(),
                feature_mask=mask,
            )
            self._identities.append(identity)
            self._by_handle[identity.handle] = identity
            self._shapes[identity.handle] = shape

        if not self._identities:
            raise ConfigurationError("Device exposes no BlueST feature characteristics")

        capabilities = 0
        for identity in self._identities:
            capabilities |= identity.feature_mask
        self.capabilities = capabilities
        LOGGER.info(
            "Session ready: features=%s register_access=%s",
            describe_mask(capabilities),
            self._registers is not None,
        )

    @classmethod
    async def discover(
        cls,
        transport: GattTransport,
        aggregates: Sequence[AggregateLayout] = (),
        **kwargs: float,
    ) -> DeviceSession:
        characteristics = await transport.characteristics()
        return cls(transport, characteristics, aggregates, **kwargs)

    @property
    def characteristics(self) -> tuple[CharacteristicIdentity, ...]:
        return tuple(self._identities)

    @property
    def supports_register_access(self) -> bool:
        return self._registers is not None

    @property
    def registers(self) -> RegisterAccessProtocol:
        if self._registers is None:
            raise UnsupportedError("Accessing configuration registers is not supported by this device")
        return self._registers

    async def read_register(
        self,
        index: int,
        persistence: RegisterPersistence = RegisterPersistence.SESSION,
        width: int = 2,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> bytes:
        return await self.registers.read_register(
            index, persistence, width, cancel_event=cancel_event, timeout_s=timeout_s
        )

    async def write_register(
        self,
        index: int,
        persistence: RegisterPersistence,
        data: bytes,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> None:
        await self.registers.write_register(
            index, persistence, data, cancel_event=cancel_event, timeout_s=timeout_s
        )

    def subscribe(self, listener: FrameListener) -> Callable[[], None]:
        """Register a frame listener; the returned callable removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def enable_notifications(self, target_mask: int) -> list[CharacteristicIdentity]:
        armed: list[CharacteristicIdentity] = []
        for identity in self._identities:
            if not identity.feature_mask & target_mask:
                continue
            try:
                if not self._transport.can_notify(identity.handle):
                    LOGGER.debug("Characteristic %s cannot notify; skipping", identity.uuid)
                    continue
                await self._transport.start_notify(identity.handle, self._handle_notification)
            except TransportError as exc:
                raise NotificationError(
                    f"Failed to enable notifications for {describe_mask(identity.feature_mask)}: {exc}",
                    (exc,),
                ) from exc
            armed.append(identity)
        return armed

    async def disable_all_notifications(self) -> None:
        errors: list[Exception] = []
        for identity in self._identities:
            try:
                await self._transport.stop_notify(identity.handle)
            except TransportUnreachableError as exc:
                LOGGER.warning("Device unreachable while disabling %s: %s", identity.uuid, exc)
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise NotificationError(
                f"Failed to disable notifications on {len(errors)} characteristic(s)",
                tuple(errors),
            ) from errors[0]

    def _handle_notification(self, handle: int, received_at: datetime, data: bytes) -> None:
        identity = self._by_handle.get(handle)
        if identity is None:
            LOGGER.debug("Notification for unknown handle %s", handle)
            return
        shape = self._shapes[handle]
        if not shape:
            LOGGER.debug("No decoder for %s; dropping notification", describe_mask(identity.feature_mask))
            return

        cursor = ByteCursor(data)
        try:
            if identity.is_aggregate:
                timestamp, payloads = decode_aggregate(cursor, shape)
            else:
                timestamp, payload = decode_single(cursor, shape[0])
                payloads = [payload]
        except BlueStError as exc:
            LOGGER.warning(
                "Notification for %s could not be decoded: %s",
                describe_mask(identity.feature_mask),
                exc,
            )
            return

        frame = FeatureFrame(
            characteristic=identity,
            received_at=received_at,
            timestamp=timestamp,
            payloads=tuple(payloads),
        )
        for listener in tuple(self._listeners):
            listener(frame)
