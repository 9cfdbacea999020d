"""
Peripheral session: connect/disconnect lifecycle for one wireless sensor.

Key patterns:
- Protocol-based transport so the BLE stack can be swapped for a test double
- Result type for the expected connect failures
- A liveness flag so a disposed session never delivers stale callbacks
- One disconnection handler shared by explicit and remote disconnects
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Protocol

import structlog

from lungua.config import HEART_RATE_MEASUREMENT_UUID, HEART_RATE_SERVICE_UUID, DeviceProfile
from lungua.domain.errors import (
    DeviceRejected,
    LinkError,
    PayloadError,
    PeripheralError,
    PlatformUnsupported,
)
from lungua.domain.models import ConnectionStatus, ServiceInfo
from lungua.domain.payloads import PayloadParser
from lungua.services.events import EventSource
from lungua.services.result import Result

logger = structlog.get_logger(__name__)

UNKNOWN_DEVICE = "Unknown Device"


class PeripheralLink(Protocol):
    """An open session with a device (a GATT server connection)."""

    @property
    def is_connected(self) -> bool: ...

    async def get_services(self) -> list[ServiceInfo]: ...

    async def subscribe(self, characteristic_uuid: str, callback: Callable[[bytes], None]) -> None:
        """Start value-change notifications on a characteristic."""
        ...

    async def disconnect(self) -> None: ...


class DeviceHandle(Protocol):
    """A device picked by the user, not yet connected."""

    name: str | None

    async def connect(self, on_disconnect: Callable[[], None]) -> PeripheralLink: ...


class PeripheralTransport(Protocol):
    """Host wireless API: device selection restricted to a service."""

    def is_available(self) -> bool: ...

    async def request_device(self, service_uuid: str) -> DeviceHandle:
        """Raise DeviceRejected when selection is cancelled or nothing matches."""
        ...


class PeripheralSession:
    """
    Owns the lifecycle of one sensor device and forwards decoded samples.

    Decoded values are published on ``samples``; status transitions on
    ``status_changes``.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        transport: PeripheralTransport,
        parser: PayloadParser | None = None,
        error_reset_seconds: float = 3.0,
    ) -> None:
        self.profile = profile
        self.transport = transport
        self.parser = parser
        self.error_reset_seconds = error_reset_seconds

        self.status = ConnectionStatus.DISCONNECTED
        self.device_label: str | None = None
        self.discovered_services: frozenset[str] = frozenset()
        self.subscribed_characteristics: list[str] = []

        self.samples: EventSource[float] = EventSource(f"{profile.label}.samples")
        self.status_changes: EventSource[ConnectionStatus] = EventSource(f"{profile.label}.status")

        self._link: PeripheralLink | None = None
        self._connecting = False
        self._alive = True
        # Bumped by disconnect() so an in-flight connect knows it was abandoned
        self._generation = 0
        self._reset_handle: asyncio.TimerHandle | None = None
        self.logger = logger.bind(component="peripheral_session", device=profile.label)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    def _set_status(self, status: ConnectionStatus) -> None:
        if not self._alive or status is self.status:
            return
        self.status = status
        self.logger.info("status_changed", status=status.value)
        self.status_changes.publish(status)

    async def connect(self) -> Result[str, PeripheralError]:
        """
        Select, connect and subscribe.

        Returns the connected device label, or the PeripheralError that left
        the session in the Error status.
        """
        if not self._alive:
            raise RuntimeError("Peripheral session has been disposed")
        if self._connecting or self._link is not None:
            self.logger.warning("connect_ignored", status=self.status.value)
            return Result.err(LinkError(f"{self.profile.label} is already connecting or connected"))

        if not self.transport.is_available():
            self.logger.warning("wireless_api_unavailable")
            self._set_status(ConnectionStatus.ERROR)
            return Result.err(
                PlatformUnsupported("Wireless peripheral API is not available on this host")
            )

        self._cancel_reset()
        self._connecting = True
        generation = self._generation
        try:
            self._set_status(ConnectionStatus.CONNECTING)
            device = await self.transport.request_device(self.profile.primary_service)
            if self._superseded(generation):
                return await self._abandon_connect()

            self._link = await device.connect(self._handle_disconnected)
            if self._superseded(generation):
                return await self._abandon_connect()

            self.device_label = device.name or UNKNOWN_DEVICE
            self._set_status(ConnectionStatus.CONNECTED)

            services = await self._link.get_services()
            if self._superseded(generation):
                return await self._abandon_connect()
            self.discovered_services = frozenset(s.uuid for s in services)
            self.logger.info("services_discovered", services=sorted(self.discovered_services))

            await self._subscribe_targets(services)
            if self._superseded(generation):
                return await self._abandon_connect()
            return Result.ok(self.device_label)

        except Exception as e:
            if self._superseded(generation):
                return await self._abandon_connect()
            error = e if isinstance(e, PeripheralError) else LinkError(str(e) or type(e).__name__)
            return await self._fail(error)
        finally:
            self._connecting = False

    def _superseded(self, generation: int) -> bool:
        return not self._alive or generation != self._generation

    async def _abandon_connect(self) -> Result[str, PeripheralError]:
        """Drop a link opened after disconnect() or dispose() was called."""
        self.logger.info("connect_abandoned")
        await self._release_link()
        self._handle_disconnected()
        return Result.err(LinkError(f"{self.profile.label} was disconnected while connecting"))

    async def _subscribe_targets(self, services: list[ServiceInfo]) -> None:
        link = self._link
        for service in services:
            if service.uuid not in self.profile.service_uuids:
                continue

            characteristic = self.profile.characteristic_uuid
            if characteristic is None and service.uuid == HEART_RATE_SERVICE_UUID:
                characteristic = HEART_RATE_MEASUREMENT_UUID
            if characteristic is None or self.parser is None:
                continue
            if service.characteristics and characteristic not in service.characteristics:
                self.logger.warning(
                    "characteristic_missing", service=service.uuid, characteristic=characteristic
                )
                continue

            if link is None:
                return
            await link.subscribe(characteristic, self._on_payload)
            self.subscribed_characteristics.append(characteristic)
            self.logger.info("notifications_started", characteristic=characteristic)

    async def _fail(self, error: PeripheralError) -> Result[str, PeripheralError]:
        self.logger.error("connect_failed", error=str(error), error_type=type(error).__name__)
        await self._release_link()
        self.device_label = None
        self.discovered_services = frozenset()
        self.subscribed_characteristics = []
        self._set_status(ConnectionStatus.ERROR)
        if error.retryable and self._alive:
            loop = asyncio.get_running_loop()
            self._reset_handle = loop.call_later(self.error_reset_seconds, self._reset_after_error)
        return Result.err(error)

    def _reset_after_error(self) -> None:
        self._reset_handle = None
        if self.status is ConnectionStatus.ERROR:
            self._set_status(ConnectionStatus.DISCONNECTED)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _on_payload(self, payload: bytes) -> None:
        if not self._alive or self.parser is None:
            return
        try:
            value = self.parser(payload)
        except PayloadError as e:
            self.logger.warning("payload_dropped", error=str(e))
            return
        self.samples.publish(value)

    def _handle_disconnected(self) -> None:
        """Shared by explicit disconnect and remote link loss."""
        if not self._alive:
            return
        self._link = None
        self.device_label = None
        self.discovered_services = frozenset()
        self.subscribed_characteristics = []
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _release_link(self) -> None:
        link, self._link = self._link, None
        if link is not None and link.is_connected:
            try:
                await link.disconnect()
            except Exception as e:
                self.logger.warning("link_release_failed", error=str(e))

    async def disconnect(self) -> None:
        """Close the link if open and clear the session. Safe to call repeatedly.

        A connect still in flight is abandoned: it releases whatever link it
        opens and returns an error instead of reporting Connected.
        """
        self._generation += 1
        self._cancel_reset()
        await self._release_link()
        self._handle_disconnected()

    async def dispose(self) -> None:
        """Stop delivering callbacks and release the underlying link."""
        if not self._alive:
            return
        self._cancel_reset()
        await self.disconnect()
        self._alive = False
        self.samples.close()
        self.status_changes.close()
        self.logger.info("session_disposed")

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["PeripheralSession"]:
        """Async context manager that always disposes the session on exit."""
        try:
            yield self
        finally:
            await self.dispose()
