"""
BLE transport backed by bleak.

Maps the host wireless stack onto the PeripheralTransport protocol:
scan for a device advertising the requested service, connect a GATT client,
enumerate services and forward characteristic notifications as raw bytes.
"""

import os
import sys
from collections.abc import Callable

import structlog
from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from lungua.domain.errors import DeviceRejected, LinkError, PlatformUnsupported
from lungua.domain.models import ServiceInfo

logger = structlog.get_logger(__name__)

_DBUS_SYSTEM_SOCKET = "/run/dbus/system_bus_socket"


class BleakLink:
    """Connected GATT client."""

    def __init__(self, client: BleakClient) -> None:
        self._client = client

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    async def get_services(self) -> list[ServiceInfo]:
        return [
            ServiceInfo(
                uuid=service.uuid.lower(),
                characteristics=tuple(c.uuid.lower() for c in service.characteristics),
            )
            for service in self._client.services
        ]

    async def subscribe(self, characteristic_uuid: str, callback: Callable[[bytes], None]) -> None:
        def _forward(_sender: object, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await self._client.start_notify(characteristic_uuid, _forward)
        except BleakError as e:
            raise LinkError(f"Could not start notifications on {characteristic_uuid}: {e}") from e

    async def disconnect(self) -> None:
        await self._client.disconnect()


class BleakDeviceHandle:
    """Device found during the scan."""

    def __init__(self, device: BLEDevice, connect_timeout: float) -> None:
        self.device = device
        self.name = device.name
        self.connect_timeout = connect_timeout

    async def connect(self, on_disconnect: Callable[[], None]) -> BleakLink:
        client = BleakClient(
            self.device,
            disconnected_callback=lambda _client: on_disconnect(),
            timeout=self.connect_timeout,
        )
        try:
            await client.connect()
        except (BleakError, TimeoutError, OSError) as e:
            raise LinkError(f"GATT connection to {self.device.address} failed: {e}") from e
        logger.info("ble_connected", address=self.device.address, name=self.name)
        return BleakLink(client)


class BleakTransport:
    """PeripheralTransport for the local Bluetooth adapter."""

    def __init__(self, scan_timeout_seconds: float = 10.0) -> None:
        self.scan_timeout_seconds = scan_timeout_seconds

    def is_available(self) -> bool:
        if sys.platform in ("darwin", "win32"):
            return True
        if sys.platform.startswith("linux"):
            # BlueZ is reached over the system D-Bus
            return bool(os.getenv("DBUS_SYSTEM_BUS_ADDRESS")) or os.path.exists(
                _DBUS_SYSTEM_SOCKET
            )
        return False

    async def request_device(self, service_uuid: str) -> BleakDeviceHandle:
        target = service_uuid.lower()

        def _matches(_device: BLEDevice, adv: AdvertisementData) -> bool:
            return target in (uuid.lower() for uuid in adv.service_uuids)

        try:
            device = await BleakScanner.find_device_by_filter(
                _matches, timeout=self.scan_timeout_seconds
            )
        except (FileNotFoundError, PermissionError) as e:
            raise PlatformUnsupported(f"Bluetooth stack unavailable: {e}") from e
        except BleakError as e:
            raise LinkError(f"Scan failed: {e}") from e

        if device is None:
            raise DeviceRejected(f"No device advertising {service_uuid} was selected")
        logger.info("ble_device_selected", address=device.address, name=device.name)
        return BleakDeviceHandle(device, connect_timeout=self.scan_timeout_seconds)
