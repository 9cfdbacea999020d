"""Shared test doubles for the peripheral and escalation collaborators."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from lungua.config import (
    AppConfig,
    EscalationConfig,
    HEART_RATE_MEASUREMENT_UUID,
    HEART_RATE_SERVICE_UUID,
    INHALER_AIRFLOW_UUID,
    INHALER_SERVICE_UUID,
    PeripheralConfig,
    TelemetryConfig,
)
from lungua.domain.errors import BackendUnreachable, LocationDenied
from lungua.domain.models import AnomalyEvent, CaregiverContact, Location, ServiceInfo
from lungua.services.alerts import AlertSound
from lungua.services.context import AppContext
from lungua.services.result import Result


class FakeLink:
    """In-memory link; tests push notifications with ``notify``."""

    def __init__(self, services: list[ServiceInfo]) -> None:
        self.services = services
        self.callbacks: dict[str, Callable[[bytes], None]] = {}
        self.on_disconnect: Callable[[], None] | None = None
        self.disconnect_calls = 0
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def get_services(self) -> list[ServiceInfo]:
        return self.services

    async def subscribe(self, characteristic_uuid: str, callback: Callable[[bytes], None]) -> None:
        self.callbacks[characteristic_uuid] = callback

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    def notify(self, characteristic_uuid: str, payload: bytes) -> None:
        self.callbacks[characteristic_uuid](payload)

    def drop(self) -> None:
        """Simulate the remote side going away."""
        self._connected = False
        assert self.on_disconnect is not None
        self.on_disconnect()


class FakeDevice:
    def __init__(self, name: str | None, link: FakeLink, connect_error: Exception | None = None):
        self.name = name
        self.link = link
        self.connect_error = connect_error

    async def connect(self, on_disconnect: Callable[[], None]) -> FakeLink:
        if self.connect_error is not None:
            raise self.connect_error
        self.link.on_disconnect = on_disconnect
        return self.link


class FakeTransport:
    """Hands out preconfigured devices keyed by service UUID."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.devices: dict[str, FakeDevice] = {}
        self.errors: dict[str, Exception] = {}
        self.requests: list[str] = []

    def is_available(self) -> bool:
        return self.available

    async def request_device(self, service_uuid: str) -> FakeDevice:
        self.requests.append(service_uuid)
        if service_uuid in self.errors:
            raise self.errors[service_uuid]
        return self.devices[service_uuid]

    def add_smartwatch(self, name: str | None = "Pulse Watch") -> FakeLink:
        link = FakeLink(
            [ServiceInfo(uuid=HEART_RATE_SERVICE_UUID, characteristics=(HEART_RATE_MEASUREMENT_UUID,))]
        )
        self.devices[HEART_RATE_SERVICE_UUID] = FakeDevice(name, link)
        return link

    def add_inhaler(self, name: str | None = "Smart Inhaler 2") -> FakeLink:
        link = FakeLink(
            [ServiceInfo(uuid=INHALER_SERVICE_UUID, characteristics=(INHALER_AIRFLOW_UUID,))]
        )
        self.devices[INHALER_SERVICE_UUID] = FakeDevice(name, link)
        return link


class RecordingAlerter:
    def __init__(self) -> None:
        self.alerts: list[tuple[Location, CaregiverContact]] = []

    async def send_alert(self, location: Location, contact: CaregiverContact) -> None:
        self.alerts.append((location, contact))


class FixedLocations:
    def __init__(self, location: Location | None = None) -> None:
        self.location = location
        self.calls = 0

    async def current_position(self) -> Location:
        self.calls += 1
        if self.location is None:
            raise LocationDenied("permission denied")
        return self.location


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[AnomalyEvent] = []

    async def record(self, event: AnomalyEvent) -> Result[int, BackendUnreachable]:
        self.events.append(event)
        return Result.ok(len(self.events))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def alerter() -> RecordingAlerter:
    return RecordingAlerter()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fast_escalation() -> EscalationConfig:
    """Escalation timings shrunk so the full state machine runs in well under a second."""
    return EscalationConfig(
        sharing_enabled=True,
        delay_seconds=0.2,
        tick_seconds=0.05,
        reset_seconds=0.1,
        location_timeout_seconds=0.1,
    )


@pytest.fixture
def app_config(fast_escalation: EscalationConfig) -> AppConfig:
    return AppConfig(
        peripheral=PeripheralConfig(error_reset_seconds=0.05),
        telemetry=TelemetryConfig(window_size=20, simulation_interval_seconds=0.01),
        escalation=fast_escalation,
    )


@pytest.fixture
def context_factory(
    app_config: AppConfig,
    transport: FakeTransport,
    sink: RecordingSink,
    alerter: RecordingAlerter,
) -> Callable[..., AppContext]:
    def _build(location: Location | None = None, config: AppConfig | None = None) -> AppContext:
        return AppContext(
            config or app_config,
            transport=transport,
            sink=sink,
            location_provider=FixedLocations(location),
            alerter=alerter,
            sound_factory=lambda: AlertSound(muted=True),
        )

    return _build
