"""
Application context.

Process-wide state (the caregiver contact, the single audio output and the
external collaborators) lives here instead of in module globals. It is built
explicitly, handed to the components that need it, and closed on teardown.
"""

from collections.abc import Callable
from typing import Any, Protocol

import structlog

from lungua.adapters.backend import HttpAnomalySink, LogAnomalySink
from lungua.adapters.ble import BleakTransport
from lungua.adapters.geolocation import HttpLocationProvider, UnavailableLocationProvider
from lungua.adapters.sms import LogSmsGateway
from lungua.config import AppConfig, get_config
from lungua.domain.errors import BackendUnreachable
from lungua.domain.models import AnomalyEvent, CaregiverContact
from lungua.log import configure_logging
from lungua.services.alerts import AlertSound, CaregiverAlerter, NotificationCenter
from lungua.services.escalation import LocationProvider
from lungua.services.peripheral import PeripheralTransport
from lungua.services.result import Result

logger = structlog.get_logger(__name__)


class AnomalySink(Protocol):
    """Receives anomaly edges for remote logging."""

    async def record(self, event: AnomalyEvent) -> Result[int, BackendUnreachable]: ...


class AppContext:
    """Explicitly constructed shared state with a create/dispose lifecycle."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        transport: PeripheralTransport | None = None,
        sink: AnomalySink | None = None,
        location_provider: LocationProvider | None = None,
        alerter: CaregiverAlerter | None = None,
        sound_factory: Callable[[], AlertSound] | None = None,
    ) -> None:
        self.config = config or get_config()
        self.caregiver = CaregiverContact(**self.config.caregiver.model_dump())
        self.notifications = NotificationCenter()

        self.transport = transport or BleakTransport(
            scan_timeout_seconds=self.config.peripheral.scan_timeout_seconds
        )
        self.sink = sink or self._default_sink()
        self.location_provider = location_provider or self._default_location_provider()
        self.alerter = alerter or LogSmsGateway()

        self._sound_factory = sound_factory or AlertSound
        self._sound: AlertSound | None = None
        self._closed = False
        self.logger = logger.bind(component="app_context")

    @classmethod
    def create(cls, config: AppConfig | None = None, **collaborators: Any) -> "AppContext":
        """Build a context and configure logging from its config."""
        config = config or get_config()
        configure_logging(config.logging)
        return cls(config, **collaborators)

    def _default_sink(self) -> AnomalySink:
        backend = self.config.backend
        if backend.enabled:
            return HttpAnomalySink(backend.base_url, timeout_seconds=backend.timeout_seconds)
        return LogAnomalySink()

    def _default_location_provider(self) -> LocationProvider:
        backend = self.config.backend
        if backend.geolocation_url:
            return HttpLocationProvider(
                backend.geolocation_url, timeout_seconds=backend.timeout_seconds
            )
        return UnavailableLocationProvider()

    @property
    def audio(self) -> AlertSound:
        """The audio output, created on first use and reused afterwards."""
        if self._sound is None:
            self._sound = self._sound_factory()
            self.logger.debug("audio_output_created")
        return self._sound

    @property
    def has_audio(self) -> bool:
        return self._sound is not None

    def update_caregiver(self, **changes: Any) -> CaregiverContact:
        self.caregiver = CaregiverContact.model_validate(
            {**self.caregiver.model_dump(), **changes}
        )
        self.logger.info("caregiver_updated", caregiver=self.caregiver.name)
        return self.caregiver

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for collaborator in (self.sink, self.location_provider):
            closer = getattr(collaborator, "aclose", None)
            if closer is not None:
                await closer()
        if self._sound is not None:
            self._sound.close()
            self._sound = None
        self.notifications.close()
        self.logger.info("app_context_closed")

    async def __aenter__(self) -> "AppContext":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
