"""
Caregiver escalation timer.

State machine:

    Idle -> PendingLocation -> CountingDown -> Sent
                                            -> Cancelled             (user)
                                            -> CancelledByDeviceUse  (inhaler used)
    Sent | Cancelled | CancelledByDeviceUse -> Idle  (after reset delay)

Only one escalation is active at a time. Triggers while not Idle are dropped,
never queued. Every timer is an asyncio handle or task, and clearing one that
already fired or was already cleared is a no-op.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from lungua.config import EscalationConfig
from lungua.domain.errors import LocationDenied
from lungua.domain.models import (
    CRITICAL_ANOMALIES,
    AnomalyType,
    CaregiverContact,
    EscalationPhase,
    EscalationState,
    Location,
)
from lungua.services.alerts import CaregiverAlerter
from lungua.services.events import EventSource

logger = structlog.get_logger(__name__)

TERMINAL_PHASES = frozenset(
    {EscalationPhase.SENT, EscalationPhase.CANCELLED, EscalationPhase.CANCELLED_BY_DEVICE_USE}
)


class LocationProvider(Protocol):
    """Geolocation collaborator. Raises LocationDenied when no fix is allowed."""

    async def current_position(self) -> Location: ...


class EscalationTimer:
    """Arms on a critical anomaly, alerts the caregiver unless cancelled in time."""

    def __init__(
        self,
        config: EscalationConfig,
        location_provider: LocationProvider,
        alerter: CaregiverAlerter,
        contact: Callable[[], CaregiverContact],
    ) -> None:
        self.config = config
        self.location_provider = location_provider
        self.alerter = alerter
        self.contact = contact
        self.sharing_enabled = config.sharing_enabled

        self._state = EscalationState(remaining_seconds=config.delay_seconds)
        self.changes: EventSource[EscalationState] = EventSource("escalation")

        self._location_task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._delay_handle: asyncio.TimerHandle | None = None
        self._reset_handle: asyncio.TimerHandle | None = None
        self._alert_tasks: set[asyncio.Task[None]] = set()
        self.logger = logger.bind(component="escalation_timer")

    @property
    def state(self) -> EscalationState:
        return self._state

    @property
    def phase(self) -> EscalationPhase:
        return self._state.phase

    @property
    def mock_location(self) -> Location:
        return Location(
            latitude=self.config.mock_latitude,
            longitude=self.config.mock_longitude,
            mocked=True,
        )

    def _transition(self, **updates: Any) -> None:
        previous = self._state.phase
        self._state = self._state.model_copy(update=updates)
        if self._state.phase is not previous:
            self.logger.info(
                "escalation_phase_changed",
                from_phase=previous.value,
                to_phase=self._state.phase.value,
            )
        self.changes.publish(self._state)

    # --- Idle -> PendingLocation -------------------------------------------------

    def arm(self, anomaly_type: AnomalyType) -> bool:
        """Start an escalation for a critical anomaly. Returns False if ignored."""
        if anomaly_type not in CRITICAL_ANOMALIES:
            return False
        if not self.sharing_enabled:
            self.logger.debug("escalation_skipped_sharing_disabled", anomaly_type=anomaly_type.value)
            return False
        if self._state.phase is not EscalationPhase.IDLE:
            self.logger.debug("escalation_already_active", phase=self._state.phase.value)
            return False

        self._transition(
            phase=EscalationPhase.PENDING_LOCATION,
            anomaly_type=anomaly_type,
            location=None,
            remaining_seconds=self.config.delay_seconds,
        )
        loop = asyncio.get_running_loop()
        self._location_task = loop.create_task(self._acquire_location())
        return True

    # --- PendingLocation -> CountingDown -----------------------------------------

    async def _acquire_location(self) -> None:
        location = await self._resolve_location()
        if self._state.phase is not EscalationPhase.PENDING_LOCATION:
            return
        self._start_countdown(location)

    async def _resolve_location(self) -> Location:
        try:
            return await asyncio.wait_for(
                self.location_provider.current_position(),
                timeout=self.config.location_timeout_seconds,
            )
        except LocationDenied as e:
            self.logger.warning("location_denied_using_mock", error=str(e))
        except TimeoutError:
            self.logger.warning(
                "location_timeout_using_mock", timeout=self.config.location_timeout_seconds
            )
        except Exception as e:
            self.logger.warning("location_failed_using_mock", error=str(e))
        return self.mock_location

    def _start_countdown(self, location: Location) -> None:
        # Timers exist before the state is published so a subscriber can cancel them
        loop = asyncio.get_running_loop()
        self._delay_handle = loop.call_later(self.config.delay_seconds, self._on_delay_elapsed)
        self._tick_task = loop.create_task(self._run_countdown())
        self._transition(
            phase=EscalationPhase.COUNTING_DOWN,
            location=location,
            remaining_seconds=self.config.delay_seconds,
        )

    async def _run_countdown(self) -> None:
        tick = self.config.tick_seconds
        while self._state.phase is EscalationPhase.COUNTING_DOWN:
            await asyncio.sleep(tick)
            if self._state.phase is not EscalationPhase.COUNTING_DOWN:
                break
            remaining = round(max(0.0, self._state.remaining_seconds - tick), 6)
            self._transition(remaining_seconds=remaining)

    # --- CountingDown -> Sent ----------------------------------------------------

    def _on_delay_elapsed(self) -> None:
        self._delay_handle = None
        if self._state.phase is not EscalationPhase.COUNTING_DOWN:
            return
        self._clear_countdown()
        self._transition(phase=EscalationPhase.SENT, remaining_seconds=0.0)

        location = self._state.location or self.mock_location
        task = asyncio.get_running_loop().create_task(self._send_alert(location))
        self._alert_tasks.add(task)
        task.add_done_callback(self._alert_tasks.discard)
        self._schedule_reset()

    async def _send_alert(self, location: Location) -> None:
        try:
            await self.alerter.send_alert(location, self.contact())
        except Exception as e:
            self.logger.error("caregiver_alert_failed", error=str(e))

    # --- CountingDown -> Cancelled / CancelledByDeviceUse ------------------------

    def cancel(self, by_device_use: bool = False) -> bool:
        """Cancel a running countdown. Ignored in every other phase."""
        if self._state.phase is not EscalationPhase.COUNTING_DOWN:
            return False
        self._clear_countdown()
        self._transition(
            phase=(
                EscalationPhase.CANCELLED_BY_DEVICE_USE
                if by_device_use
                else EscalationPhase.CANCELLED
            )
        )
        self._schedule_reset()
        return True

    def observe_airflow(self, airflow: float) -> bool:
        """Cancel the countdown when the airflow shows the inhaler was used."""
        if (
            self._state.phase is EscalationPhase.COUNTING_DOWN
            and airflow > self.config.corrective_airflow_threshold
        ):
            self.logger.info("corrective_action_detected", airflow=airflow)
            return self.cancel(by_device_use=True)
        return False

    # --- terminal -> Idle --------------------------------------------------------

    def _schedule_reset(self) -> None:
        self._clear_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(self.config.reset_seconds, self._reset_to_idle)

    def _reset_to_idle(self) -> None:
        self._reset_handle = None
        if self._state.phase in TERMINAL_PHASES:
            self._transition(
                phase=EscalationPhase.IDLE,
                location=None,
                anomaly_type=None,
                remaining_seconds=self.config.delay_seconds,
            )

    # --- timer housekeeping ------------------------------------------------------

    def _clear_countdown(self) -> None:
        if self._delay_handle is not None:
            self._delay_handle.cancel()
            self._delay_handle = None
        if self._tick_task is not None:
            if self._tick_task is not asyncio.current_task():
                self._tick_task.cancel()
            self._tick_task = None

    def _clear_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    async def dispose(self) -> None:
        """Cancel every pending timer and task."""
        self._clear_countdown()
        self._clear_reset()
        pending = [t for t in (self._location_task, *self._alert_tasks) if t and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._location_task = None
        self.changes.close()
