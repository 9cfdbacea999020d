"""
Integrated telemetry pipeline.

Wires the complete client-side flow:
1. Two peripheral sessions (smartwatch heart rate, inhaler airflow)
2. Rolling buffers merged by most recent value per channel
3. Edge inference and anomaly history
4. Side effects on anomaly edges: notification, audio cue, backend log,
   caregiver escalation
5. Inhaler-use detection that cancels a running escalation
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from lungua.config import InferenceConfig
from lungua.domain.errors import PeripheralError
from lungua.domain.models import (
    AnomalyEvent,
    Channel,
    ConnectionStatus,
    EscalationPhase,
    EscalationState,
    InferenceResult,
)
from lungua.domain.payloads import parse_airflow, parse_heart_rate
from lungua.services.context import AppContext
from lungua.services.escalation import EscalationTimer
from lungua.services.events import Subscription
from lungua.services.inference import AnomalyMonitor, run_inference
from lungua.services.peripheral import PeripheralSession
from lungua.services.result import Result
from lungua.services.simulation import SimulatedTelemetrySource
from lungua.services.telemetry import TelemetryBuffers

logger = structlog.get_logger(__name__)


class TelemetryPipeline:
    """
    Main service orchestrating device sessions, inference and escalation.

    Sample delivery is push based: each session's ``samples`` source feeds
    ``ingest`` with the new value and the latest value of the other channel;
    only the arriving channel is recorded in the buffers.
    """

    def __init__(
        self,
        context: AppContext,
        smartwatch: PeripheralSession | None = None,
        inhaler: PeripheralSession | None = None,
        escalation: EscalationTimer | None = None,
    ) -> None:
        self.context = context
        config = context.config
        self.logger = logger.bind(component="telemetry_pipeline")

        self.inference_config: InferenceConfig = config.inference
        self.buffers = TelemetryBuffers(config.telemetry.window_size, config.inference)
        self.anomalies = AnomalyMonitor()

        self.smartwatch = smartwatch or PeripheralSession(
            config.peripheral.smartwatch,
            context.transport,
            parser=parse_heart_rate,
            error_reset_seconds=config.peripheral.error_reset_seconds,
        )
        self.inhaler = inhaler or PeripheralSession(
            config.peripheral.inhaler,
            context.transport,
            parser=parse_airflow,
            error_reset_seconds=config.peripheral.error_reset_seconds,
        )
        self.escalation = escalation or EscalationTimer(
            config.escalation,
            context.location_provider,
            context.alerter,
            contact=lambda: context.caregiver,
        )

        self._subscriptions: list[Subscription] = [
            self.smartwatch.samples.subscribe(self._on_heart_rate),
            self.inhaler.samples.subscribe(self._on_airflow),
            self.escalation.changes.subscribe(self._on_escalation_change),
        ]
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._simulation: SimulatedTelemetrySource | None = None
        self._simulation_task: asyncio.Task[None] | None = None

    # --- sample ingestion --------------------------------------------------------

    def _on_heart_rate(self, heart_rate: float) -> None:
        airflow = self.buffers.latest_value(Channel.AIRFLOW)
        self.ingest(heart_rate, airflow, source=Channel.HEART_RATE)

    def _on_airflow(self, airflow: float) -> None:
        heart_rate = self.buffers.latest_value(Channel.HEART_RATE)
        self.ingest(heart_rate, airflow, source=Channel.AIRFLOW)

    def ingest(
        self, heart_rate: float, airflow: float, source: Channel | None = None
    ) -> InferenceResult:
        """
        Score one merged reading and fire edge-triggered side effects.

        ``source`` names the channel that actually produced a new value; only
        that channel is recorded, and only a new airflow value can count as
        inhaler use. ``None`` means both values are new (simulated pairs).
        """
        if source in (None, Channel.HEART_RATE):
            self.buffers.record(Channel.HEART_RATE, heart_rate)
        if source in (None, Channel.AIRFLOW):
            self.buffers.record(Channel.AIRFLOW, airflow)

        result = run_inference(heart_rate, airflow, self.inference_config)
        if self.anomalies.update(result):
            self._on_anomaly_edge(result, heart_rate, airflow)

        if source is not Channel.HEART_RATE:
            self.escalation.observe_airflow(airflow)
        return result

    def _on_anomaly_edge(self, result: InferenceResult, heart_rate: float, airflow: float) -> None:
        self.context.notifications.notify(result.message)
        self.context.audio.play("alert")

        event = AnomalyEvent(
            anomaly_type=result.anomaly_type,
            message=result.message,
            heart_rate=heart_rate,
            airflow=airflow,
            confidence_score=result.confidence_score,
            caregiver_phone=self.context.caregiver.phone,
        )
        self._spawn(self._log_event(event))

        if result.is_critical:
            self.escalation.arm(result.anomaly_type)

    async def _log_event(self, event: AnomalyEvent) -> None:
        outcome = await self.context.sink.record(event)
        if outcome.is_err():
            # Logged by the sink; never surfaced to the user or retried
            self.logger.debug("anomaly_event_not_persisted", error=str(outcome.unwrap_err()))

    def _on_escalation_change(self, state: EscalationState) -> None:
        if state.phase is EscalationPhase.COUNTING_DOWN:
            self.context.audio.play("critical")
        elif state.phase is EscalationPhase.SENT:
            self.context.notifications.notify(
                f'SMS Sent to {self.context.caregiver.name}: "Emergency assistance required."'
            )
        elif state.phase is EscalationPhase.CANCELLED_BY_DEVICE_USE:
            self.context.notifications.notify("Inhaler use detected. Emergency alert cancelled.")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # --- user controls -----------------------------------------------------------

    def set_location_sharing(self, enabled: bool) -> None:
        self.escalation.sharing_enabled = enabled
        self.logger.info("location_sharing_toggled", enabled=enabled)

    def cancel_escalation(self) -> bool:
        """The patient's "I'm okay" affordance."""
        return self.escalation.cancel()

    def update_thresholds(self, **thresholds: float) -> InferenceConfig:
        merged = {**self.inference_config.model_dump(), **thresholds}
        self.inference_config = InferenceConfig.model_validate(merged)
        self.logger.info("thresholds_updated", **thresholds)
        return self.inference_config

    async def connect_smartwatch(self) -> Result[str, PeripheralError]:
        return await self.smartwatch.connect()

    async def connect_inhaler(self) -> Result[str, PeripheralError]:
        return await self.inhaler.connect()

    @property
    def devices_connected(self) -> bool:
        return any(
            s.status is ConnectionStatus.CONNECTED for s in (self.smartwatch, self.inhaler)
        )

    # --- simulation --------------------------------------------------------------

    @property
    def simulation(self) -> SimulatedTelemetrySource | None:
        return self._simulation

    def start_simulation(self, source: SimulatedTelemetrySource | None = None) -> bool:
        """Feed synthetic readings. Refused while a real device is connected."""
        if self.devices_connected:
            self.logger.warning("simulation_refused_devices_connected")
            self.context.notifications.notify("Please disconnect real devices first.")
            return False
        if self._simulation_task is not None and not self._simulation_task.done():
            return False

        self._simulation = source or SimulatedTelemetrySource(
            interval_seconds=self.context.config.telemetry.simulation_interval_seconds
        )
        self._simulation_task = asyncio.get_running_loop().create_task(
            self._run_simulation(self._simulation)
        )
        return True

    async def _run_simulation(self, source: SimulatedTelemetrySource) -> None:
        async for heart_rate, airflow in source.stream():
            self.ingest(heart_rate, airflow)

    def toggle_simulation_condition(self) -> str | None:
        if self._simulation is None or not self._simulation.is_running:
            return None
        return self._simulation.toggle_condition()

    async def stop_simulation(self) -> None:
        if self._simulation is not None:
            self._simulation.stop()
        task, self._simulation_task = self._simulation_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # --- lifecycle ---------------------------------------------------------------

    async def stop(self) -> None:
        """Logout: drop devices, stop the simulation and clear the charts."""
        await self.smartwatch.disconnect()
        await self.inhaler.disconnect()
        await self.stop_simulation()
        self.buffers.clear()
        self.anomalies.reset()
        self.logger.info("pipeline_stopped")

    async def drain(self) -> None:
        """Wait for fire-and-forget work (backend logging) to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.stop_simulation()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        await self.smartwatch.dispose()
        await self.inhaler.dispose()
        await self.escalation.dispose()
        await self.drain()
        self.logger.info("pipeline_closed")

    async def __aenter__(self) -> "TelemetryPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
