"""
End-to-end tests of the telemetry pipeline with in-memory devices.

Covers:
- Edge-triggered side effects (notification, audio cue, backend log)
- Escalation arming, device-use cancellation and the caregiver SMS
- Simulation mode and its mutual exclusion with real devices
- Logout and teardown
"""

import asyncio
import random
from collections.abc import AsyncIterator

import pytest
from pydantic import ValidationError

from lungua.config import (
    HEART_RATE_MEASUREMENT_UUID,
    INHALER_AIRFLOW_UUID,
)
from lungua.domain.models import (
    AnomalyStatus,
    AnomalyType,
    Channel,
    ConnectionStatus,
    EscalationPhase,
)
from lungua.services.pipeline import TelemetryPipeline
from lungua.services.simulation import SimulatedTelemetrySource


async def eventually(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
async def pipeline(context_factory) -> AsyncIterator[TelemetryPipeline]:
    context = context_factory()
    pipeline = TelemetryPipeline(context)
    yield pipeline
    await pipeline.aclose()
    await context.aclose()


def _messages(pipeline: TelemetryPipeline) -> list[str]:
    return [n.message for n in pipeline.context.notifications.recent]


class TestIngest:
    async def test_normal_reading_has_no_side_effects(self, pipeline, sink) -> None:
        result = pipeline.ingest(76.0, 21.0)
        await pipeline.drain()

        assert result.status is AnomalyStatus.NORMAL
        assert _messages(pipeline) == []
        assert sink.events == []
        assert not pipeline.context.has_audio
        assert pipeline.buffers[Channel.HEART_RATE].values() == [76.0]

    async def test_anomaly_edge_fires_once(self, pipeline, sink) -> None:
        pipeline.set_location_sharing(False)

        pipeline.ingest(75.0, 80.0)
        pipeline.ingest(75.0, 85.0)
        await pipeline.drain()

        assert _messages(pipeline) == ["Inhaler technique outside normal distribution."]
        assert pipeline.context.audio.played == ["alert"]
        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.anomaly_type is AnomalyType.FLOW_ANOMALY
        assert event.airflow == 80.0
        assert event.caregiver_phone == pipeline.context.caregiver.phone

    async def test_new_episode_after_recovery(self, pipeline, sink) -> None:
        pipeline.set_location_sharing(False)

        pipeline.ingest(140.0, 20.0)
        pipeline.ingest(75.0, 20.0)
        pipeline.ingest(140.0, 20.0)
        await pipeline.drain()

        assert len(sink.events) == 2
        assert len(pipeline.anomalies.state.history) == 2

    async def test_critical_anomaly_needs_sharing_enabled(self, pipeline) -> None:
        pipeline.set_location_sharing(False)
        pipeline.ingest(140.0, 20.0)

        assert pipeline.escalation.phase is EscalationPhase.IDLE

    async def test_flow_anomaly_never_escalates(self, pipeline) -> None:
        pipeline.ingest(75.0, 90.0)

        assert pipeline.escalation.phase is EscalationPhase.IDLE

    async def test_updated_thresholds_apply(self, pipeline) -> None:
        pipeline.set_location_sharing(False)
        pipeline.update_thresholds(elevated_heart_rate=80.0, high_heart_rate=90.0)

        assert pipeline.ingest(95.0, 20.0).anomaly_type is AnomalyType.TACHYCARDIA

    async def test_invalid_thresholds_rejected(self, pipeline) -> None:
        with pytest.raises(ValidationError):
            pipeline.update_thresholds(elevated_heart_rate=200.0)


class TestEscalationFlow:
    async def test_caregiver_alerted_when_nobody_responds(self, pipeline, alerter) -> None:
        pipeline.ingest(135.0, 8.0)
        assert pipeline.escalation.phase is EscalationPhase.PENDING_LOCATION

        await eventually(lambda: pipeline.escalation.phase is EscalationPhase.SENT)
        await eventually(lambda: len(alerter.alerts) == 1)

        assert 'SMS Sent to Dr. Evelyn Reed: "Emergency assistance required."' in _messages(pipeline)
        assert "critical" in pipeline.context.audio.played

    async def test_inhaler_use_cancels_via_device_sample(
        self, pipeline, transport, alerter
    ) -> None:
        watch = transport.add_smartwatch()
        inhaler = transport.add_inhaler()
        assert (await pipeline.connect_smartwatch()).is_ok()
        assert (await pipeline.connect_inhaler()).is_ok()

        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 140]))
        assert pipeline.anomalies.state.anomaly_type is AnomalyType.TACHYCARDIA
        await eventually(lambda: pipeline.escalation.phase is EscalationPhase.COUNTING_DOWN)

        inhaler.notify(INHALER_AIRFLOW_UUID, bytes([30, 0x00]))

        assert pipeline.escalation.phase is EscalationPhase.CANCELLED_BY_DEVICE_USE
        assert "Inhaler use detected. Emergency alert cancelled." in _messages(pipeline)
        await asyncio.sleep(0.3)
        assert alerter.alerts == []

    async def test_user_cancel(self, pipeline, alerter) -> None:
        pipeline.ingest(140.0, 20.0)
        await eventually(lambda: pipeline.escalation.phase is EscalationPhase.COUNTING_DOWN)

        assert pipeline.cancel_escalation() is True
        await asyncio.sleep(0.3)
        assert alerter.alerts == []

    async def test_caregiver_edits_reach_the_alert(self, pipeline, alerter) -> None:
        pipeline.context.update_caregiver(name="Sam Okafor", phone="+15550002222")
        pipeline.ingest(140.0, 20.0)

        await eventually(lambda: len(alerter.alerts) == 1)

        assert alerter.alerts[0][1].phone == "+15550002222"


class TestDeviceSamples:
    async def test_other_channel_uses_latest_value(self, pipeline, transport) -> None:
        watch = transport.add_smartwatch()
        inhaler = transport.add_inhaler()
        await pipeline.connect_smartwatch()
        await pipeline.connect_inhaler()
        pipeline.set_location_sharing(False)

        inhaler.notify(INHALER_AIRFLOW_UUID, bytes([9, 0]))
        # Heart rate still at its baseline, so no narrow airway yet
        assert pipeline.anomalies.state.status is AnomalyStatus.NORMAL

        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 110]))
        assert pipeline.anomalies.state.anomaly_type is AnomalyType.NARROW_AIRWAY

    async def test_sample_recorded_on_its_own_channel_only(self, pipeline, transport) -> None:
        watch = transport.add_smartwatch()
        inhaler = transport.add_inhaler()
        await pipeline.connect_smartwatch()
        await pipeline.connect_inhaler()

        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 80]))
        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 82]))
        assert pipeline.buffers[Channel.HEART_RATE].values() == [80.0, 82.0]
        assert len(pipeline.buffers[Channel.AIRFLOW]) == 0

        inhaler.notify(INHALER_AIRFLOW_UUID, bytes([22, 0]))
        assert pipeline.buffers[Channel.AIRFLOW].values() == [22.0]
        assert len(pipeline.buffers[Channel.HEART_RATE]) == 2

    async def test_heart_rate_sample_does_not_cancel_countdown(
        self, pipeline, transport, alerter
    ) -> None:
        watch = transport.add_smartwatch()
        inhaler = transport.add_inhaler()
        await pipeline.connect_smartwatch()
        await pipeline.connect_inhaler()

        # Latest airflow sits above the corrective threshold
        inhaler.notify(INHALER_AIRFLOW_UUID, bytes([30, 0]))
        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 140]))
        await eventually(lambda: pipeline.escalation.phase is EscalationPhase.COUNTING_DOWN)

        watch.notify(HEART_RATE_MEASUREMENT_UUID, bytes([0x00, 141]))

        assert pipeline.escalation.phase is EscalationPhase.COUNTING_DOWN
        await eventually(lambda: len(alerter.alerts) == 1)
        assert "Inhaler use detected. Emergency alert cancelled." not in _messages(pipeline)

    async def test_stop_disconnects_and_clears(self, pipeline, transport) -> None:
        transport.add_smartwatch()
        await pipeline.connect_smartwatch()
        pipeline.set_location_sharing(False)
        pipeline.ingest(140.0, 20.0)

        await pipeline.stop()

        assert pipeline.smartwatch.status is ConnectionStatus.DISCONNECTED
        assert len(pipeline.buffers[Channel.HEART_RATE]) == 0
        assert pipeline.anomalies.state.history == []


class TestSimulation:
    async def test_simulation_feeds_pipeline_and_toggles(self, pipeline) -> None:
        pipeline.set_location_sharing(False)
        source = SimulatedTelemetrySource(interval_seconds=0.01, rng=random.Random(7))

        assert pipeline.start_simulation(source) is True
        assert pipeline.start_simulation() is False
        await eventually(lambda: len(pipeline.buffers[Channel.AIRFLOW]) >= 5)
        assert pipeline.anomalies.state.status is AnomalyStatus.NORMAL

        assert pipeline.toggle_simulation_condition() == "attack"
        await eventually(
            lambda: pipeline.anomalies.state.anomaly_type is AnomalyType.NARROW_AIRWAY
        )

        await pipeline.stop_simulation()
        assert not source.is_running

    async def test_refused_while_device_connected(self, pipeline, transport) -> None:
        transport.add_smartwatch()
        await pipeline.connect_smartwatch()

        assert pipeline.start_simulation() is False
        assert _messages(pipeline) == ["Please disconnect real devices first."]

    async def test_toggle_without_simulation(self, pipeline) -> None:
        assert pipeline.toggle_simulation_condition() is None


class TestSimulatedSource:
    def test_normal_profile_stays_in_range(self) -> None:
        source = SimulatedTelemetrySource(rng=random.Random(1))
        readings = [source.next_sample() for _ in range(200)]

        assert all(60 < hr < 90 for hr, _ in readings)
        assert all(af >= 0 for _, af in readings)

    def test_attack_profile(self) -> None:
        source = SimulatedTelemetrySource(condition="attack", rng=random.Random(1))
        readings = [source.next_sample() for _ in range(200)]

        assert all(hr > 125 for hr, _ in readings)
        assert all(af < 12 for _, af in readings)


class TestAppContext:
    async def test_audio_created_once(self, context_factory) -> None:
        context = context_factory()

        assert not context.has_audio
        assert context.audio is context.audio
        await context.aclose()
        await context.aclose()
        assert not context.has_audio

    async def test_update_caregiver_validates(self, context_factory) -> None:
        context = context_factory()

        updated = context.update_caregiver(relationship="Sibling", email_summaries=True)

        assert updated.relationship == "Sibling"
        assert updated.email_summaries is True
        with pytest.raises(ValidationError):
            context.update_caregiver(phone=None)
        await context.aclose()
