"""
Complete system walkthrough of the telemetry pipeline.

This script exercises:
1. Configuration loading and validation
2. Edge inference on reference readings
3. Simulated telemetry switching from normal breathing to an attack
4. Caregiver escalation, both sent and cancelled by inhaler use
5. Backend logging fallback when the server is unreachable

Run with: uv run python demo_system.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lungua.adapters.backend import HttpAnomalySink
from lungua.adapters.geolocation import FixedLocationProvider
from lungua.config import AppConfig, EscalationConfig, get_config, print_config_summary
from lungua.domain.models import AnomalyStatus, EscalationPhase
from lungua.services.alerts import AlertSound
from lungua.services.context import AppContext
from lungua.services.inference import run_inference
from lungua.services.pipeline import TelemetryPipeline
from lungua.services.simulation import SimulatedTelemetrySource

console = Console()

REFERENCE_READINGS = [
    (75.0, 20.0),
    (95.0, 25.0),
    (135.0, 20.0),
    (135.0, 8.0),
    (75.0, 85.0),
]


def demo_config() -> AppConfig:
    """Environment config with a short escalation so the walkthrough finishes quickly."""
    config = get_config()
    escalation = EscalationConfig(
        sharing_enabled=True,
        delay_seconds=3.0,
        tick_seconds=1.0,
        reset_seconds=1.0,
        corrective_airflow_threshold=config.escalation.corrective_airflow_threshold,
    )
    return config.model_copy(update={"escalation": escalation})


def build_context(config: AppConfig, **collaborators) -> AppContext:
    return AppContext.create(
        config,
        location_provider=FixedLocationProvider(48.8566, 2.3522, mocked=False),
        sound_factory=lambda: AlertSound(console=console, muted=True),
        **collaborators,
    )


async def wait_for(predicate, timeout: float) -> bool:
    try:
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.05)
    except TimeoutError:
        return False
    return True


async def test_configuration() -> bool:
    """Load and print the configuration."""

    console.print(Panel("🔧 Configuration", style="blue"))

    try:
        get_config()
        console.print("✅ Configuration loaded successfully", style="green")
        print_config_summary()
        return True

    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def test_inference() -> bool:
    """Score the reference readings."""

    console.print(Panel("🫁 Edge Inference", style="blue"))

    table = Table(title="Reference Readings")
    table.add_column("Heart Rate", style="cyan")
    table.add_column("Airflow", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Type", style="yellow")
    table.add_column("Confidence", style="green")

    for heart_rate, airflow in REFERENCE_READINGS:
        result = run_inference(heart_rate, airflow)
        table.add_row(
            f"{heart_rate:.0f}",
            f"{airflow:.0f}",
            result.status.value,
            result.anomaly_type.value if result.anomaly_type else "-",
            f"{result.confidence_score:.1f}%",
        )

    console.print(table)
    return run_inference(135.0, 8.0).is_critical


async def test_simulated_attack_escalates() -> bool:
    """Normal breathing, then an attack nobody responds to."""

    console.print(Panel("🚨 Simulated Attack, No Response", style="blue"))

    config = demo_config()
    async with build_context(config) as context:
        async with TelemetryPipeline(context) as pipeline:
            pipeline.start_simulation(SimulatedTelemetrySource(interval_seconds=0.05))
            await asyncio.sleep(1.0)
            console.print(
                f"Normal breathing: {pipeline.anomalies.state.status.value}, "
                f"score {pipeline.anomalies.state.confidence_score:.1f}%"
            )

            pipeline.toggle_simulation_condition()
            console.print("🔄 Switched simulation to attack...", style="yellow")

            sent = await wait_for(
                lambda: pipeline.escalation.phase is EscalationPhase.SENT,
                timeout=config.escalation.delay_seconds + 3.0,
            )
            await pipeline.stop_simulation()

            for notification in context.notifications.recent:
                console.print(f"  📣 {notification.message}")

            if sent:
                console.print("✅ Caregiver alerted after the countdown", style="green")
            else:
                console.print("❌ Escalation never reached Sent", style="red")
            return sent


async def test_inhaler_use_cancels() -> bool:
    """An attack followed by inhaler use before the countdown expires."""

    console.print(Panel("💨 Inhaler Use Cancels Escalation", style="blue"))

    config = demo_config()
    async with build_context(config) as context:
        async with TelemetryPipeline(context) as pipeline:
            pipeline.ingest(135.0, 8.0)
            counting = await wait_for(
                lambda: pipeline.escalation.phase is EscalationPhase.COUNTING_DOWN, timeout=2.0
            )
            if not counting:
                console.print("❌ Countdown never started", style="red")
                return False

            console.print(
                f"Countdown running: {pipeline.escalation.state.remaining_seconds:.0f}s left"
            )
            pipeline.ingest(120.0, 40.0)

            cancelled = pipeline.escalation.phase is EscalationPhase.CANCELLED_BY_DEVICE_USE
            style = "green" if cancelled else "red"
            console.print(f"Escalation phase: {pipeline.escalation.phase.value}", style=style)
            return cancelled


async def test_backend_fallback() -> bool:
    """Anomaly logging against a server that is not running."""

    console.print(Panel("🛡️ Backend Fallback", style="blue"))

    config = demo_config()
    sink = HttpAnomalySink("http://127.0.0.1:9", timeout_seconds=1.0)
    async with build_context(config, sink=sink) as context:
        async with TelemetryPipeline(context) as pipeline:
            pipeline.set_location_sharing(False)
            result = pipeline.ingest(75.0, 90.0)
            await pipeline.drain()

    ok = result.status is AnomalyStatus.ANOMALY_DETECTED
    if ok:
        console.print("✅ Failed upload was logged and the pipeline kept running", style="green")
    return ok


async def run_all_tests() -> None:
    """Run the whole walkthrough."""

    console.print(Panel("🧪 Lungua Telemetry Monitor - System Walkthrough", style="bold blue"))

    tests = [
        ("Configuration", test_configuration),
        ("Edge Inference", test_inference),
        ("Attack Escalation", test_simulated_attack_escalates),
        ("Inhaler Cancellation", test_inhaler_use_cancels),
        ("Backend Fallback", test_backend_fallback),
    ]

    results = []

    for test_name, test_func in tests:
        console.print(f"\n{'=' * 60}")
        try:
            result = await test_func()
            results.append((test_name, result))
        except KeyboardInterrupt:
            console.print("\n⏹️  Walkthrough interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {test_name} failed with exception: {e}", style="red")
            results.append((test_name, False))

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Results Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Step", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for test_name, result in results:
        if result:
            summary_table.add_row(test_name, "✅ PASSED")
            passed += 1
        else:
            summary_table.add_row(test_name, "❌ FAILED")

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} steps passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_tests())
    except KeyboardInterrupt:
        console.print("\n👋 Stopped by user", style="yellow")
