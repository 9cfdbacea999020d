"""
Core services for the monitoring client.

This package contains the device sessions, telemetry buffers, inference and
caregiver escalation. The application context and the pipeline that wires
everything together depend on the adapters, so import them from
``lungua.services.context`` and ``lungua.services.pipeline`` directly.
"""

from .escalation import EscalationTimer, LocationProvider
from .events import EventSource, Subscription
from .inference import AnomalyMonitor, confidence_score, run_inference
from .peripheral import PeripheralSession, PeripheralTransport
from .result import Result
from .telemetry import TelemetryBuffers, TelemetryWindow

__all__ = [
    "AnomalyMonitor",
    "EscalationTimer",
    "EventSource",
    "LocationProvider",
    "PeripheralSession",
    "PeripheralTransport",
    "Result",
    "Subscription",
    "TelemetryBuffers",
    "TelemetryWindow",
    "confidence_score",
    "run_inference",
]
