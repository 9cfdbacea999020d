"""
Edge anomaly inference.

``run_inference`` is a pure scoring function: two z-scores against an offline
baseline, a Euclidean deviation mapped to a 0-100 confidence score, and a
fixed-precedence decision boundary. ``AnomalyMonitor`` is the stateful caller
that diffs consecutive results so side effects fire on edges only.
"""

import math
from datetime import UTC, datetime

import structlog

from lungua.config import InferenceConfig
from lungua.domain.models import (
    AnomalyLogEntry,
    AnomalyState,
    AnomalyStatus,
    AnomalyType,
    InferenceResult,
)

logger = structlog.get_logger(__name__)

MAX_ANOMALY_LOGS = 5


def confidence_score(heart_rate: float, airflow: float, config: InferenceConfig) -> float:
    hr_z = (heart_rate - config.heart_rate_mean) / config.heart_rate_std
    flow_z = (airflow - config.airflow_mean) / config.airflow_std
    deviation = math.hypot(hr_z, flow_z)
    return min(100.0, max(0.0, deviation / config.deviation_scale * 100.0))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def run_inference(
    heart_rate: float, airflow: float, config: InferenceConfig | None = None
) -> InferenceResult:
    """Score one (heart rate, airflow) pair. First matching rule wins."""
    config = config or InferenceConfig()
    score = confidence_score(heart_rate, airflow, config)

    if heart_rate > config.elevated_heart_rate and airflow < config.narrow_airway_airflow:
        return InferenceResult(
            status=AnomalyStatus.ANOMALY_DETECTED,
            anomaly_type=AnomalyType.NARROW_AIRWAY,
            message=(
                f"Airway constriction signature matched "
                f"(Confidence: {_round_half_up(score)}%). Inhaler required."
            ),
            confidence_score=score,
        )
    if heart_rate > config.high_heart_rate:
        return InferenceResult(
            status=AnomalyStatus.ANOMALY_DETECTED,
            anomaly_type=AnomalyType.TACHYCARDIA,
            message="Heart rate deviation > 2σ from baseline.",
            confidence_score=score,
        )
    if airflow > config.high_airflow:
        return InferenceResult(
            status=AnomalyStatus.ANOMALY_DETECTED,
            anomaly_type=AnomalyType.FLOW_ANOMALY,
            message="Inhaler technique outside normal distribution.",
            confidence_score=score,
        )
    return InferenceResult(status=AnomalyStatus.NORMAL, confidence_score=score)


class AnomalyMonitor:
    """Holds the current AnomalyState and detects Normal -> Anomaly edges."""

    def __init__(self, max_history: int = MAX_ANOMALY_LOGS) -> None:
        self.max_history = max_history
        self.state = AnomalyState()
        self.logger = logger.bind(component="anomaly_monitor")

    def update(self, result: InferenceResult, at: datetime | None = None) -> bool:
        """
        Fold ``result`` into the state.

        Returns True only when the status flips into Anomaly Detected; a
        repeated anomaly reading leaves message and history untouched.
        """
        previous = self.state.status
        self.state.confidence_score = result.confidence_score

        if result.status is AnomalyStatus.NORMAL:
            if previous is not AnomalyStatus.NORMAL:
                self.logger.info("anomaly_cleared")
            self.state.status = AnomalyStatus.NORMAL
            self.state.anomaly_type = None
            self.state.message = ""
            return False

        if previous is result.status:
            return False

        entry = AnomalyLogEntry(
            timestamp=at or datetime.now(UTC),
            type=result.anomaly_type,
            message=result.message,
        )
        self.state.status = result.status
        self.state.anomaly_type = result.anomaly_type
        self.state.message = result.message
        self.state.history = [entry, *self.state.history][: self.max_history]

        self.logger.info(
            "anomaly_detected",
            anomaly_type=result.anomaly_type.value,
            confidence=round(result.confidence_score, 1),
        )
        return True

    def reset(self) -> None:
        self.state = AnomalyState()
