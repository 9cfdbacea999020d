"""
Anomaly event sinks.

The logging backend exposes a generic patient CRUD endpoint; anomaly events
are written into it with repurposed field names (``name`` carries the anomaly
type, ``age`` the heart rate). Failures are logged locally and never retried.
"""

import httpx
import structlog

from lungua.domain.errors import BackendUnreachable
from lungua.domain.models import AnomalyEvent
from lungua.services.result import Result

logger = structlog.get_logger(__name__)


def event_payload(event: AnomalyEvent) -> dict:
    """Request body for ``POST /api/patients``."""
    return {
        "name": event.anomaly_type.value,
        "age": event.heart_rate,
        "caregiverPhone": event.caregiver_phone,
        "extraInfo": {
            "message": event.message,
            "airflow": event.airflow,
            "sslErrorPercent": event.confidence_score,
            "timestamp": event.detected_at.isoformat(),
        },
    }


class HttpAnomalySink:
    """Posts anomaly events to the logging backend."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None
        self.logger = logger.bind(component="http_anomaly_sink", base_url=self.base_url)

    async def record(self, event: AnomalyEvent) -> Result[int, BackendUnreachable]:
        try:
            response = await self._client.post(
                f"{self.base_url}/api/patients", json=event_payload(event)
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.error(
                "backend_log_failed", anomaly_type=event.anomaly_type.value, error=str(e)
            )
            return Result.err(BackendUnreachable(str(e) or type(e).__name__))

        self.logger.info(
            "backend_log_uploaded",
            anomaly_type=event.anomaly_type.value,
            status_code=response.status_code,
        )
        return Result.ok(response.status_code)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LogAnomalySink:
    """Standalone mode: keep anomaly events in the structured log only."""

    def __init__(self) -> None:
        self.events: list[AnomalyEvent] = []
        self.logger = logger.bind(component="log_anomaly_sink")

    async def record(self, event: AnomalyEvent) -> Result[int, BackendUnreachable]:
        self.events.append(event)
        self.logger.info(
            "cloud_sync_simulated",
            anomaly_type=event.anomaly_type.value,
            message=event.message,
            heart_rate=event.heart_rate,
            airflow=event.airflow,
            confidence=round(event.confidence_score, 2),
        )
        return Result.ok(len(self.events))

    async def aclose(self) -> None:
        return None
