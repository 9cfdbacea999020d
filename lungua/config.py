"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Thresholds and delays are configuration, never literals in the pipeline
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

HEART_RATE_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HEART_RATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"
INHALER_SERVICE_UUID = "19b10000-e8f2-537e-4f6c-d104768a1214"
INHALER_AIRFLOW_UUID = "19b10001-e8f2-537e-4f6c-d104768a1214"


class DeviceProfile(BaseModel):
    """Which services and characteristic a peripheral session listens to."""

    label: str = Field(description="Human readable device kind, e.g. Smartwatch")
    service_uuids: list[str] = Field(min_length=1, description="Target services, first is primary")
    characteristic_uuid: str | None = Field(
        default=None, description="Notify characteristic; None uses the standard HR measurement"
    )

    @property
    def primary_service(self) -> str:
        return self.service_uuids[0]


class PeripheralConfig(BaseModel):
    """Wireless peripheral configuration."""

    smartwatch: DeviceProfile = Field(
        default_factory=lambda: DeviceProfile(
            label="Smartwatch",
            service_uuids=[HEART_RATE_SERVICE_UUID],
            characteristic_uuid=HEART_RATE_MEASUREMENT_UUID,
        )
    )
    inhaler: DeviceProfile = Field(
        default_factory=lambda: DeviceProfile(
            label="Smart Inhaler",
            service_uuids=[INHALER_SERVICE_UUID],
            characteristic_uuid=INHALER_AIRFLOW_UUID,
        )
    )
    scan_timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="How long to scan for a matching device"
    )
    error_reset_seconds: float = Field(
        default=3.0, gt=0.0, description="Delay before an Error status clears to Disconnected"
    )


class TelemetryConfig(BaseModel):
    """Rolling buffer and simulation settings."""

    window_size: int = Field(default=150, gt=0, description="Samples kept per channel")
    simulation_interval_seconds: float = Field(
        default=0.05, gt=0.0, description="Simulated sample period (20Hz)"
    )


class InferenceConfig(BaseModel):
    """Thresholds and baseline for the anomaly scoring function."""

    elevated_heart_rate: float = Field(default=100.0, gt=0.0)
    high_heart_rate: float = Field(default=130.0, gt=0.0)
    high_airflow: float = Field(default=70.0, gt=0.0)
    narrow_airway_airflow: float = Field(
        default=12.0, ge=0.0, description="Airflow below this with elevated HR is a narrow airway"
    )

    # Baseline derived offline from a healthy adult population
    heart_rate_mean: float = Field(default=75.0)
    heart_rate_std: float = Field(default=10.0, gt=0.0)
    airflow_mean: float = Field(default=20.0)
    airflow_std: float = Field(default=5.0, gt=0.0)
    deviation_scale: float = Field(
        default=4.0, gt=0.0, description="Deviation that maps to a 100% confidence score"
    )

    @model_validator(mode="after")
    def elevated_below_high(self) -> "InferenceConfig":
        if self.elevated_heart_rate > self.high_heart_rate:
            raise ValueError("elevated_heart_rate must not exceed high_heart_rate")
        return self


class EscalationConfig(BaseModel):
    """Location-sharing escalation settings."""

    sharing_enabled: bool = Field(default=False, description="Location sharing toggle")
    delay_seconds: float = Field(
        default=300.0, gt=0.0, description="Countdown before the caregiver is alerted"
    )
    tick_seconds: float = Field(default=1.0, gt=0.0, description="Countdown display resolution")
    corrective_airflow_threshold: float = Field(
        default=25.0, gt=0.0, description="Airflow that counts as using the inhaler"
    )
    reset_seconds: float = Field(
        default=5.0, gt=0.0, description="How long a terminal phase is shown before Idle"
    )
    location_timeout_seconds: float = Field(default=10.0, gt=0.0)
    mock_latitude: float = Field(default=12.9716, ge=-90.0, le=90.0)
    mock_longitude: float = Field(default=77.5946, ge=-180.0, le=180.0)


class BackendConfig(BaseModel):
    """Anomaly logging backend."""

    enabled: bool = Field(default=False, description="False keeps events in the local log only")
    base_url: str = Field(default="http://localhost:5000")
    timeout_seconds: float = Field(default=5.0, gt=0.0)
    geolocation_url: str | None = Field(
        default=None, description="JSON endpoint returning latitude/longitude"
    )


class CaregiverConfig(BaseModel):
    """Default caregiver contact."""

    name: str = Field(default="Dr. Evelyn Reed")
    relationship: str = Field(default="Primary Pulmonologist")
    email: str = Field(default="e.reed@clinic.com")
    phone: str = Field(default="+1 (555) 987-6543")
    push_notifications: bool = True
    sms_alerts: bool = True
    email_summaries: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    peripheral: PeripheralConfig = Field(default_factory=PeripheralConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    caregiver: CaregiverConfig = Field(default_factory=CaregiverConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    peripheral_config = PeripheralConfig(
        scan_timeout_seconds=_env_float("BLE_SCAN_TIMEOUT_SECONDS", 10.0),
        error_reset_seconds=_env_float("BLE_ERROR_RESET_SECONDS", 3.0),
    )

    telemetry_config = TelemetryConfig(
        window_size=int(os.getenv("WINDOW_SIZE", "150")),
    )

    inference_config = InferenceConfig(
        elevated_heart_rate=_env_float("ELEVATED_HEART_RATE_THRESHOLD", 100.0),
        high_heart_rate=_env_float("HIGH_HEART_RATE_THRESHOLD", 130.0),
        high_airflow=_env_float("HIGH_AIRFLOW_THRESHOLD", 70.0),
    )

    escalation_config = EscalationConfig(
        sharing_enabled=_parse_bool(os.getenv("LOCATION_SHARING_ENABLED"), False),
        delay_seconds=_env_float("ESCALATION_DELAY_SECONDS", 300.0),
        corrective_airflow_threshold=_env_float("CORRECTIVE_AIRFLOW_THRESHOLD", 25.0),
    )

    backend_config = BackendConfig(
        enabled=_parse_bool(os.getenv("BACKEND_ENABLED"), False),
        base_url=os.getenv("BACKEND_URL", "http://localhost:5000").rstrip("/"),
        geolocation_url=os.getenv("GEOLOCATION_URL") or None,
    )

    defaults = CaregiverConfig()
    caregiver_config = CaregiverConfig(
        name=os.getenv("CAREGIVER_NAME", defaults.name),
        relationship=os.getenv("CAREGIVER_RELATIONSHIP", defaults.relationship),
        email=os.getenv("CAREGIVER_EMAIL", defaults.email),
        phone=os.getenv("CAREGIVER_PHONE", defaults.phone),
        sms_alerts=_parse_bool(os.getenv("CAREGIVER_SMS_ALERTS"), True),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        peripheral=peripheral_config,
        telemetry=telemetry_config,
        inference=inference_config,
        escalation=escalation_config,
        backend=backend_config,
        caregiver=caregiver_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nINFERENCE THRESHOLDS")
    print(f"Elevated HR: {config.inference.elevated_heart_rate} bpm")
    print(f"High HR: {config.inference.high_heart_rate} bpm")
    print(f"High Airflow: {config.inference.high_airflow} L/min")

    print("\nESCALATION")
    print(f"Location Sharing: {'on' if config.escalation.sharing_enabled else 'off'}")
    print(f"Delay: {config.escalation.delay_seconds:.0f}s")
    print(f"Corrective Airflow: > {config.escalation.corrective_airflow_threshold}")

    print("\nBACKEND")
    print(f"Enabled: {config.backend.enabled}")
    print(f"URL: {config.backend.base_url}")


if __name__ == "__main__":
    print_config_summary()
