"""SMS gateway stub for caregiver alerts."""

import structlog

from lungua.domain.models import CaregiverContact, Location

logger = structlog.get_logger(__name__)


def format_alert_message(location: Location) -> str:
    return f"EMERGENCY: Anomaly Detected. Location: {location.maps_url}"


class LogSmsGateway:
    """Formats the caregiver SMS and records it as a log line instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.logger = logger.bind(component="sms_gateway")

    async def send_alert(self, location: Location, contact: CaregiverContact) -> None:
        if not contact.sms_alerts:
            self.logger.info("sms_alert_skipped", caregiver=contact.name, reason="sms disabled")
            return
        message = format_alert_message(location)
        self.sent.append((contact.phone, message))
        self.logger.warning(
            "sms_alert_sent",
            caregiver=contact.name,
            phone=contact.phone,
            content=message,
            location_mocked=location.mocked,
        )
