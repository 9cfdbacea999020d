"""Location providers for the escalation flow."""

import httpx
import structlog

from lungua.domain.errors import LocationDenied
from lungua.domain.models import Location

logger = structlog.get_logger(__name__)


class FixedLocationProvider:
    """Always returns the same coordinate. Used for demos and hosts without a fix."""

    def __init__(self, latitude: float, longitude: float, mocked: bool = True) -> None:
        self.location = Location(latitude=latitude, longitude=longitude, mocked=mocked)

    async def current_position(self) -> Location:
        return self.location


class UnavailableLocationProvider:
    """No geolocation source configured: every request is denied."""

    async def current_position(self) -> Location:
        raise LocationDenied("No geolocation source configured")


class HttpLocationProvider:
    """
    Looks up the host position from a JSON endpoint.

    Accepts either ``latitude``/``longitude`` or ``lat``/``lon`` keys, which
    covers the common IP geolocation services.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    async def current_position(self) -> Location:
        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LocationDenied(f"Geolocation lookup failed: {e}") from e

        latitude = data.get("latitude", data.get("lat"))
        longitude = data.get("longitude", data.get("lon"))
        if latitude is None or longitude is None:
            raise LocationDenied("Geolocation response has no coordinates")

        location = Location(latitude=float(latitude), longitude=float(longitude))
        logger.info("location_acquired", latitude=location.latitude, longitude=location.longitude)
        return location

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
