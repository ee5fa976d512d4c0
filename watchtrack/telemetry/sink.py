"""PostHog delivery for telemetry batches."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog


if TYPE_CHECKING:
    from .models import TelemetryEvent


logger = structlog.get_logger(__name__)


class TelemetryDeliveryError(Exception):
    """Raised when a batch could not be delivered."""


class PostHogSink:
    """Sends event batches to the PostHog ``/batch/`` endpoint."""

    def __init__(
        self,
        api_key: str,
        host: str = "https://us.i.posthog.com",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize sink.

        Args:
            api_key: PostHog project API key
            host: Ingestion host
            timeout: Request timeout in seconds
            client: Optional shared HTTP client (owned by the caller)
        """
        self.api_key = api_key
        self.url = f"{host.rstrip('/')}/batch/"
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, events: list[TelemetryEvent]) -> None:
        """Deliver a batch.

        Raises:
            TelemetryDeliveryError: On transport errors or non-2xx responses
        """
        if not events:
            return

        payload = {
            "api_key": self.api_key,
            "batch": [event.to_posthog() for event in events],
        }

        client = await self._get_client()
        try:
            response = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise TelemetryDeliveryError("PostHog request timed out") from e
        except httpx.RequestError as e:
            raise TelemetryDeliveryError(f"PostHog request error: {e}") from e

        if not response.is_success:
            logger.warning(
                "posthog_batch_rejected",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise TelemetryDeliveryError(f"PostHog error: {response.status_code}")

        logger.debug("posthog_batch_sent", batch_size=len(events))

    async def aclose(self) -> None:
        """Close the HTTP client if this sink created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
