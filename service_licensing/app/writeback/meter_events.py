"""
Outbound metering events for pay-as-you-go organizations.

Posts Stripe billing meter events over plain HTTP. Every event carries an
idempotency identifier, so retrying a transport failure is safe. Failures
are logged and never raised to the caller.
"""

from enum import Enum
from typing import Callable, Dict, Optional

import httpx

from shared.config import DEFAULT_METER_EVENTS_URL
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_on_exception
from service_licensing.app.models import now_ms


class MeterEventType(str, Enum):
    APP = "pay_as_you_go_app"
    USER = "pay_as_you_go_user"


class MeterEventsClient:
    """Client for the billing meter events endpoint."""

    def __init__(self, secret_key: Optional[str],
                 url: str = DEFAULT_METER_EVENTS_URL,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.secret_key = secret_key
        self.url = url
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics
        self.clock = clock or now_ms
        self.logger = get_logger("licensing.meter_events")
        self._client: Optional[httpx.AsyncClient] = None

        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self._post = retry_on_exception((httpx.TransportError,), config=self.retry_config)(self._post_once)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self._client

    async def _post_once(self, data: Dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            self.url,
            data=data,
            headers={"Authorization": f"Bearer {self.secret_key}"},
        )

    def _record(self, event: MeterEventType, status: str) -> None:
        if self.metrics:
            self.metrics.record_meter_event(event.value, status)

    async def send(self, event: MeterEventType, customer_id: str, identifier: str,
                   value_key: str = "value") -> bool:
        """Send one meter event. Returns whether it was accepted."""
        if not self.secret_key:
            self.logger.warning("Metering secret not configured, skipping meter event",
                                event_name=event.value, identifier=identifier)
            self._record(event, "skipped")
            return False

        data = {
            "event_name": event.value,
            "payload[stripe_customer_id]": customer_id,
            f"payload[{value_key}]": "1",
            "timestamp": str(self.clock() // 1000),
            "identifier": identifier,
        }

        try:
            response = await self._post(data)
        except Exception as e:
            self.logger.error("Meter event failed", event_name=event.value,
                              identifier=identifier, error=str(e))
            self._record(event, "error")
            return False

        if response.is_success:
            self.logger.info("Meter event sent", event_name=event.value, identifier=identifier)
            self._record(event, "sent")
            return True

        self.logger.error("Meter event rejected", event_name=event.value, identifier=identifier,
                          status_code=response.status_code, body=response.text)
        self._record(event, "rejected")
        return False

    async def send_app_event(self, customer_id: str, org_id: str, month: str, app_key: str) -> bool:
        return await self.send(MeterEventType.APP, customer_id, f"{org_id}_{month}_app_{app_key}")

    async def send_user_event(self, customer_id: str, org_id: str, month: str, email: str) -> bool:
        return await self.send(MeterEventType.USER, customer_id, f"{org_id}_{month}_user_{email}",
                               value_key="users")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
