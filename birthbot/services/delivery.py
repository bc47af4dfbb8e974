"""
Delivery client - sends one outbound message to the WhatsApp Cloud API.

Transient gateway failures are absorbed by a bounded retry loop:
- network failure (no response): linear backoff, 1s x retry number
- 429 rate limit: fixed 5s
- 5xx server error: linear backoff, 2s x retry number
- 401/403: no retry, raised as an AUTHENTICATION error
- any other non-2xx: no retry

The retry budget is shared across failure classes within one send. The
sleeper is injected so backoff can be asserted without real delays.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from birthbot.constants.event_types import EVENT_WHATSAPP_SEND_FAILURE, EVENT_WHATSAPP_SEND_RETRY
from birthbot.core.config import settings
from birthbot.services.errors import BotError, DeliveryStatusClass, ErrorKind
from birthbot.services.http_client import create_httpx_client
from birthbot.services.metrics import record_delivery_failure, record_delivery_retry
from birthbot.services.outbound import OutboundMessage

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]

RECEIPT_SENT = "sent"
RECEIPT_DRY_RUN = "dry_run"


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for gateway sends (delays in seconds)."""

    max_retries: int = 3
    network_base: float = 1.0
    rate_limit_delay: float = 5.0
    server_error_base: float = 2.0

    def delay_for(self, error: BotError, retry_number: int) -> float | None:
        """
        Delay before retry number `retry_number` (1-based), or None if not retryable.
        """
        if retry_number > self.max_retries:
            return None
        if error.kind == ErrorKind.NETWORK:
            return self.network_base * retry_number
        if error.kind == ErrorKind.DELIVERY:
            if error.status_class == DeliveryStatusClass.RATE_LIMIT:
                return self.rate_limit_delay
            if error.status_class == DeliveryStatusClass.SERVER_ERROR:
                return self.server_error_base * retry_number
        return None


@dataclass(frozen=True)
class DeliveryReceipt:
    recipient: str
    message_id: str | None
    status: str
    attempts: int


class DeliveryClient:
    """Transmits outbound messages to one WhatsApp business phone number."""

    def __init__(
        self,
        access_token: str | None,
        phone_number_id: str | None,
        api_base_url: str = "https://graph.facebook.com",
        api_version: str = "v18.0",
        dry_run: bool = True,
        policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        client_factory: Callable[[], httpx.AsyncClient] = create_httpx_client,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_base_url = api_base_url.rstrip("/")
        self.api_version = api_version
        self.dry_run = dry_run
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, **overrides: Any) -> "DeliveryClient":
        kwargs: dict[str, Any] = {
            "access_token": settings.whatsapp_access_token,
            "phone_number_id": settings.whatsapp_phone_number_id,
            "api_base_url": settings.whatsapp_api_base_url,
            "api_version": settings.whatsapp_api_version,
            "dry_run": settings.whatsapp_dry_run,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base_url}/{self.api_version}/{self.phone_number_id}/messages"

    async def send(self, recipient: str, message: OutboundMessage) -> DeliveryReceipt:
        """
        Send one message, retrying transient failures.

        Returns:
            DeliveryReceipt for the accepted message

        Raises:
            BotError: the last failure once it is not retryable or the budget is spent
        """
        payload = message.to_payload(recipient)

        if self.dry_run:
            logger.info(f"[DRY-RUN] Would send WhatsApp {message.kind} message to {recipient}: {payload}")
            return DeliveryReceipt(recipient=recipient, message_id=None, status=RECEIPT_DRY_RUN, attempts=0)

        if not self.access_token or not self.phone_number_id:
            raise BotError.configuration("WhatsApp access token and phone number ID are required to send")

        retries = 0
        async with self._client_factory() as client:
            while True:
                try:
                    message_id = await self._post(client, payload)
                    return DeliveryReceipt(
                        recipient=recipient,
                        message_id=message_id,
                        status=RECEIPT_SENT,
                        attempts=retries + 1,
                    )
                except BotError as error:
                    delay = self.policy.delay_for(error, retries + 1)
                    if delay is None:
                        record_delivery_failure(error.code)
                        logger.error(
                            f"WhatsApp send to {recipient} failed after {retries + 1} attempt(s): {error.code}",
                            extra={
                                "event_type": EVENT_WHATSAPP_SEND_FAILURE,
                                "recipient": recipient,
                                "code": error.code,
                                "status": error.status,
                            },
                        )
                        raise
                    retries += 1
                    record_delivery_retry(error.status_class or error.kind.value)
                    logger.warning(
                        f"WhatsApp send to {recipient} failed ({error.code}), "
                        f"retry {retries}/{self.policy.max_retries} in {delay}s",
                        extra={
                            "event_type": EVENT_WHATSAPP_SEND_RETRY,
                            "recipient": recipient,
                            "code": error.code,
                            "retry": retries,
                        },
                    )
                    await self._sleep(delay)

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> str | None:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            response = await client.post(self.endpoint, headers=headers, json=payload)
        except httpx.TransportError as exc:
            raise BotError.network(exc) from exc

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                return None
            messages = data.get("messages") or [{}]
            return messages[0].get("id")

        try:
            body = response.json()
        except ValueError:
            body = {"body": response.text}
        detail = body.get("error", body) if isinstance(body, dict) else {"body": body}
        if not isinstance(detail, dict):
            detail = {"message": str(detail)}
        raise BotError.gateway(response.status_code, detail)
