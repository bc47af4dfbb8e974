"""
Operator alert sink for critical failures.

Every alert is logged at CRITICAL. When operator_alert_webhook_url is set the
alert is also POSTed there as JSON from a background task; failures of that
POST are logged and never reach the caller.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from birthbot.constants.event_types import EVENT_OPERATOR_ALERT, EVENT_OPERATOR_ALERT_FAILURE
from birthbot.services.http_client import create_alert_client

logger = logging.getLogger(__name__)


class OperatorAlertSink:
    def __init__(
        self,
        webhook_url: str | None = None,
        client_factory: Callable[[], httpx.AsyncClient] = create_alert_client,
    ):
        self.webhook_url = webhook_url
        self._client_factory = client_factory
        self._pending: set[asyncio.Task] = set()

    def notify(self, entry: dict[str, Any]) -> None:
        """Raise an operator alert (fire-and-forget)."""
        logger.critical(
            f"Operator alert: {entry.get('code')} - {entry.get('message')}",
            extra={"event_type": EVENT_OPERATOR_ALERT, "alert": entry},
        )
        if not self.webhook_url:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; operator alert webhook not called")
            return

        task = loop.create_task(self._post(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, entry: dict[str, Any]) -> None:
        try:
            async with self._client_factory() as client:
                response = await client.post(self.webhook_url, json=entry)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                f"Operator alert webhook failed: {e}",
                extra={"event_type": EVENT_OPERATOR_ALERT_FAILURE},
            )

    async def drain(self) -> None:
        """Wait for in-flight alert posts (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
