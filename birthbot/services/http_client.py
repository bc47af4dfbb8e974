"""
Outbound HTTP clients.

birthbot talks to two peers: the WhatsApp Cloud API (message sends, retried
by DeliveryClient) and the operator alert webhook (fire-and-forget posts).
Both are created here with explicit timeouts; alert posts get a shorter one.
"""

import httpx

GATEWAY_TIMEOUT = httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0)
ALERT_TIMEOUT = httpx.Timeout(5.0, connect=3.0)


def get_httpx_timeout(for_alerts: bool = False) -> httpx.Timeout:
    """Timeout for gateway sends, or for operator alert posts."""
    return ALERT_TIMEOUT if for_alerts else GATEWAY_TIMEOUT


def create_httpx_client(
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: httpx.Timeout | None = None,
) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient for WhatsApp Cloud API sends.

    Args:
        transport: Optional transport override (httpx.MockTransport in tests)
        timeout: Overrides the gateway timeout
    """
    return httpx.AsyncClient(timeout=timeout or GATEWAY_TIMEOUT, transport=transport)


def create_alert_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Client for posting operator alerts to the configured webhook."""
    return create_httpx_client(transport=transport, timeout=ALERT_TIMEOUT)
