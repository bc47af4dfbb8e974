"""
In-process metrics for delivery and error health.

Tracks:
- Error counts per code (feeds the high-frequency warning)
- Delivery retries and final failures
- Duplicate inbound events
"""

import logging
from collections import defaultdict
from datetime import UTC, datetime
from threading import Lock
from typing import Any

from birthbot.constants.event_types import error_code_metric

logger = logging.getLogger(__name__)

_metrics_lock = Lock()
_metrics: dict[str, int] = defaultdict(int)
_metrics_timestamps: dict[str, datetime] = {}


def _increment(key: str) -> int:
    with _metrics_lock:
        _metrics[key] += 1
        _metrics_timestamps[f"{key}.last"] = datetime.now(UTC)
        return _metrics[key]


def record_error_code(code: str) -> int:
    """
    Record one occurrence of an error code.

    Returns:
        Total occurrences of this code since the last reset
    """
    return _increment(error_code_metric(code))


def record_delivery_retry(status_class: str) -> None:
    """Record a gateway send retry (status_class e.g. "server_error", "network")."""
    _increment(f"delivery.retry.{status_class}")


def record_delivery_failure(code: str) -> None:
    _increment(f"delivery.failed.{code}")


def record_duplicate_event(event_type: str, event_id: str) -> None:
    """
    Record a duplicate event detection.

    Args:
        event_type: Type of event (e.g., "whatsapp.message")
        event_id: Event ID that was duplicate
    """
    _increment(f"duplicate.{event_type}")
    logger.info(f"Duplicate event detected: {event_type} (ID: {event_id})")


def get_count(key: str) -> int:
    with _metrics_lock:
        return _metrics.get(key, 0)


def get_metrics() -> dict[str, Any]:
    """
    Get current metrics snapshot.

    Returns:
        dict with metrics counts and last event timestamps
    """
    with _metrics_lock:
        return {
            "counts": dict(_metrics),
            "last_events": {k: v.isoformat() for k, v in _metrics_timestamps.items()},
        }


def reset_metrics() -> None:
    """Reset all metrics (useful for testing)."""
    with _metrics_lock:
        _metrics.clear()
        _metrics_timestamps.clear()
