"""
Inbound gateway payload parsing.

A WhatsApp webhook POST can batch several messages (and status callbacks)
across entries and changes; every message becomes one InboundEvent, ordered
by gateway timestamp. Status callbacks carry no user input and are skipped.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

KIND_TEXT = "text"
KIND_INTERACTIVE = "interactive"


@dataclass(frozen=True)
class InboundEvent:
    conversant_id: str
    kind: str = KIND_TEXT
    body: str = ""
    selection_id: str | None = None
    message_id: str | None = None
    timestamp: datetime | None = None

    @property
    def text(self) -> str:
        """Input as the engine sees it: the tapped option id, else the typed text."""
        if self.kind == KIND_INTERACTIVE and self.selection_id:
            return self.selection_id
        return self.body


def _parse_timestamp(raw: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(raw), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_message(message: dict[str, Any]) -> InboundEvent | None:
    """Turn one gateway message object into an InboundEvent (None if it has no sender)."""
    sender = message.get("from")
    if not sender:
        return None

    message_type = message.get("type", "text")
    message_id = message.get("id")
    timestamp = _parse_timestamp(message.get("timestamp"))

    if message_type == "text":
        body = (message.get("text") or {}).get("body") or ""
        return InboundEvent(sender, KIND_TEXT, body=body, message_id=message_id, timestamp=timestamp)

    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return InboundEvent(
            sender,
            KIND_INTERACTIVE,
            body=reply.get("title") or "",
            selection_id=reply.get("id"),
            message_id=message_id,
            timestamp=timestamp,
        )

    if message_type == "button":
        # Quick-reply buttons on template messages
        body = (message.get("button") or {}).get("text") or ""
        return InboundEvent(sender, KIND_TEXT, body=body, message_id=message_id, timestamp=timestamp)

    # Media, location, etc. carry no usable answer; an empty event still earns a re-prompt
    logger.info(f"Unsupported message type {message_type} from {sender}")
    return InboundEvent(sender, KIND_TEXT, body="", message_id=message_id, timestamp=timestamp)


def parse_gateway_payload(payload: dict[str, Any]) -> list[InboundEvent]:
    """
    Extract every inbound message event from a webhook payload.

    Returns:
        Events ordered by gateway timestamp (payload order for ties)
    """
    events: list[InboundEvent] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for message in value.get("messages") or []:
                event = parse_message(message)
                if event is not None:
                    events.append(event)

    epoch = datetime.fromtimestamp(0, tz=UTC)
    return sorted(events, key=lambda e: e.timestamp or epoch)
