"""
Outbound message types and their WhatsApp Cloud API payloads.

Gateway limits are enforced when a message is built, so an oversized label
fails where it is composed instead of as a 400 from the gateway.
"""

from dataclasses import dataclass, field
from typing import Any

MAX_BUTTONS = 3
MAX_BUTTON_LABEL = 20
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72
MAX_LIST_ROWS = 10


@dataclass(frozen=True)
class TextMessage:
    body: str

    @property
    def kind(self) -> str:
        return "text"

    def to_payload(self, recipient: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "text",
            "text": {"body": self.body},
        }


@dataclass(frozen=True)
class Button:
    id: str
    label: str

    def __post_init__(self):
        if not self.id:
            raise ValueError("Button id is required")
        if not self.label or len(self.label) > MAX_BUTTON_LABEL:
            raise ValueError(
                f"Button label must be 1-{MAX_BUTTON_LABEL} characters: {self.label!r}"
            )


@dataclass(frozen=True)
class ButtonMessage:
    """Interactive reply-button message (1-3 buttons)."""

    body: str
    buttons: tuple[Button, ...]

    def __post_init__(self):
        if not 1 <= len(self.buttons) <= MAX_BUTTONS:
            raise ValueError(f"Button message needs 1-{MAX_BUTTONS} buttons, got {len(self.buttons)}")

    @property
    def kind(self) -> str:
        return "buttons"

    def to_payload(self, recipient: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": self.body},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b.id, "title": b.label}}
                        for b in self.buttons
                    ]
                },
            },
        }


@dataclass(frozen=True)
class ListRow:
    id: str
    title: str
    description: str | None = None

    def __post_init__(self):
        if not self.title or len(self.title) > MAX_ROW_TITLE:
            raise ValueError(f"List row title must be 1-{MAX_ROW_TITLE} characters: {self.title!r}")
        if self.description is not None and len(self.description) > MAX_ROW_DESCRIPTION:
            raise ValueError(
                f"List row description must be at most {MAX_ROW_DESCRIPTION} characters"
            )


@dataclass(frozen=True)
class ListSection:
    title: str
    rows: tuple[ListRow, ...]


@dataclass(frozen=True)
class ListMessage:
    """Interactive list message (sections of selectable rows)."""

    body: str
    button: str
    sections: tuple[ListSection, ...] = field(default_factory=tuple)

    def __post_init__(self):
        total_rows = sum(len(s.rows) for s in self.sections)
        if not 1 <= total_rows <= MAX_LIST_ROWS:
            raise ValueError(f"List message needs 1-{MAX_LIST_ROWS} rows, got {total_rows}")
        if not self.button or len(self.button) > MAX_BUTTON_LABEL:
            raise ValueError(f"List button must be 1-{MAX_BUTTON_LABEL} characters")

    @property
    def kind(self) -> str:
        return "list"

    def to_payload(self, recipient: str) -> dict[str, Any]:
        sections = []
        for section in self.sections:
            rows = []
            for row in section.rows:
                item = {"id": row.id, "title": row.title}
                if row.description:
                    item["description"] = row.description
                rows.append(item)
            sections.append({"title": section.title, "rows": rows})
        return {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "interactive",
            "interactive": {
                "type": "list",
                "body": {"text": self.body},
                "action": {"button": self.button, "sections": sections},
            },
        }


OutboundMessage = TextMessage | ButtonMessage | ListMessage


def message_text(message: OutboundMessage) -> str:
    """Body text of any outbound message (for logs and tests)."""
    return message.body
