"""
Tests for outbound message types - gateway limits and payload shape.
"""

import pytest

from birthbot.services.outbound import (
    Button,
    ButtonMessage,
    ListMessage,
    ListRow,
    ListSection,
    TextMessage,
)


def test_text_payload():
    payload = TextMessage("Hello").to_payload("919876543210")
    assert payload == {
        "messaging_product": "whatsapp",
        "to": "919876543210",
        "type": "text",
        "text": {"body": "Hello"},
    }


def test_button_payload():
    message = ButtonMessage("Agree?", (Button("consent_accept", "Yes"), Button("consent_decline", "No")))
    payload = message.to_payload("919876543210")
    assert payload["type"] == "interactive"
    assert payload["interactive"]["type"] == "button"
    assert payload["interactive"]["body"] == {"text": "Agree?"}
    assert payload["interactive"]["action"]["buttons"][0] == {
        "type": "reply",
        "reply": {"id": "consent_accept", "title": "Yes"},
    }


@pytest.mark.parametrize("count", [0, 4])
def test_button_count_limits(count):
    buttons = tuple(Button(f"b{i}", f"Label {i}") for i in range(count))
    with pytest.raises(ValueError):
        ButtonMessage("Pick one", buttons)


def test_button_label_limit():
    Button("ok", "x" * 20)
    with pytest.raises(ValueError):
        Button("too_long", "x" * 21)
    with pytest.raises(ValueError):
        Button("empty", "")


def test_list_row_limits():
    ListRow("r1", "x" * 24, "d" * 72)
    with pytest.raises(ValueError):
        ListRow("r1", "x" * 25)
    with pytest.raises(ValueError):
        ListRow("r1", "Title", "d" * 73)


def test_list_row_count_limit():
    rows = tuple(ListRow(f"r{i}", f"Row {i}") for i in range(11))
    with pytest.raises(ValueError):
        ListMessage("Choose", "Options", (ListSection("All", rows),))
    with pytest.raises(ValueError):
        ListMessage("Choose", "Options", (ListSection("Empty", ()),))


def test_list_payload_omits_empty_description():
    message = ListMessage(
        "Choose",
        "Options",
        (ListSection("Services", (ListRow("menu_apply", "Apply", "Start"), ListRow("menu_help", "Help"))),),
    )
    payload = message.to_payload("919876543210")
    action = payload["interactive"]["action"]
    assert action["button"] == "Options"
    assert action["sections"][0]["rows"] == [
        {"id": "menu_apply", "title": "Apply", "description": "Start"},
        {"id": "menu_help", "title": "Help"},
    ]
