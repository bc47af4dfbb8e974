"""
Replay sample WhatsApp webhook payloads against a running bot.

Useful for walking through the dialogue without sending messages from a
phone. Keep WHATSAPP_DRY_RUN=true so replies are only logged.

Usage:
    python scripts/webhook_replay.py [--text "Hi"] [--tap lang_en] [--from PHONE_NUMBER]
    python scripts/webhook_replay.py --flow   # full application, onboarding to submit
"""

import json
import sys
import time
import uuid
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from birthbot.core.config import settings

# Onboarding through submission, as (kind, value) steps
SAMPLE_FLOW = [
    ("text", "Hi"),
    ("tap", "lang_en"),
    ("tap", "consent_accept"),
    ("tap", "docs_continue"),
    ("tap", "menu_apply"),
    ("text", "Aanya Sharma"),
    ("text", "15/01/2024"),
    ("tap", "gender_female"),
    ("text", "Rajesh Sharma"),
    ("text", "Priya Sharma"),
    ("tap", "place_hospital"),
    ("text", "IGMC Shimla"),
    ("text", "House 12, Mall Road, Shimla 171001"),
    ("text", "9876543210"),
    ("tap", "confirm_yes"),
]


def _envelope(message: dict) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WHATSAPP_BUSINESS_ACCOUNT_ID",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "15550555555",
                                "phone_number_id": settings.whatsapp_phone_number_id,
                            },
                            "messages": [message],
                        },
                        "field": "messages",
                    }
                ],
            }
        ],
    }


def create_text_message_payload(wa_from: str, text: str, message_id: str | None = None) -> dict:
    """Create a sample text message webhook payload."""
    return _envelope(
        {
            "from": wa_from,
            "id": message_id or f"wamid.{uuid.uuid4().hex}",
            "timestamp": str(int(time.time())),
            "type": "text",
            "text": {"body": text},
        }
    )


def create_tap_payload(wa_from: str, selection_id: str, message_id: str | None = None) -> dict:
    """Create a sample reply-button tap payload (list rows use the same ids)."""
    return _envelope(
        {
            "from": wa_from,
            "id": message_id or f"wamid.{uuid.uuid4().hex}",
            "timestamp": str(int(time.time())),
            "type": "interactive",
            "interactive": {
                "type": "button_reply",
                "button_reply": {"id": selection_id, "title": selection_id},
            },
        }
    )


def send_webhook_payload(payload: dict, base_url: str = "http://localhost:8000") -> bool:
    """Send webhook payload to the webhook endpoint."""
    webhook_url = f"{base_url}/webhooks/whatsapp"
    print(f"📤 Sending webhook payload to: {webhook_url}")
    print(f"   Payload: {json.dumps(payload['entry'][0]['changes'][0]['value']['messages'][0])}")

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(webhook_url, json=payload)
    except httpx.HTTPError as e:
        print(f"❌ Error sending webhook: {e}")
        return False

    print(f"📥 Response: {response.status_code} {response.text}")
    if response.status_code != 200:
        print("❌ Webhook returned error status")
        return False
    return True


def main():
    """CLI entrypoint."""
    import argparse

    parser = argparse.ArgumentParser(description="Replay WhatsApp webhook payloads")
    parser.add_argument("--text", type=str, default="Hi", help="Text message content")
    parser.add_argument("--tap", type=str, help="Send a button/list tap with this id instead of text")
    parser.add_argument("--flow", action="store_true", help="Replay a complete application")
    parser.add_argument(
        "--from",
        dest="wa_from",
        type=str,
        default="919812345678",
        help="Sender WhatsApp number (with country code, no +)",
    )
    parser.add_argument(
        "--url",
        type=str,
        default="http://localhost:8000",
        help="Base URL of the API (default: http://localhost:8000)",
    )
    args = parser.parse_args()

    print("=" * 60)
    print("WhatsApp Webhook Replay")
    print("=" * 60)
    print(f"Dry run: {'✅ on' if settings.whatsapp_dry_run else '⚠️  off (real messages will be sent)'}")
    print()

    if args.flow:
        steps = SAMPLE_FLOW
    elif args.tap:
        steps = [("tap", args.tap)]
    else:
        steps = [("text", args.text)]

    for kind, value in steps:
        if kind == "tap":
            payload = create_tap_payload(args.wa_from, value)
        else:
            payload = create_text_message_payload(args.wa_from, value)
        if not send_webhook_payload(payload, base_url=args.url):
            print("💡 Ensure the API is running: uvicorn birthbot.main:app")
            sys.exit(1)

    print("✅ Replay complete. Check the logs for the [DRY-RUN] replies.")


if __name__ == "__main__":
    main()
