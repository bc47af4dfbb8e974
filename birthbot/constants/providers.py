"""
Provider constants for inbound idempotency keys.

Use these instead of string literals to avoid drift and typos.
"""

PROVIDER_WHATSAPP = "whatsapp"
PROVIDER_WEB_FORM = "web_form"
