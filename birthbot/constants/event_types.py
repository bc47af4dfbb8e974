"""
Event type constants for structured log records and metrics keys.

Use these instead of string literals to ensure consistency.
"""

# ---- WhatsApp ----
EVENT_WHATSAPP_MESSAGE = "whatsapp.message"
EVENT_WHATSAPP_DUPLICATE = "whatsapp.duplicate"
EVENT_WHATSAPP_WEBHOOK_FAILURE = "whatsapp.webhook_failure"
EVENT_WHATSAPP_SEND_RETRY = "whatsapp.send_retry"
EVENT_WHATSAPP_SEND_FAILURE = "whatsapp.send_failure"

# ---- Conversation ----
EVENT_INVALID_INPUT = "conversation.invalid_input"
EVENT_TRANSITION = "conversation.transition"
EVENT_SESSION_RESET = "conversation.session_reset"
EVENT_APPLICATION_SUBMITTED = "application.submitted"

# ---- Errors ----
EVENT_ERROR_CLASSIFIED = "error.classified"
EVENT_ERROR_HIGH_FREQUENCY = "error.high_frequency"
EVENT_OPERATOR_ALERT = "operator.alert"
EVENT_OPERATOR_ALERT_FAILURE = "operator.alert_failure"


def error_code_metric(code: str) -> str:
    """e.g. error.META_API_500"""
    return f"error.{code}"
