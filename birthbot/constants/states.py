"""
Conversation state and locale constants - centralized to avoid circular imports.
"""

from enum import StrEnum


class ConversationState(StrEnum):
    """Named dialogue stages of the application flow."""

    # Onboarding
    INITIAL = "INITIAL"
    LANGUAGE_SELECTION = "LANGUAGE_SELECTION"
    CONSENT = "CONSENT"
    DOCS_INFO = "DOCS_INFO"
    MAIN_MENU = "MAIN_MENU"

    # Field collection
    COLLECT_CHILD_NAME = "COLLECT_CHILD_NAME"
    COLLECT_DOB = "COLLECT_DOB"
    COLLECT_GENDER = "COLLECT_GENDER"
    COLLECT_FATHER_NAME = "COLLECT_FATHER_NAME"
    COLLECT_MOTHER_NAME = "COLLECT_MOTHER_NAME"
    COLLECT_PLACE_OF_BIRTH = "COLLECT_PLACE_OF_BIRTH"
    COLLECT_HOSPITAL_NAME = "COLLECT_HOSPITAL_NAME"  # Only after place_of_birth=hospital
    COLLECT_ADDRESS = "COLLECT_ADDRESS"
    COLLECT_MOBILE = "COLLECT_MOBILE"
    VERIFY_OTP = "VERIFY_OTP"  # Only when OTP verification is enabled
    CONFIRM_DETAILS = "CONFIRM_DETAILS"


class Locale(StrEnum):
    EN = "en"
    HI = "hi"


DEFAULT_LOCALE = Locale.EN

# States that accumulate application fields (cancel is honoured here)
COLLECTION_STATES = frozenset(
    {
        ConversationState.COLLECT_CHILD_NAME,
        ConversationState.COLLECT_DOB,
        ConversationState.COLLECT_GENDER,
        ConversationState.COLLECT_FATHER_NAME,
        ConversationState.COLLECT_MOTHER_NAME,
        ConversationState.COLLECT_PLACE_OF_BIRTH,
        ConversationState.COLLECT_HOSPITAL_NAME,
        ConversationState.COLLECT_ADDRESS,
        ConversationState.COLLECT_MOBILE,
        ConversationState.VERIFY_OTP,
        ConversationState.CONFIRM_DETAILS,
    }
)

# Application record status
RECORD_STATUS_SUBMITTED = "submitted"
