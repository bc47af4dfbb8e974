"""
Conversation state machine - the transition table as data.

Each state's input interpreter yields an InputCategory; the table maps
(state, category) to the next state and the action the engine runs. Invalid
input never reaches the table: the engine re-prompts and the state stays put.

validate_transition_table() runs at import (and again at startup) so an
unhandled (state, category) pair fails fast instead of falling through.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from birthbot.constants.states import ConversationState as S
from birthbot.services.errors import BotError

logger = logging.getLogger(__name__)


class InputCategory(StrEnum):
    ANY = "any"  # Any input at all (INITIAL)
    VALUE = "value"  # A validated field value
    VALUE_VERIFY = "value_verify"  # Valid mobile that still needs OTP verification
    ACCEPT = "accept"
    DECLINE = "decline"
    CONTINUE = "continue"
    HOSPITAL = "hospital"
    NON_HOSPITAL = "non_hospital"
    APPLY = "apply"
    STATUS = "status"
    DOWNLOAD = "download"
    HELP = "help"
    RESEND = "resend"


class Action(StrEnum):
    SEND_WELCOME = "send_welcome"
    SET_LOCALE = "set_locale"
    GRANT_CONSENT = "grant_consent"
    DECLINE_CONSENT = "decline_consent"
    SHOW_MENU = "show_menu"
    START_APPLICATION = "start_application"
    SHOW_STATUS = "show_status"
    SHOW_DOWNLOAD = "show_download"
    SHOW_HELP = "show_help"
    STORE_FIELD = "store_field"
    ISSUE_OTP = "issue_otp"
    RESEND_OTP = "resend_otp"
    CONFIRM_OTP = "confirm_otp"
    SUBMIT = "submit"
    DISCARD_APPLICATION = "discard_application"


@dataclass(frozen=True)
class Transition:
    next_state: S
    action: Action
    reset: bool = False  # Delete the session instead of saving it


C = InputCategory

# Categories each state's interpreter can yield
STATE_CATEGORIES: dict[S, frozenset[InputCategory]] = {
    S.INITIAL: frozenset({C.ANY}),
    S.LANGUAGE_SELECTION: frozenset({C.VALUE}),
    S.CONSENT: frozenset({C.ACCEPT, C.DECLINE}),
    S.DOCS_INFO: frozenset({C.CONTINUE}),
    S.MAIN_MENU: frozenset({C.APPLY, C.STATUS, C.DOWNLOAD, C.HELP}),
    S.COLLECT_CHILD_NAME: frozenset({C.VALUE}),
    S.COLLECT_DOB: frozenset({C.VALUE}),
    S.COLLECT_GENDER: frozenset({C.VALUE}),
    S.COLLECT_FATHER_NAME: frozenset({C.VALUE}),
    S.COLLECT_MOTHER_NAME: frozenset({C.VALUE}),
    S.COLLECT_PLACE_OF_BIRTH: frozenset({C.HOSPITAL, C.NON_HOSPITAL}),
    S.COLLECT_HOSPITAL_NAME: frozenset({C.VALUE}),
    S.COLLECT_ADDRESS: frozenset({C.VALUE}),
    S.COLLECT_MOBILE: frozenset({C.VALUE, C.VALUE_VERIFY}),
    S.VERIFY_OTP: frozenset({C.VALUE, C.RESEND}),
    S.CONFIRM_DETAILS: frozenset({C.ACCEPT, C.DECLINE}),
}

TRANSITIONS: dict[tuple[S, InputCategory], Transition] = {
    # Onboarding
    (S.INITIAL, C.ANY): Transition(S.LANGUAGE_SELECTION, Action.SEND_WELCOME),
    (S.LANGUAGE_SELECTION, C.VALUE): Transition(S.CONSENT, Action.SET_LOCALE),
    (S.CONSENT, C.ACCEPT): Transition(S.DOCS_INFO, Action.GRANT_CONSENT),
    (S.CONSENT, C.DECLINE): Transition(S.INITIAL, Action.DECLINE_CONSENT, reset=True),
    (S.DOCS_INFO, C.CONTINUE): Transition(S.MAIN_MENU, Action.SHOW_MENU),
    # Main menu
    (S.MAIN_MENU, C.APPLY): Transition(S.COLLECT_CHILD_NAME, Action.START_APPLICATION),
    (S.MAIN_MENU, C.STATUS): Transition(S.MAIN_MENU, Action.SHOW_STATUS),
    (S.MAIN_MENU, C.DOWNLOAD): Transition(S.MAIN_MENU, Action.SHOW_DOWNLOAD),
    (S.MAIN_MENU, C.HELP): Transition(S.MAIN_MENU, Action.SHOW_HELP),
    # Field collection
    (S.COLLECT_CHILD_NAME, C.VALUE): Transition(S.COLLECT_DOB, Action.STORE_FIELD),
    (S.COLLECT_DOB, C.VALUE): Transition(S.COLLECT_GENDER, Action.STORE_FIELD),
    (S.COLLECT_GENDER, C.VALUE): Transition(S.COLLECT_FATHER_NAME, Action.STORE_FIELD),
    (S.COLLECT_FATHER_NAME, C.VALUE): Transition(S.COLLECT_MOTHER_NAME, Action.STORE_FIELD),
    (S.COLLECT_MOTHER_NAME, C.VALUE): Transition(S.COLLECT_PLACE_OF_BIRTH, Action.STORE_FIELD),
    (S.COLLECT_PLACE_OF_BIRTH, C.HOSPITAL): Transition(S.COLLECT_HOSPITAL_NAME, Action.STORE_FIELD),
    (S.COLLECT_PLACE_OF_BIRTH, C.NON_HOSPITAL): Transition(S.COLLECT_ADDRESS, Action.STORE_FIELD),
    (S.COLLECT_HOSPITAL_NAME, C.VALUE): Transition(S.COLLECT_ADDRESS, Action.STORE_FIELD),
    (S.COLLECT_ADDRESS, C.VALUE): Transition(S.COLLECT_MOBILE, Action.STORE_FIELD),
    (S.COLLECT_MOBILE, C.VALUE): Transition(S.CONFIRM_DETAILS, Action.STORE_FIELD),
    (S.COLLECT_MOBILE, C.VALUE_VERIFY): Transition(S.VERIFY_OTP, Action.ISSUE_OTP),
    (S.VERIFY_OTP, C.VALUE): Transition(S.CONFIRM_DETAILS, Action.CONFIRM_OTP),
    (S.VERIFY_OTP, C.RESEND): Transition(S.VERIFY_OTP, Action.RESEND_OTP),
    # Confirmation
    (S.CONFIRM_DETAILS, C.ACCEPT): Transition(S.MAIN_MENU, Action.SUBMIT),
    (S.CONFIRM_DETAILS, C.DECLINE): Transition(S.INITIAL, Action.DISCARD_APPLICATION, reset=True),
}

# Session field written by each collection state
FIELD_FOR_STATE: dict[S, str] = {
    S.COLLECT_CHILD_NAME: "child_name",
    S.COLLECT_DOB: "dob",
    S.COLLECT_GENDER: "gender",
    S.COLLECT_FATHER_NAME: "father_name",
    S.COLLECT_MOTHER_NAME: "mother_name",
    S.COLLECT_PLACE_OF_BIRTH: "place_of_birth",
    S.COLLECT_HOSPITAL_NAME: "hospital_name",
    S.COLLECT_ADDRESS: "address",
    S.COLLECT_MOBILE: "mobile",
}


def validate_transition_table() -> None:
    """
    Check the table is exhaustive and has no stray entries.

    Raises:
        BotError: CONFIGURATION listing every problem found
    """
    problems = []
    for state in S:
        if state not in STATE_CATEGORIES:
            problems.append(f"state {state} declares no input categories")
            continue
        for category in STATE_CATEGORIES[state]:
            if (state, category) not in TRANSITIONS:
                problems.append(f"unhandled ({state}, {category})")
    for state, category in TRANSITIONS:
        if category not in STATE_CATEGORIES.get(state, frozenset()):
            problems.append(f"({state}, {category}) is never produced by its interpreter")
    for (state, _), transition in TRANSITIONS.items():
        if transition.action == Action.STORE_FIELD and state not in FIELD_FOR_STATE:
            problems.append(f"{state} stores a field but has no field name")
    if problems:
        raise BotError.configuration("Invalid transition table: " + "; ".join(problems))


def get_transition(state: S, category: InputCategory) -> Transition:
    """
    Look up the transition for a (state, category) pair.

    Raises:
        BotError: CONFIGURATION if the pair is not in the table
    """
    transition = TRANSITIONS.get((state, category))
    if transition is None:
        raise BotError.configuration(f"No transition for ({state}, {category})")
    return transition


def is_transition_allowed(from_state: S, to_state: S) -> bool:
    """Check if any input moves from_state to to_state."""
    return any(
        state == from_state and transition.next_state == to_state
        for (state, _), transition in TRANSITIONS.items()
    )


validate_transition_table()
