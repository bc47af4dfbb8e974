"""
Field validators - pure functions that validate and normalize raw input.

Each validator returns the normalized value or raises BotError(kind=VALIDATION)
with a named code. Validators never touch shared state.
"""

import re
from dataclasses import dataclass

from birthbot.constants.states import Locale
from birthbot.services.errors import (
    INVALID_CHOICE,
    INVALID_DATE_FORMAT,
    INVALID_MOBILE,
    INVALID_OTP_FORMAT,
    INVALID_TEXT,
    BotError,
)

MOBILE_PATTERN = re.compile(r"^[6-9][0-9]{9}$")
OTP_PATTERN = re.compile(r"^[0-9]{6}$")
DOB_PATTERN = re.compile(r"^[0-9]{2}/[0-9]{2}/[0-9]{4}$")

MAX_TEXT_LENGTH = 200

_WORD_SPLIT = re.compile(r"[\s,.;:!?()\"'/-]+")

# "don't" splits into "don" + "t"
NEGATION_WORDS = frozenset({"not", "no", "don", "dont", "never", "नहीं", "नही", "मत", "ना"})


@dataclass(frozen=True)
class Choice:
    """One option of a closed enumeration and the inputs that select it."""

    code: str
    shortcut: str | None = None
    aliases: frozenset[str] = frozenset()


def _choices(*items: tuple[str, str | None, set[str]]) -> tuple[Choice, ...]:
    return tuple(Choice(code, shortcut, frozenset(aliases)) for code, shortcut, aliases in items)


LANGUAGE_CHOICES = _choices(
    (Locale.EN.value, "1", {"lang_en", "english", "अंग्रेज़ी", "अंग्रेजी"}),
    (Locale.HI.value, "2", {"lang_hi", "hindi", "हिंदी", "हिन्दी"}),
)

GENDER_CHOICES = _choices(
    ("male", "1", {"gender_male", "m", "boy", "पुरुष", "लड़का"}),
    ("female", "2", {"gender_female", "f", "girl", "महिला", "लड़की"}),
    ("other", "3", {"gender_other", "अन्य"}),
)

PLACE_OF_BIRTH_CHOICES = _choices(
    ("hospital", "1", {"place_hospital", "अस्पताल"}),
    ("home", "2", {"place_home", "house", "घर"}),
    ("other", "3", {"place_other", "अन्य"}),
)

YES_NO_CHOICES = _choices(
    ("yes", "1", {"confirm_yes", "consent_accept", "y", "agree", "accept", "submit", "हां", "हाँ", "सहमत"}),
    ("no", "2", {"confirm_no", "consent_decline", "n", "decline", "disagree", "नहीं", "असहमत"}),
)

MENU_CHOICES = _choices(
    ("apply", "1", {"menu_apply", "new", "आवेदन"}),
    ("status", "2", {"menu_status", "check", "स्थिति"}),
    ("download", "3", {"menu_download", "certificate", "डाउनलोड"}),
    ("help", "4", {"menu_help", "support", "सहायता"}),
)

CONTINUE_CHOICES = _choices(
    ("continue", "1", {"docs_continue", "ok", "okay", "next", "ready", "आगे", "ठीक"}),
)


def _normalize(raw: str) -> str:
    return " ".join(raw.strip().lower().split())


def match_choice(raw: str, choices: tuple[Choice, ...], field: str) -> str:
    """
    Match raw input against a closed enumeration.

    Matches (in order) explicit code or alias, numeric shortcut, or a keyword
    appearing as a whole word. Input matching more than one option is rejected,
    and so is a keyword match next to a negation ("I do not agree") unless the
    negation word itself selects the matched option.

    Returns:
        The matched option code

    Raises:
        BotError: INVALID_CHOICE if nothing (or more than one option) matches,
            or the only match is negated
    """
    text = _normalize(raw or "")
    if not text:
        raise BotError.validation(INVALID_CHOICE, f"Empty input for {field}", field=field)

    for choice in choices:
        if text == choice.code or text in choice.aliases or text == choice.shortcut:
            return choice.code

    words = {w for w in _WORD_SPLIT.split(text) if w}
    matched = {
        choice.code
        for choice in choices
        if choice.code in words or words & choice.aliases
    }
    if len(matched) == 1:
        code = matched.pop()
        negations = words & NEGATION_WORDS
        selected = next(c for c in choices if c.code == code)
        if not negations or negations <= ({selected.code} | selected.aliases):
            return code

    raise BotError.validation(
        INVALID_CHOICE,
        f"Input does not select exactly one {field} option",
        field=field,
    )


def validate_mobile(raw: str) -> str:
    """
    Validate an Indian mobile number.

    Strips everything but ASCII digits (Devanagari digits included); the rest
    must be exactly 10 digits starting with 6-9.
    """
    digits = re.sub(r"[^0-9]", "", raw or "")
    if len(digits) != 10:
        raise BotError.validation(INVALID_MOBILE, "Mobile number must be 10 digits", field="mobile")
    if not MOBILE_PATTERN.match(digits):
        raise BotError.validation(INVALID_MOBILE, "Invalid mobile number format", field="mobile")
    return digits


def validate_otp(raw: str) -> str:
    """Validate a 6-digit OTP (surrounding whitespace ignored)."""
    code = (raw or "").strip()
    if not OTP_PATTERN.match(code):
        raise BotError.validation(INVALID_OTP_FORMAT, "OTP must be 6 digits", field="otp")
    return code


def validate_dob(raw: str) -> str:
    """Validate date of birth shape DD/MM/YYYY (no calendar check)."""
    value = (raw or "").strip()
    if not DOB_PATTERN.match(value):
        raise BotError.validation(
            INVALID_DATE_FORMAT, "Date must be in DD/MM/YYYY format", field="dob"
        )
    return value


def validate_text(raw: str, field: str) -> str:
    """Validate a free-text answer (names, hospital, address)."""
    value = " ".join((raw or "").split())
    if not value or len(value) > MAX_TEXT_LENGTH:
        raise BotError.validation(INVALID_TEXT, f"Invalid {field}", field=field)
    return value


def validate_language(raw: str) -> Locale:
    return Locale(match_choice(raw, LANGUAGE_CHOICES, "language"))


def validate_gender(raw: str) -> str:
    return match_choice(raw, GENDER_CHOICES, "gender")


def validate_place_of_birth(raw: str) -> str:
    return match_choice(raw, PLACE_OF_BIRTH_CHOICES, "place_of_birth")


def validate_yes_no(raw: str) -> bool:
    return match_choice(raw, YES_NO_CHOICES, "confirmation") == "yes"


def validate_menu_option(raw: str) -> str:
    return match_choice(raw, MENU_CHOICES, "menu_option")


def validate_continue(raw: str) -> str:
    return match_choice(raw, CONTINUE_CHOICES, "continue")
