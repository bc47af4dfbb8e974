"""
Message composer service - loads localized copy from YAML and renders it.

Copy lives in birthbot/copy/<locale>.yml with sections: messages, buttons,
menu, labels, errors. Placeholders ({name}) are checked against
EXPECTED_PLACEHOLDERS when the copy is loaded so a typo fails at startup
instead of mid-conversation. Unknown locales and missing keys fall back to en.
"""

import hashlib
import logging
from pathlib import Path
from string import Formatter
from typing import Any, cast

import yaml

from birthbot.constants.states import DEFAULT_LOCALE, Locale
from birthbot.services.errors import BotError

logger = logging.getLogger(__name__)

# Path to copy files
COPY_DIR = Path(__file__).resolve().parent.parent / "copy"

# Placeholders each message must use (messages not listed take none)
EXPECTED_PLACEHOLDERS: dict[str, set[str]] = {
    "ask_otp": {"mobile"},
    "otp_message": {"otp"},
    "confirm_details": {
        "child_name",
        "dob",
        "gender",
        "father_name",
        "mother_name",
        "place_of_birth",
        "address",
        "mobile",
    },
    "application_submitted": {"record_id"},
    "form_submission_confirmed": {"record_id", "child_name", "dob", "district"},
    "status_latest": {"record_id", "status", "submitted_on"},
}

DEFAULT_ERROR_KEY = "DEFAULT"


def _placeholders(template: str) -> set[str]:
    return {name for _, name, _, _ in Formatter().parse(template) if name}


def validate_copy(locale: str, copy_data: dict[str, Any]) -> None:
    """
    Check placeholder completeness of one locale's copy.

    Raises:
        BotError: CONFIGURATION if a message uses unexpected placeholders or misses one
    """
    problems = []
    for key, value in (copy_data.get("messages") or {}).items():
        variants = value if isinstance(value, list) else [value]
        expected = EXPECTED_PLACEHOLDERS.get(key, set())
        for variant in variants:
            found = _placeholders(str(variant))
            if found != expected:
                problems.append(
                    f"{locale}.messages.{key}: expected {sorted(expected)}, found {sorted(found)}"
                )
    for key, value in (copy_data.get("errors") or {}).items():
        if _placeholders(str(value)):
            problems.append(f"{locale}.errors.{key}: error messages take no placeholders")
    if problems:
        raise BotError.configuration("Invalid copy placeholders: " + "; ".join(problems))


class MessageComposer:
    """Composes localized messages from YAML copy files."""

    def __init__(self, copy_dir: Path | None = None):
        """
        Initialize message composer.

        Args:
            copy_dir: Directory holding <locale>.yml files (defaults to COPY_DIR)
        """
        self.copy_dir = copy_dir or COPY_DIR
        self._copy_data: dict[str, dict[str, Any]] = {}
        self._load_copy()

    def _load_copy(self) -> None:
        """Load and validate copy for every supported locale."""
        for locale in Locale:
            copy_file = self.copy_dir / f"{locale.value}.yml"
            if not copy_file.exists():
                if locale == DEFAULT_LOCALE:
                    raise BotError.configuration(f"Default copy file not found: {copy_file}")
                logger.warning(f"Copy file not found: {copy_file}, falling back to {DEFAULT_LOCALE}")
                continue

            with open(copy_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            validate_copy(locale.value, data)
            self._copy_data[locale.value] = data
            logger.info(f"Loaded copy from {copy_file}")

    def resolve_locale(self, locale: str | None) -> str:
        """Return a loaded locale code, falling back to en for unknown codes."""
        if locale and locale in self._copy_data:
            return locale
        return DEFAULT_LOCALE.value

    def _lookup(self, section: str, key: str, locale: str | None) -> Any:
        resolved = self.resolve_locale(locale)
        value = (self._copy_data[resolved].get(section) or {}).get(key)
        if value is None and resolved != DEFAULT_LOCALE.value:
            value = (self._copy_data[DEFAULT_LOCALE.value].get(section) or {}).get(key)
        return value

    def _select_variant(
        self, key: str, locale: str | None = None, conversant_id: str | None = None
    ) -> str:
        """
        Select a message variant deterministically based on conversant_id.

        Args:
            key: Message key
            locale: Locale code
            conversant_id: Conversant ID for deterministic selection (None = first variant)

        Returns:
            Selected variant text
        """
        variants = self._lookup("messages", key, locale)
        if variants is None:
            logger.warning(f"Message key not found: {key}")
            return f"[MISSING: {key}]"

        if not isinstance(variants, list):
            return str(variants)

        if not variants:
            logger.warning(f"No variants found for key: {key}")
            return ""

        if conversant_id is not None:
            hash_value = int(hashlib.md5(f"{key}:{conversant_id}".encode()).hexdigest(), 16)
            variant_index = hash_value % len(variants)
        else:
            variant_index = 0

        return cast(str, variants[variant_index])

    def render(
        self,
        key: str,
        locale: str | None = None,
        conversant_id: str | None = None,
        **kwargs: Any,
    ) -> str:
        """
        Render a message from copy.

        Example:
            composer.render("application_submitted", locale="hi", record_id="BC1705312345678")
        """
        template = self._select_variant(key, locale, conversant_id)

        try:
            return template.format(**kwargs)
        except KeyError as e:
            logger.warning(f"Missing template variable {e} for key {key}")
            return template

    def button_label(self, button_id: str, locale: str | None = None) -> str:
        label = self._lookup("buttons", button_id, locale)
        if label is None:
            logger.warning(f"Button label not found: {button_id}")
            return button_id
        return str(label)

    def label(self, group: str, code: str, locale: str | None = None) -> str:
        """Display label for an enumerated field value (e.g. gender=male)."""
        labels = self._lookup("labels", group, locale) or {}
        return str(labels.get(code, code))

    def menu_rows(self, locale: str | None = None) -> tuple[str, list[tuple[str, str, str | None]]]:
        """Return (section title, [(row id, title, description)]) for the main menu list."""
        menu = self._lookup("menu", "rows", locale) or {}
        section = self._lookup("menu", "section", locale) or ""
        rows = [(row_id, row["title"], row.get("description")) for row_id, row in menu.items()]
        return str(section), rows

    def error_message(self, code: str, locale: str | None = None) -> str:
        """
        Localized user message for an error code.

        Falls back to the locale's DEFAULT entry, and to en for unknown locales.
        """
        resolved = self.resolve_locale(locale)
        errors = self._copy_data[resolved].get("errors") or {}
        message = errors.get(code) or errors.get(DEFAULT_ERROR_KEY)
        if message is None:
            message = (self._copy_data[DEFAULT_LOCALE.value].get("errors") or {})[DEFAULT_ERROR_KEY]
        return str(message)


# Global instance (reset in tests so a temp COPY_DIR doesn't leak)
_composer: MessageComposer | None = None


def reset_cache() -> None:
    """Clear the global composer cache."""
    global _composer
    _composer = None


def get_composer() -> MessageComposer:
    """Get global message composer instance."""
    global _composer
    if _composer is None:
        _composer = MessageComposer()
    return _composer


def render_message(key: str, locale: str | None = None, **kwargs: Any) -> str:
    """Convenience function to render a message with the global composer."""
    return get_composer().render(key, locale=locale, **kwargs)
