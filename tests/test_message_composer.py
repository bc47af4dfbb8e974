"""
Tests for message composer - copy loading, locale fallback, placeholder checks.
"""

import pytest

from birthbot.services.errors import BotError, ErrorKind
from birthbot.services.message_composer import (
    MessageComposer,
    get_composer,
    render_message,
    reset_cache,
)


def _write_copy(copy_file, content: str) -> None:
    """Write temp YAML with UTF-8 so Devanagari loads correctly."""
    copy_file.write_text(content, encoding="utf-8")


@pytest.fixture
def copy_dir(tmp_path):
    copy_dir = tmp_path / "copy"
    copy_dir.mkdir()
    return copy_dir


def test_unknown_locale_falls_back_to_en(composer):
    en = composer.render("help", "en")
    assert composer.render("help", "fr") == en
    assert composer.render("help", None) == en


def test_hindi_copy_used_for_hi(composer):
    assert "सहायता" in composer.render("help", "hi")


def test_missing_hindi_key_falls_back_to_en(composer):
    # form_submission_confirmed only exists in en.yml
    message = composer.render(
        "form_submission_confirmed",
        "hi",
        record_id="BC1",
        child_name="Aanya",
        dob="15/01/2024",
        district="Shimla",
    )
    assert "BC1" in message
    assert "District: Shimla" in message


def test_render_fills_placeholders(composer):
    message = composer.render("application_submitted", "en", record_id="BC1705312345678")
    assert "*BC1705312345678*" in message


def test_variant_selection_is_deterministic(composer):
    first = composer.render("invalid_input", "en", conversant_id="919876543210")
    for _ in range(5):
        assert composer.render("invalid_input", "en", conversant_id="919876543210") == first


def test_button_labels_and_fallback(composer):
    assert composer.button_label("confirm_yes", "en") == "✅ Yes, Submit"
    assert composer.button_label("confirm_yes", "xx") == "✅ Yes, Submit"
    assert composer.button_label("no_such_button", "en") == "no_such_button"


def test_labels(composer):
    assert composer.label("gender", "female", "en") == "Female"
    assert composer.label("gender", "female", "hi") == "महिला"
    assert composer.label("gender", "unknown", "en") == "unknown"


def test_menu_rows(composer):
    title, rows = composer.menu_rows("en")
    assert title == "Services"
    assert [row_id for row_id, _, _ in rows] == [
        "menu_apply",
        "menu_status",
        "menu_download",
        "menu_help",
    ]


def test_error_message_lookup(composer):
    assert "Too many requests" in composer.error_message("META_API_429", "en")
    assert "बहुत सारे अनुरोध" in composer.error_message("META_API_429", "hi")
    # Unknown code -> the locale's DEFAULT
    assert composer.error_message("SOMETHING_NEW", "hi") == composer.error_message("DEFAULT", "hi")
    # Unknown locale -> en
    assert composer.error_message("META_API_429", "fr") == composer.error_message("META_API_429", "en")


def test_missing_placeholder_fails_at_load(copy_dir):
    _write_copy(
        copy_dir / "en.yml",
        """
messages:
  application_submitted: "Your application has been received"
errors:
  DEFAULT: "Something went wrong"
""",
    )
    with pytest.raises(BotError) as exc_info:
        MessageComposer(copy_dir=copy_dir)
    assert exc_info.value.kind == ErrorKind.CONFIGURATION
    assert "en.messages.application_submitted" in exc_info.value.message


def test_unexpected_placeholder_fails_at_load(copy_dir):
    _write_copy(copy_dir / "en.yml", 'messages:\n  help: "Hello {name}"\n')
    with pytest.raises(BotError) as exc_info:
        MessageComposer(copy_dir=copy_dir)
    assert exc_info.value.kind == ErrorKind.CONFIGURATION


def test_placeholder_checked_in_every_variant(copy_dir):
    _write_copy(
        copy_dir / "en.yml",
        """
messages:
  ask_otp:
    - "Code sent to {mobile}"
    - "Code sent"
""",
    )
    with pytest.raises(BotError):
        MessageComposer(copy_dir=copy_dir)


def test_missing_default_locale_file_fails(copy_dir):
    _write_copy(copy_dir / "hi.yml", 'messages:\n  help: "मदद"\n')
    with pytest.raises(BotError) as exc_info:
        MessageComposer(copy_dir=copy_dir)
    assert exc_info.value.kind == ErrorKind.CONFIGURATION


def test_missing_secondary_locale_falls_back(copy_dir):
    _write_copy(copy_dir / "en.yml", 'messages:\n  help: "Help text"\n')
    composer = MessageComposer(copy_dir=copy_dir)
    assert composer.render("help", "hi") == "Help text"


def test_missing_key_renders_marker(copy_dir):
    _write_copy(copy_dir / "en.yml", 'messages:\n  help: "Help text"\n')
    composer = MessageComposer(copy_dir=copy_dir)
    assert composer.render("does_not_exist", "en") == "[MISSING: does_not_exist]"


def test_global_composer_cache():
    reset_cache()
    first = get_composer()
    assert get_composer() is first
    reset_cache()
    assert get_composer() is not first
    assert "Help & Support" in render_message("help", "en")
