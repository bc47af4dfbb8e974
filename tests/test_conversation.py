"""
Conversation engine tests - full dialogue flows, global commands, re-prompts,
and delivery failure handling.
"""

import re
from datetime import timedelta
from unittest.mock import MagicMock

import httpx
import pytest
from freezegun import freeze_time

from birthbot.constants.states import ConversationState, Locale
from birthbot.services.alerts import OperatorAlertSink
from birthbot.services.conversation import ConversationEngine
from birthbot.services.delivery import DeliveryClient
from birthbot.services.error_classifier import ErrorClassifier, Severity
from birthbot.services.http_client import create_httpx_client
from birthbot.services.outbound import ButtonMessage, ListMessage, TextMessage
from birthbot.services.stores.sessions import ConversationSession
from tests.helpers.engine import (
    HAPPY_PATH_ANSWERS,
    ONBOARDING,
    RecordingDelivery,
    drive,
    events_for,
    gateway_error,
    tap,
    text,
)

CID = "919812345678"
MOBILE = "9876543210"

S = ConversationState


async def _to_confirm(engine, cid=CID, answers=HAPPY_PATH_ANSWERS):
    return await drive(engine, events_for(cid, ONBOARDING + answers))


def _otp_from(delivery, recipient):
    body = delivery.bodies(recipient)[-1]
    return re.search(r"\b(\d{6})\b", body).group(1)


# ---- Happy path ----


@pytest.mark.asyncio
async def test_happy_path_creates_one_record(engine, sessions, applications, delivery):
    results = await _to_confirm(engine)
    assert results[-1].state == S.CONFIRM_DETAILS
    confirm = delivery.last
    assert isinstance(confirm, ButtonMessage)
    assert "Aanya Sharma" in confirm.body
    assert "Hospital - IGMC Shimla" in confirm.body
    assert "Male" in confirm.body

    [result] = await drive(engine, [tap(CID, "confirm_yes")])

    assert result.state == S.MAIN_MENU
    assert result.record_id is not None
    records = applications.get_all()
    assert len(records) == 1
    record = records[0]
    assert record.record_id == result.record_id
    assert record.record_id.startswith("BC")
    assert dict(record.fields) == {
        "child_name": "Aanya Sharma",
        "dob": "15/01/2024",
        "gender": "male",
        "father_name": "Rajesh Sharma",
        "mother_name": "Priya Sharma",
        "place_of_birth": "hospital",
        "hospital_name": "IGMC Shimla",
        "address": "House 12, Shimla, HP - 171001",
        "mobile": MOBILE,
    }

    session = sessions.get(CID)
    assert session.state == S.MAIN_MENU
    assert session.fields == {}
    assert record.record_id in delivery.last.body


@pytest.mark.asyncio
async def test_onboarding_messages(engine, delivery):
    results = await drive(engine, events_for(CID, ONBOARDING))
    assert [r.state for r in results] == [
        S.LANGUAGE_SELECTION,
        S.CONSENT,
        S.DOCS_INFO,
        S.MAIN_MENU,
        S.COLLECT_CHILD_NAME,
    ]
    messages = [m for _, m in delivery.sent]
    assert isinstance(messages[0], ButtonMessage)
    assert [b.id for b in messages[0].buttons] == ["lang_en", "lang_hi"]
    assert isinstance(messages[3], ListMessage)
    assert "full name of the child" in messages[4].body


@pytest.mark.asyncio
async def test_hindi_locale_used_after_selection(engine, sessions, delivery):
    await drive(engine, [text(CID, "Hi"), tap(CID, "lang_hi")])
    assert sessions.get(CID).locale == Locale.HI
    assert "सहमति" in delivery.last.body


@pytest.mark.asyncio
async def test_home_birth_skips_hospital_name(engine, sessions, delivery):
    answers = [
        ("text", "Aanya Sharma"),
        ("text", "15/01/2024"),
        ("tap", "gender_female"),
        ("text", "Rajesh Sharma"),
        ("text", "Priya Sharma"),
        ("tap", "place_home"),
    ]
    results = await drive(engine, events_for(CID, ONBOARDING + answers))
    assert results[-1].state == S.COLLECT_ADDRESS

    await drive(engine, [text(CID, "Village Kufri, Shimla"), text(CID, MOBILE)])
    session = sessions.get(CID)
    assert session.state == S.CONFIRM_DETAILS
    assert "hospital_name" not in session.fields
    assert "Place of Birth: Home" in delivery.last.body


@pytest.mark.asyncio
async def test_decline_at_confirmation_discards(engine, sessions, applications, delivery):
    await _to_confirm(engine)
    [result] = await drive(engine, [tap(CID, "confirm_no")])

    assert result.state is None
    assert sessions.get(CID) is None
    assert applications.get_all() == []
    assert "Application cancelled" in delivery.last.body


@pytest.mark.asyncio
async def test_consent_decline_resets_session(engine, sessions, delivery):
    results = await drive(engine, [text(CID, "Hi"), tap(CID, "lang_en"), tap(CID, "consent_decline")])
    assert results[-1].state is None
    assert sessions.get(CID) is None
    assert "not stored any of your details" in delivery.last.body

    # Next message starts over
    [again] = await drive(engine, [text(CID, "Hello")])
    assert again.state == S.LANGUAGE_SELECTION


@pytest.mark.asyncio
async def test_negated_consent_reprompts(engine, sessions):
    await drive(engine, [text(CID, "Hi"), tap(CID, "lang_en")])
    [result] = await drive(engine, [text(CID, "I do not agree")])

    assert result.state == S.CONSENT
    assert result.error_code == "INVALID_CHOICE"
    assert sessions.get(CID).consent_given is False


@pytest.mark.asyncio
async def test_negated_confirmation_creates_no_record(engine, sessions, applications):
    await _to_confirm(engine)
    [result] = await drive(engine, [text(CID, "don't submit")])

    assert result.state == S.CONFIRM_DETAILS
    assert result.record_id is None
    assert applications.get_all() == []
    assert sessions.get(CID).fields["child_name"] == "Aanya Sharma"


# ---- Invalid input ----


@pytest.mark.parametrize(
    "state,bad_input",
    [
        (S.COLLECT_CHILD_NAME, "   "),
        (S.COLLECT_DOB, "yesterday"),
        (S.COLLECT_GENDER, "maybe"),
        (S.COLLECT_FATHER_NAME, "x" * 201),
        (S.COLLECT_MOTHER_NAME, ""),
        (S.COLLECT_PLACE_OF_BIRTH, "on the moon"),
        (S.COLLECT_HOSPITAL_NAME, " "),
        (S.COLLECT_ADDRESS, ""),
        (S.COLLECT_MOBILE, "12345"),
    ],
)
@pytest.mark.asyncio
async def test_invalid_input_reprompts_without_state_change(
    engine, sessions, composer, delivery, state, bad_input
):
    session = ConversationSession(CID, state=state, consent_given=True, fields={"child_name": "Aanya"})
    sessions.upsert(session)

    [result] = await drive(engine, [text(CID, bad_input)])

    assert result.state == state
    assert result.error_code is not None
    stored = sessions.get(CID)
    assert stored.state == state
    assert stored.fields == {"child_name": "Aanya"}

    assert len(delivery.sent) == 1
    prefix = composer.render("invalid_input", "en", CID)
    expected = engine.prompt(session, prefix=prefix)
    assert delivery.last == expected
    assert delivery.last.body.startswith("❌")


@pytest.mark.asyncio
async def test_invalid_language_reprompts(engine, delivery):
    await drive(engine, [text(CID, "Hi"), text(CID, "French")])
    assert isinstance(delivery.last, ButtonMessage)
    assert delivery.last.body.startswith("❌")


# ---- Global commands ----


@pytest.mark.asyncio
async def test_help_keeps_state_and_fields(engine, sessions, delivery):
    await drive(engine, events_for(CID, ONBOARDING + HAPPY_PATH_ANSWERS[:2]))
    [result] = await drive(engine, [text(CID, "HELP")])

    assert result.state == S.COLLECT_GENDER
    assert sessions.get(CID).fields["dob"] == "15/01/2024"
    assert "Help & Support" in delivery.last.body


@pytest.mark.asyncio
async def test_help_works_before_consent(engine, sessions, delivery):
    await drive(engine, [text(CID, "Hi"), text(CID, "help")])
    assert sessions.get(CID).state == S.LANGUAGE_SELECTION
    assert "Help & Support" in delivery.last.body


@pytest.mark.asyncio
async def test_menu_mid_collection_returns_to_menu(engine, sessions, delivery):
    await drive(engine, events_for(CID, ONBOARDING + HAPPY_PATH_ANSWERS[:3]))
    [result] = await drive(engine, [text(CID, "Menu")])

    assert result.state == S.MAIN_MENU
    session = sessions.get(CID)
    assert session.state == S.MAIN_MENU
    assert session.fields == {}
    assert isinstance(delivery.last, ListMessage)


@pytest.mark.asyncio
async def test_menu_before_consent_is_ordinary_input(engine, sessions, delivery):
    await drive(engine, [text(CID, "Hi"), tap(CID, "lang_en")])
    [result] = await drive(engine, [text(CID, "menu")])

    assert result.state == S.CONSENT
    assert sessions.get(CID).state == S.CONSENT
    assert delivery.last.body.startswith("❌")


@pytest.mark.asyncio
async def test_cancel_during_collection_discards(engine, sessions, applications, delivery):
    await drive(engine, events_for(CID, ONBOARDING + HAPPY_PATH_ANSWERS[:4]))
    [result] = await drive(engine, [text(CID, "cancel")])

    assert result.state is None
    assert sessions.get(CID) is None
    assert applications.get_all() == []
    assert "Application cancelled" in delivery.last.body


@pytest.mark.asyncio
async def test_cancel_at_main_menu_is_ordinary_input(engine, sessions, delivery):
    await drive(engine, events_for(CID, ONBOARDING[:4]))
    [result] = await drive(engine, [text(CID, "cancel")])
    assert result.state == S.MAIN_MENU
    assert sessions.get(CID) is not None
    assert delivery.last.body.startswith("❌")


# ---- Menu options ----


@pytest.mark.asyncio
async def test_status_without_applications(engine, delivery):
    await drive(engine, events_for(CID, ONBOARDING[:4]))
    [result] = await drive(engine, [tap(CID, "menu_status")])
    assert result.state == S.MAIN_MENU
    assert "no applications yet" in delivery.last.body


@pytest.mark.asyncio
async def test_status_shows_latest_application(engine, delivery):
    await _to_confirm(engine)
    [submitted] = await drive(engine, [tap(CID, "confirm_yes")])
    [result] = await drive(engine, [text(CID, "2")])

    assert result.state == S.MAIN_MENU
    assert submitted.record_id in delivery.last.body
    assert "Status: Submitted" in delivery.last.body


@pytest.mark.asyncio
async def test_download_and_help_options(engine, delivery):
    await drive(engine, events_for(CID, ONBOARDING[:4]))
    await drive(engine, [tap(CID, "menu_download")])
    assert "coming soon" in delivery.last.body
    [result] = await drive(engine, [tap(CID, "menu_help")])
    assert result.state == S.MAIN_MENU
    assert "Help & Support" in delivery.last.body


@pytest.mark.asyncio
async def test_second_application_after_submit(engine, applications):
    await _to_confirm(engine)
    await drive(engine, [tap(CID, "confirm_yes")])
    await drive(engine, events_for(CID, [("tap", "menu_apply")] + HAPPY_PATH_ANSWERS + [("tap", "confirm_yes")]))
    records = applications.list_for(CID)
    assert len(records) == 2
    assert records[0].record_id < records[1].record_id


# ---- OTP verification ----


@pytest.mark.asyncio
async def test_otp_flow(otp_engine, sessions, delivery):
    results = await _to_confirm(otp_engine)
    assert results[-1].state == S.VERIFY_OTP
    recipient = f"91{MOBILE}"
    assert delivery.bodies(recipient), "OTP should be sent to the applicant's mobile"
    assert MOBILE in delivery.last.body

    code = _otp_from(delivery, recipient)
    [result] = await drive(otp_engine, [text(CID, code)])
    assert result.state == S.CONFIRM_DETAILS
    assert sessions.get(CID).fields["mobile"] == MOBILE


@pytest.mark.asyncio
async def test_otp_mismatch_keeps_state(otp_engine, sessions, delivery, composer):
    await _to_confirm(otp_engine)
    code = _otp_from(delivery, f"91{MOBILE}")
    wrong = f"{(int(code) + 1) % 1_000_000:06d}"

    [result] = await drive(otp_engine, [text(CID, wrong)])
    assert result.state == S.VERIFY_OTP
    assert result.error_code == "OTP_ERROR"
    assert delivery.last.body == composer.error_message("OTP_ERROR", "en")

    # The outstanding code still works
    [result] = await drive(otp_engine, [text(CID, code)])
    assert result.state == S.CONFIRM_DETAILS


@pytest.mark.asyncio
async def test_otp_guessing_stops_after_max_attempts(otp_engine, otp_service, delivery, composer):
    await _to_confirm(otp_engine)
    recipient = f"91{MOBILE}"
    code = _otp_from(delivery, recipient)
    wrong = f"{(int(code) + 1) % 1_000_000:06d}"

    results = await drive(otp_engine, [text(CID, wrong)] * otp_service.max_attempts)
    assert results[-1].error_code == "OTP_ATTEMPTS_EXCEEDED"
    assert delivery.last.body == composer.error_message("OTP_ATTEMPTS_EXCEEDED", "en")

    [result] = await drive(otp_engine, [text(CID, code)])
    assert result.state == S.VERIFY_OTP
    assert result.error_code == "OTP_ERROR"

    await drive(otp_engine, [text(CID, "RESEND")])
    [result] = await drive(otp_engine, [text(CID, _otp_from(delivery, recipient))])
    assert result.state == S.CONFIRM_DETAILS


@pytest.mark.asyncio
async def test_malformed_otp_reprompts(otp_engine, delivery):
    await _to_confirm(otp_engine)
    [result] = await drive(otp_engine, [text(CID, "12ab")])
    assert result.state == S.VERIFY_OTP
    assert result.error_code == "INVALID_OTP_FORMAT"
    assert delivery.last.body.startswith("❌")


@pytest.mark.asyncio
async def test_otp_expiry_and_resend(otp_engine, delivery, composer):
    with freeze_time("2024-01-15 10:00:00") as frozen:
        await _to_confirm(otp_engine)
        recipient = f"91{MOBILE}"
        code = _otp_from(delivery, recipient)

        frozen.tick(delta=timedelta(seconds=301))
        [result] = await drive(otp_engine, [text(CID, code)])
        assert result.state == S.VERIFY_OTP
        assert result.error_code == "OTP_EXPIRED"
        assert delivery.last.body == composer.error_message("OTP_EXPIRED", "en")

        sent_before = len(delivery.bodies(recipient))
        [result] = await drive(otp_engine, [text(CID, "RESEND")])
        assert result.state == S.VERIFY_OTP
        assert len(delivery.bodies(recipient)) == sent_before + 1

        new_code = _otp_from(delivery, recipient)
        [result] = await drive(otp_engine, [text(CID, new_code)])
        assert result.state == S.CONFIRM_DETAILS


# ---- Delivery failures ----


@pytest.mark.asyncio
async def test_client_error_sends_one_notice(sessions, composer, composer_engine_factory):
    delivery = RecordingDelivery(failures=[gateway_error(400)])
    engine = composer_engine_factory(delivery)

    [result] = await drive(engine, [text(CID, "Hi")])

    assert result.error_code == "META_API_400"
    assert len(delivery.attempts) == 2
    assert delivery.bodies() == [composer.error_message("DEFAULT", "en")]
    # State already saved before sending
    assert sessions.get(CID).state == S.LANGUAGE_SELECTION


@pytest.mark.asyncio
async def test_auth_error_notice_keeps_session(sessions, composer, composer_engine_factory, caplog):
    delivery = RecordingDelivery(failures=[gateway_error(401)])
    engine = composer_engine_factory(delivery)

    with caplog.at_level("ERROR"):
        [result] = await drive(engine, [text(CID, "Hi")])

    assert result.error_code == "META_API_401"
    assert delivery.bodies() == [composer.error_message("META_API_401", "en")]
    assert sessions.get(CID) is not None
    classified = [r for r in caplog.records if getattr(r, "code", None) == "META_API_401"]
    assert classified and classified[0].severity == Severity.HIGH.value


@pytest.mark.asyncio
async def test_server_error_surfaces_without_resend(composer, composer_engine_factory):
    delivery = RecordingDelivery(failures=[gateway_error(500)])
    engine = composer_engine_factory(delivery)

    [result] = await drive(engine, [text(CID, "Hi")])

    # The prompt once, then the notice
    assert len(delivery.attempts) == 2
    assert result.error_code == "META_API_500"
    assert result.retryable is True
    assert result.sent == [TextMessage(composer.error_message("META_API_500", "en"))]


@pytest.mark.asyncio
async def test_retry_eligibility_capped_per_conversant(composer_engine_factory):
    delivery = RecordingDelivery(failures=[gateway_error(500), None] * 4)
    engine = composer_engine_factory(delivery)

    results = await drive(engine, [text(CID, "Hi")] * 4)

    assert [r.retryable for r in results] == [True, True, True, False]


@pytest.mark.asyncio
async def test_persistent_server_error_stays_within_delivery_retries(sessions, applications, composer):
    requests = []
    sleeps = []

    def handler(request):
        requests.append(request)
        return httpx.Response(500, json={"error": {"message": "Internal"}})

    async def record_sleep(delay):
        sleeps.append(delay)

    gateway = DeliveryClient(
        access_token="token",
        phone_number_id="12345",
        dry_run=False,
        sleep=record_sleep,
        client_factory=lambda: create_httpx_client(transport=httpx.MockTransport(handler)),
    )
    alert_sink = MagicMock(spec=OperatorAlertSink)
    engine = ConversationEngine(
        sessions=sessions,
        applications=applications,
        delivery=gateway,
        classifier=ErrorClassifier(composer, alert_sink=alert_sink),
        composer=composer,
    )

    result = await engine.handle(text(CID, "Hi"))

    # Prompt: 1 + 3 retries; notice: 1 + 3 retries
    assert len(requests) == 8
    assert sleeps == [2.0, 4.0, 6.0, 2.0, 4.0, 6.0]
    assert alert_sink.notify.call_count == 1
    assert result.error_code == "META_API_500"
    assert result.sent == []
    assert sessions.get(CID).state == S.LANGUAGE_SELECTION


@pytest.mark.asyncio
async def test_unexpected_error_answers_with_default(engine, sessions, applications, delivery, composer, monkeypatch):
    await _to_confirm(engine)

    def broken_create(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(applications, "create", broken_create)
    [result] = await drive(engine, [tap(CID, "confirm_yes")])

    assert result.error_code == "DEFAULT"
    assert delivery.last == TextMessage(composer.error_message("DEFAULT", "en"))
    # Nothing was saved, so the conversant can confirm again
    assert sessions.get(CID).state == S.CONFIRM_DETAILS
    assert sessions.get(CID).fields["mobile"] == MOBILE


@pytest.mark.asyncio
async def test_conversants_are_independent(engine, sessions):
    other = "919811111111"
    await drive(engine, events_for(CID, ONBOARDING))
    await drive(engine, [text(other, "Hi")])
    assert sessions.get(CID).state == S.COLLECT_CHILD_NAME
    assert sessions.get(other).state == S.LANGUAGE_SELECTION


@pytest.fixture
def composer_engine_factory(sessions, applications, classifier, composer):
    def factory(delivery):
        return ConversationEngine(
            sessions=sessions,
            applications=applications,
            delivery=delivery,
            classifier=classifier,
            composer=composer,
        )

    return factory
