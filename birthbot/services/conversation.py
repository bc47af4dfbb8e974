"""
Conversation engine - turns inbound events into session updates and replies.

One event is processed at a time per conversant (ConversantLocks). For each
event the engine:
1. Handles global commands (menu, help, cancel)
2. Interprets the input for the current state (validators)
3. Re-prompts on invalid input without changing state
4. Otherwise looks up the transition, runs its action, saves the session,
   and only then sends the outbound message(s)

Delivery failures that survive the delivery client's retries are classified
once and the conversant gets one localized error notice; whether the send may
be tried again is reported on the TurnResult, never re-run here.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from birthbot.constants.event_types import (
    EVENT_INVALID_INPUT,
    EVENT_SESSION_RESET,
    EVENT_TRANSITION,
)
from birthbot.constants.states import COLLECTION_STATES, ConversationState, Locale
from birthbot.services.delivery import DeliveryClient
from birthbot.services.error_classifier import ErrorClassifier, ErrorContext
from birthbot.services.errors import BotError, ErrorKind
from birthbot.services.inbound import InboundEvent
from birthbot.services.locks import ConversantLocks
from birthbot.services.message_composer import DEFAULT_ERROR_KEY, MessageComposer
from birthbot.services.otp import OtpService
from birthbot.services.outbound import (
    Button,
    ButtonMessage,
    ListMessage,
    ListRow,
    ListSection,
    OutboundMessage,
    TextMessage,
)
from birthbot.services.state_machine import (
    FIELD_FOR_STATE,
    Action,
    InputCategory,
    Transition,
    get_transition,
)
from birthbot.services.stores.applications import ApplicationStore
from birthbot.services.stores.sessions import ConversationSession, SessionStore
from birthbot.services.validators import (
    validate_continue,
    validate_dob,
    validate_gender,
    validate_language,
    validate_menu_option,
    validate_mobile,
    validate_place_of_birth,
    validate_text,
    validate_yes_no,
)

logger = logging.getLogger(__name__)

S = ConversationState
C = InputCategory

# Global commands (compared against the whole, lower-cased input)
MENU_COMMANDS = frozenset({"menu", "main menu", "मेनू"})
HELP_COMMANDS = frozenset({"help", "सहायता", "मदद"})
CANCEL_COMMANDS = frozenset({"cancel", "रद्द", "रद्द करें"})
RESEND_KEYWORDS = frozenset({"resend", "दोबारा भेजें"})

# Country prefix for sending the OTP to the applicant's mobile on WhatsApp
MOBILE_COUNTRY_CODE = "91"

TEXT_FIELD_STATES = {
    S.COLLECT_CHILD_NAME,
    S.COLLECT_FATHER_NAME,
    S.COLLECT_MOTHER_NAME,
    S.COLLECT_HOSPITAL_NAME,
    S.COLLECT_ADDRESS,
}

BUTTONS_FOR_STATE: dict[ConversationState, tuple[str, ...]] = {
    S.INITIAL: ("lang_en", "lang_hi"),
    S.LANGUAGE_SELECTION: ("lang_en", "lang_hi"),
    S.CONSENT: ("consent_accept", "consent_decline"),
    S.DOCS_INFO: ("docs_continue",),
    S.COLLECT_GENDER: ("gender_male", "gender_female", "gender_other"),
    S.COLLECT_PLACE_OF_BIRTH: ("place_hospital", "place_home", "place_other"),
    S.CONFIRM_DETAILS: ("confirm_yes", "confirm_no"),
}

PROMPT_FOR_STATE: dict[ConversationState, str] = {
    S.INITIAL: "welcome",
    S.LANGUAGE_SELECTION: "welcome",
    S.CONSENT: "consent",
    S.DOCS_INFO: "docs_info",
    S.MAIN_MENU: "main_menu",
    S.COLLECT_CHILD_NAME: "ask_child_name",
    S.COLLECT_DOB: "ask_dob",
    S.COLLECT_GENDER: "ask_gender",
    S.COLLECT_FATHER_NAME: "ask_father_name",
    S.COLLECT_MOTHER_NAME: "ask_mother_name",
    S.COLLECT_PLACE_OF_BIRTH: "ask_place_of_birth",
    S.COLLECT_HOSPITAL_NAME: "ask_hospital_name",
    S.COLLECT_ADDRESS: "ask_address",
    S.COLLECT_MOBILE: "ask_mobile",
    S.VERIFY_OTP: "ask_otp",
    S.CONFIRM_DETAILS: "confirm_details",
}

MENU_CATEGORIES = {
    "apply": C.APPLY,
    "status": C.STATUS,
    "download": C.DOWNLOAD,
    "help": C.HELP,
}


@dataclass
class Outgoing:
    message: OutboundMessage
    recipient: str | None = None  # None = the conversant


@dataclass
class TurnResult:
    """What one processed event did (returned for callers and tests)."""

    conversant_id: str
    previous_state: ConversationState
    state: ConversationState | None  # None when the session was reset
    action: str | None = None
    sent: list[OutboundMessage] = field(default_factory=list)
    record_id: str | None = None
    error_code: str | None = None
    retryable: bool = False  # classifier allows the caller to try the failed send again


def _normalize(raw: str) -> str:
    return " ".join((raw or "").strip().lower().split())


class ConversationEngine:
    def __init__(
        self,
        sessions: SessionStore,
        applications: ApplicationStore,
        delivery: DeliveryClient,
        classifier: ErrorClassifier,
        composer: MessageComposer,
        otp: OtpService | None = None,
        locks: ConversantLocks | None = None,
        otp_enabled: bool = False,
    ):
        self.sessions = sessions
        self.applications = applications
        self.delivery = delivery
        self.classifier = classifier
        self.composer = composer
        self.otp_enabled = otp_enabled
        self.otp = otp or OtpService()
        self.locks = locks or ConversantLocks()
        self._actions: dict[Action, Callable[..., list[Outgoing]]] = {
            Action.SEND_WELCOME: self._send_welcome,
            Action.SET_LOCALE: self._set_locale,
            Action.GRANT_CONSENT: self._grant_consent,
            Action.DECLINE_CONSENT: self._decline_consent,
            Action.SHOW_MENU: self._show_menu,
            Action.START_APPLICATION: self._start_application,
            Action.SHOW_STATUS: self._show_status,
            Action.SHOW_DOWNLOAD: self._show_download,
            Action.SHOW_HELP: self._show_help,
            Action.STORE_FIELD: self._store_field,
            Action.ISSUE_OTP: self._issue_otp,
            Action.RESEND_OTP: self._resend_otp,
            Action.CONFIRM_OTP: self._confirm_otp,
            Action.SUBMIT: self._submit,
            Action.DISCARD_APPLICATION: self._discard_application,
        }

    async def handle(self, event: InboundEvent) -> TurnResult:
        """
        Process one inbound event for its conversant.

        Never raises: unexpected failures are logged and answered with the
        generic error message.
        """
        async with self.locks.hold(event.conversant_id):
            session = self.sessions.get_or_create(event.conversant_id)
            result = TurnResult(event.conversant_id, session.state, session.state)
            try:
                await self._process(session, event, result)
            except Exception as e:
                logger.exception(
                    f"Unexpected error handling message from {event.conversant_id}: {e}"
                )
                result.error_code = DEFAULT_ERROR_KEY
                notice = TextMessage(self.composer.error_message(DEFAULT_ERROR_KEY, session.locale))
                await self._send_notice(session, notice, result)
            return result

    # ---- Dispatch ----

    async def _process(
        self, session: ConversationSession, event: InboundEvent, result: TurnResult
    ) -> None:
        raw = event.text
        command = _normalize(raw)

        if command in HELP_COMMANDS:
            result.action = Action.SHOW_HELP.value
            await self._send(session, self._show_help(session, None, session.state, result), result)
            return

        # Menu and cancel only apply once consent is given (the menu can't skip it)
        if session.consent_given and command in MENU_COMMANDS:
            await self._force_menu(session, result)
            return
        if session.consent_given and command in CANCEL_COMMANDS and session.state in COLLECTION_STATES:
            await self._cancel(session, result)
            return

        try:
            category, value = self._interpret(session, raw)
        except BotError as error:
            if error.kind == ErrorKind.VALIDATION:
                await self._reprompt(session, error, result)
                return
            if error.kind == ErrorKind.DOMAIN_VERIFICATION:
                classified = self.classifier.classify(
                    error,
                    ErrorContext(session.conversant_id, session.state, "interpret", session.locale),
                )
                result.error_code = classified.code
                await self._send(session, [Outgoing(TextMessage(classified.user_message))], result)
                return
            raise

        transition = get_transition(session.state, category)
        await self._apply(session, transition, value, result)

    async def _apply(
        self,
        session: ConversationSession,
        transition: Transition,
        value: Any,
        result: TurnResult,
    ) -> None:
        previous = session.state
        session.state = transition.next_state
        outgoing = self._actions[transition.action](session, value, previous, result)

        if transition.reset:
            self.sessions.delete(session.conversant_id)
            result.state = None
            logger.info(
                f"Session reset for {session.conversant_id} ({transition.action})",
                extra={"event_type": EVENT_SESSION_RESET, "conversant_id": session.conversant_id},
            )
        else:
            self.sessions.upsert(session)
            result.state = session.state

        result.action = transition.action.value
        logger.info(
            f"{session.conversant_id}: {previous} -> {transition.next_state} ({transition.action})",
            extra={
                "event_type": EVENT_TRANSITION,
                "conversant_id": session.conversant_id,
                "from_state": previous.value,
                "to_state": transition.next_state.value,
                "action": transition.action.value,
            },
        )
        await self._send(session, outgoing, result)

    def _interpret(self, session: ConversationSession, raw: str) -> tuple[InputCategory, Any]:
        """
        Map raw input to (category, value) for the current state.

        Raises:
            BotError: VALIDATION for input the state can't accept,
                DOMAIN_VERIFICATION for a wrong or expired OTP
        """
        state = session.state
        if state == S.INITIAL:
            return C.ANY, None
        if state == S.LANGUAGE_SELECTION:
            return C.VALUE, validate_language(raw)
        if state in (S.CONSENT, S.CONFIRM_DETAILS):
            return (C.ACCEPT if validate_yes_no(raw) else C.DECLINE), None
        if state == S.DOCS_INFO:
            validate_continue(raw)
            return C.CONTINUE, None
        if state == S.MAIN_MENU:
            return MENU_CATEGORIES[validate_menu_option(raw)], None
        if state in TEXT_FIELD_STATES:
            return C.VALUE, validate_text(raw, FIELD_FOR_STATE[state])
        if state == S.COLLECT_DOB:
            return C.VALUE, validate_dob(raw)
        if state == S.COLLECT_GENDER:
            return C.VALUE, validate_gender(raw)
        if state == S.COLLECT_PLACE_OF_BIRTH:
            place = validate_place_of_birth(raw)
            return (C.HOSPITAL if place == "hospital" else C.NON_HOSPITAL), place
        if state == S.COLLECT_MOBILE:
            return (C.VALUE_VERIFY if self.otp_enabled else C.VALUE), validate_mobile(raw)
        if state == S.VERIFY_OTP:
            if _normalize(raw) in RESEND_KEYWORDS:
                return C.RESEND, None
            self.otp.verify(session.conversant_id, raw)
            return C.VALUE, None
        raise BotError.configuration(f"No input interpreter for state {state}")

    # ---- Global commands ----

    async def _force_menu(self, session: ConversationSession, result: TurnResult) -> None:
        if session.state == S.VERIFY_OTP:
            self.otp.discard(session.conversant_id)
        session.state = S.MAIN_MENU
        session.fields = {}
        self.sessions.upsert(session)
        result.state = session.state
        result.action = Action.SHOW_MENU.value
        await self._send(session, [Outgoing(self.prompt(session))], result)

    async def _cancel(self, session: ConversationSession, result: TurnResult) -> None:
        self.otp.discard(session.conversant_id)
        self.sessions.delete(session.conversant_id)
        result.state = None
        result.action = Action.DISCARD_APPLICATION.value
        logger.info(
            f"Application cancelled by {session.conversant_id}",
            extra={"event_type": EVENT_SESSION_RESET, "conversant_id": session.conversant_id},
        )
        await self._send(session, [Outgoing(self._text("application_cancelled", session))], result)

    async def _reprompt(
        self, session: ConversationSession, error: BotError, result: TurnResult
    ) -> None:
        logger.info(
            f"Invalid input from {session.conversant_id} in {session.state}: {error.code}",
            extra={
                "event_type": EVENT_INVALID_INPUT,
                "conversant_id": session.conversant_id,
                "state": session.state.value,
                "code": error.code,
            },
        )
        result.error_code = error.code
        prefix = self.composer.render("invalid_input", session.locale, session.conversant_id)
        await self._send(session, [Outgoing(self.prompt(session, prefix=prefix))], result)

    # ---- Prompts ----

    def prompt(self, session: ConversationSession, prefix: str | None = None) -> OutboundMessage:
        """The message asking for the current state's input (optionally prefixed)."""
        state = session.state
        body = self.composer.render(
            PROMPT_FOR_STATE[state],
            session.locale,
            session.conversant_id,
            **self._prompt_values(session),
        )
        if prefix:
            body = f"{prefix}\n\n{body}"

        if state == S.MAIN_MENU:
            title, rows = self.composer.menu_rows(session.locale)
            return ListMessage(
                body=body,
                button=self.composer.render("menu_button", session.locale),
                sections=(
                    ListSection(
                        title=title,
                        rows=tuple(ListRow(row_id, row_title, desc) for row_id, row_title, desc in rows),
                    ),
                ),
            )
        if state in BUTTONS_FOR_STATE:
            return ButtonMessage(
                body=body,
                buttons=tuple(
                    Button(button_id, self.composer.button_label(button_id, session.locale))
                    for button_id in BUTTONS_FOR_STATE[state]
                ),
            )
        return TextMessage(body)

    def _prompt_values(self, session: ConversationSession) -> dict[str, str]:
        if session.state == S.VERIFY_OTP:
            return {"mobile": session.fields.get("mobile", "")}
        if session.state == S.CONFIRM_DETAILS:
            return self.confirmation_values(session.fields, session.locale)
        return {}

    def confirmation_values(self, fields: dict[str, str], locale: Locale | str) -> dict[str, str]:
        """Field values formatted for the confirmation summary."""
        place = self.composer.label("place_of_birth", fields.get("place_of_birth", ""), locale)
        if fields.get("place_of_birth") == "hospital" and fields.get("hospital_name"):
            place = f"{place} - {fields['hospital_name']}"
        return {
            "child_name": fields.get("child_name", ""),
            "dob": fields.get("dob", ""),
            "gender": self.composer.label("gender", fields.get("gender", ""), locale),
            "father_name": fields.get("father_name", ""),
            "mother_name": fields.get("mother_name", ""),
            "place_of_birth": place,
            "address": fields.get("address", ""),
            "mobile": fields.get("mobile", ""),
        }

    def _text(self, key: str, session: ConversationSession, **values: Any) -> TextMessage:
        return TextMessage(self.composer.render(key, session.locale, session.conversant_id, **values))

    # ---- Actions ----
    # Each takes (session, interpreted value, state before the transition);
    # session.state is already the next state.

    def _send_welcome(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self.prompt(session))]

    def _set_locale(self, session, value, previous, result) -> list[Outgoing]:
        session.locale = value
        return [Outgoing(self.prompt(session))]

    def _grant_consent(self, session, value, previous, result) -> list[Outgoing]:
        session.consent_given = True
        return [Outgoing(self.prompt(session))]

    def _decline_consent(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self._text("consent_declined", session))]

    def _show_menu(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self.prompt(session))]

    def _start_application(self, session, value, previous, result) -> list[Outgoing]:
        session.fields = {}
        return [Outgoing(self._text("start_application", session))]

    def _show_status(self, session, value, previous, result) -> list[Outgoing]:
        records = self.applications.list_for(session.conversant_id)
        if not records:
            return [Outgoing(self._text("status_none", session))]
        latest = records[-1]
        return [
            Outgoing(
                self._text(
                    "status_latest",
                    session,
                    record_id=latest.record_id,
                    status=self.composer.label("status", latest.status, session.locale),
                    submitted_on=latest.submitted_at.strftime("%d/%m/%Y"),
                )
            )
        ]

    def _show_download(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self._text("download_coming_soon", session))]

    def _show_help(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self._text("help", session))]

    def _store_field(self, session, value, previous, result) -> list[Outgoing]:
        session.fields[FIELD_FOR_STATE[previous]] = value
        if previous == S.COLLECT_PLACE_OF_BIRTH and value != "hospital":
            session.fields.pop("hospital_name", None)
        return [Outgoing(self.prompt(session))]

    def _issue_otp(self, session, value, previous, result) -> list[Outgoing]:
        session.fields["mobile"] = value
        return self._resend_otp(session, value, previous, result)

    def _resend_otp(self, session, value, previous, result) -> list[Outgoing]:
        code = self.otp.issue(session.conversant_id)
        mobile = session.fields["mobile"]
        return [
            Outgoing(self._text("otp_message", session, otp=code), recipient=f"{MOBILE_COUNTRY_CODE}{mobile}"),
            Outgoing(self.prompt(session)),
        ]

    def _confirm_otp(self, session, value, previous, result) -> list[Outgoing]:
        return [Outgoing(self.prompt(session))]

    def _submit(self, session, value, previous, result) -> list[Outgoing]:
        # Record first: if the write fails the session is still at CONFIRM_DETAILS
        record_id = self.applications.create(session.conversant_id, dict(session.fields))
        result.record_id = record_id
        session.fields = {}
        return [Outgoing(self._text("application_submitted", session, record_id=record_id))]

    def _discard_application(self, session, value, previous, result) -> list[Outgoing]:
        self.otp.discard(session.conversant_id)
        return [Outgoing(self._text("application_cancelled", session))]

    # ---- Delivery ----

    async def _send(
        self, session: ConversationSession, outgoing: list[Outgoing], result: TurnResult
    ) -> None:
        for item in outgoing:
            await self._deliver(session, item, result)

    async def _deliver(self, session: ConversationSession, item: Outgoing, result: TurnResult) -> bool:
        """
        Send one message; on final failure classify it and notify the conversant once.

        The delivery client has already spent its retries, so a retryable
        classification is only reported on the result for the caller.
        """
        recipient = item.recipient or session.conversant_id
        context = ErrorContext(session.conversant_id, session.state, result.action, session.locale)
        try:
            await self.delivery.send(recipient, item.message)
        except BotError as error:
            classified = self.classifier.classify(error, context)
            result.error_code = classified.code
            result.retryable = classified.retryable
            await self._send_notice(session, TextMessage(classified.user_message), result)
            return False
        result.sent.append(item.message)
        return True

    async def _send_notice(
        self, session: ConversationSession, notice: TextMessage, result: TurnResult
    ) -> None:
        try:
            await self.delivery.send(session.conversant_id, notice)
            result.sent.append(notice)
        except BotError as error:
            logger.error(
                f"Could not deliver error notice to {session.conversant_id}: {error.code}",
                extra={"conversant_id": session.conversant_id, "code": error.code},
            )
