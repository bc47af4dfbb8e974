import logging

from fastapi import APIRouter, Depends, HTTPException

from birthbot.api.auth import get_admin_auth
from birthbot.constants.providers import PROVIDER_WEB_FORM
from birthbot.schemas.applications import (
    ApplicationListResponse,
    ApplicationRecordResponse,
    ApplicationSubmission,
    SubmissionResponse,
)
from birthbot.services.error_classifier import ErrorContext
from birthbot.services.errors import BotError
from birthbot.services.outbound import TextMessage
from birthbot.services.runtime import get_runtime
from birthbot.services.stores.applications import ApplicationRecord

logger = logging.getLogger(__name__)

router = APIRouter()

UNKNOWN_PHONE = "unknown"


def _record_response(record: ApplicationRecord) -> ApplicationRecordResponse:
    return ApplicationRecordResponse(
        record_id=record.record_id,
        conversant_id=record.conversant_id,
        channel=record.channel,
        status=record.status,
        submitted_at=record.submitted_at,
        fields=dict(record.fields),
    )


@router.post("/api/submit-application", response_model=SubmissionResponse)
async def submit_application(submission: ApplicationSubmission):
    """
    Accept an application from the web form and confirm it over WhatsApp.

    The confirmation is skipped when no phone number came with the form; a
    failed confirmation is classified and logged but does not fail the request.
    """
    runtime = get_runtime()
    phone = submission.phone_number
    has_phone = bool(phone) and phone != UNKNOWN_PHONE
    conversant_id = phone if has_phone else PROVIDER_WEB_FORM

    record_id = runtime.applications.create(
        conversant_id, submission.record_fields(), channel=PROVIDER_WEB_FORM
    )

    if has_phone:
        engine = runtime.engine
        session = runtime.sessions.get(phone)
        locale = session.locale if session else None
        message = TextMessage(
            engine.composer.render(
                "form_submission_confirmed",
                locale,
                record_id=record_id,
                child_name=submission.child_name,
                dob=submission.dob,
                district=submission.district or "-",
            )
        )
        try:
            await runtime.delivery.send(phone, message)
        except BotError as error:
            engine.classifier.classify(
                error, ErrorContext(conversant_id=phone, action="form_confirmation", locale=locale)
            )

    return SubmissionResponse(
        success=True,
        application_id=record_id,
        message="Application submitted successfully",
    )


@router.get("/applications", response_model=ApplicationListResponse)
def list_applications(_: bool = Depends(get_admin_auth)):
    records = get_runtime().applications.get_all()
    return ApplicationListResponse(
        total=len(records),
        applications=[_record_response(r) for r in records],
    )


@router.get("/applications/{record_id}", response_model=ApplicationRecordResponse)
def get_application(record_id: str, _: bool = Depends(get_admin_auth)):
    record = get_runtime().applications.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return _record_response(record)
