import asyncio
import hmac
import json
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from birthbot.constants.event_types import (
    EVENT_WHATSAPP_DUPLICATE,
    EVENT_WHATSAPP_MESSAGE,
    EVENT_WHATSAPP_WEBHOOK_FAILURE,
)
from birthbot.constants.providers import PROVIDER_WHATSAPP
from birthbot.core.config import settings
from birthbot.middleware.correlation_id import get_correlation_id, set_correlation_id
from birthbot.services.inbound import InboundEvent, parse_gateway_payload
from birthbot.services.metrics import record_duplicate_event
from birthbot.services.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter()


def _wa_error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"received": False, "error": error})


@router.get("/whatsapp")
def whatsapp_verify(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    token_ok = hub_verify_token is not None and hmac.compare_digest(
        hub_verify_token.encode(), settings.whatsapp_verify_token.encode()
    )
    if hub_mode == "subscribe" and token_ok:
        logger.info("WhatsApp webhook verified")
        return Response(content=hub_challenge or "", media_type="text/plain")
    logger.warning("WhatsApp webhook verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


async def _process_event(event: InboundEvent, correlation_id: str | None) -> None:
    """Background unit of work for one inbound event."""
    set_correlation_id(correlation_id)
    await get_runtime().engine.handle(event)


async def _process_batch(events: list[InboundEvent], correlation_id: str | None) -> None:
    """
    Handle every event of one webhook delivery concurrently.

    Tasks start in payload order, so the per-conversant locks keep one
    conversant's events in order while other conversants proceed.
    """
    outcomes = await asyncio.gather(
        *(_process_event(event, correlation_id) for event in events),
        return_exceptions=True,
    )
    for event, outcome in zip(events, outcomes):
        if isinstance(outcome, Exception):
            logger.error(
                f"Failed to process message {event.message_id} from {event.conversant_id}: {outcome}",
                exc_info=outcome,
                extra={"event_type": EVENT_WHATSAPP_WEBHOOK_FAILURE, "correlation_id": correlation_id},
            )


@router.post("/whatsapp")
async def whatsapp_inbound(request: Request, background_tasks: BackgroundTasks):
    correlation_id = get_correlation_id(request)

    try:
        payload = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON payload in WhatsApp webhook: {e}")
        return _wa_error_response(400, "Invalid JSON payload")

    if not isinstance(payload, dict):
        return _wa_error_response(400, "Invalid JSON payload")

    try:
        events = parse_gateway_payload(payload)
    except (AttributeError, TypeError) as e:
        # Malformed structure: acknowledge so the gateway doesn't redeliver it forever
        logger.error(
            f"Malformed WhatsApp payload: {e}",
            extra={"event_type": EVENT_WHATSAPP_WEBHOOK_FAILURE, "correlation_id": correlation_id},
        )
        return {"received": True, "events": 0, "duplicates": 0, "type": "malformed-payload"}

    dedup = get_runtime().dedup
    accepted: list[InboundEvent] = []
    duplicates = 0
    for event in events:
        if event.message_id and dedup.seen(f"{PROVIDER_WHATSAPP}:{event.message_id}"):
            duplicates += 1
            record_duplicate_event(EVENT_WHATSAPP_MESSAGE, event.message_id)
            logger.info(
                f"Skipping redelivered message {event.message_id} from {event.conversant_id}",
                extra={"event_type": EVENT_WHATSAPP_DUPLICATE, "correlation_id": correlation_id},
            )
            continue
        accepted.append(event)
        logger.info(
            f"Inbound {event.kind} message from {event.conversant_id}",
            extra={
                "event_type": EVENT_WHATSAPP_MESSAGE,
                "correlation_id": correlation_id,
                "conversant_id": event.conversant_id,
                "message_id": event.message_id,
            },
        )

    if accepted:
        background_tasks.add_task(_process_batch, accepted, correlation_id)
    return {"received": True, "events": len(accepted), "duplicates": duplicates}
