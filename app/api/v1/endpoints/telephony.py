"""LiveKit telephony webhook and call diagnostics."""

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from app.api.deps import get_call_store, get_session_service, get_webhook_verifier
from app.core.config import settings
from app.core.errors import ServiceError
from app.core.logging import get_logger
from app.models.telephony_call import TelephonyCall
from app.schemas.events import CanonicalEvent
from app.schemas.telephony import CallResponse, OkResponse
from app.services.call_store import CallStore
from app.services.event_normalizer import normalize_livekit_event
from app.services.livekit_service import LiveKitWebhookVerifier, WebhookVerificationError
from app.services.telephony_session_service import TelephonySessionService

logger = get_logger(__name__)

router = APIRouter()


async def process_livekit_event(session_service: TelephonySessionService, event: CanonicalEvent) -> None:
    """Apply a verified event after the webhook has been acknowledged."""
    try:
        result = await session_service.handle(event)
    except Exception as e:
        logger.error(
            "telephony_webhook_processing_failed",
            event_id=event.event_id,
            livekit_event=event.event,
            room_name=event.room_name,
            error=str(e),
        )
        return

    logger.info(
        "telephony_webhook_processed",
        event_id=event.event_id,
        livekit_event=event.event,
        room_name=event.room_name,
        first_seen=result.first_seen,
        ignored_reason=result.ignored_reason,
        dispatch_attempted=result.dispatch_attempted,
        dispatch_succeeded=result.dispatch_succeeded,
        call_id=result.call_id,
    )


@router.post("/livekit-webhook", response_model=OkResponse)
async def livekit_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    authorization: str = Header(None),
    verifier: LiveKitWebhookVerifier = Depends(get_webhook_verifier),
    session_service: TelephonySessionService = Depends(get_session_service),
):
    """Handle LiveKit room/participant webhooks.

    Acknowledges as soon as the signature is verified; admission and agent
    dispatch run after the response is sent. LiveKit redelivers on non-2xx,
    and duplicates are dropped by the idempotency ledger.
    """
    if not settings.telephony_enabled:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Telephony is disabled"},
        )

    body = await request.body()
    if not body:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "Empty webhook body")

    try:
        payload = verifier.verify_and_decode(body, authorization)
    except WebhookVerificationError as e:
        logger.warning("telephony_webhook_invalid_signature", error=str(e))
        content = {"error": "Invalid webhook signature"}
        if not settings.is_production:
            content["details"] = str(e)
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=content)

    event = normalize_livekit_event(payload)
    logger.info(
        "telephony_webhook_received",
        event_id=event.event_id,
        event_id_derived=event.event_id_derived,
        livekit_event=event.event,
        room_name=event.room_name,
    )

    background_tasks.add_task(process_livekit_event, session_service, event)
    return OkResponse()


def _require_diagnostics() -> None:
    if settings.is_production:
        raise ServiceError(status.HTTP_404_NOT_FOUND, "Not found")


def _call_response(call: TelephonyCall) -> CallResponse:
    return CallResponse.model_validate(call)


@router.get("/calls/by-room/{room_name}", response_model=CallResponse, dependencies=[Depends(_require_diagnostics)])
async def get_call_by_room(room_name: str, call_store: CallStore = Depends(get_call_store)) -> CallResponse:
    """Look up a call by LiveKit room (non-production only)."""
    call = await call_store.get_by_room(room_name)
    if call is None:
        raise ServiceError(status.HTTP_404_NOT_FOUND, "Call not found")
    return _call_response(call)


@router.get("/calls/{call_id}", response_model=CallResponse, dependencies=[Depends(_require_diagnostics)])
async def get_call(call_id: str, call_store: CallStore = Depends(get_call_store)) -> CallResponse:
    """Look up a call by id (non-production only)."""
    call = await call_store.get(call_id)
    if call is None:
        raise ServiceError(status.HTTP_404_NOT_FOUND, "Call not found")
    return _call_response(call)
