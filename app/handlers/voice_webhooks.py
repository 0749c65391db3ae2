"""
Telephony webhook endpoints.

The provider posts form-encoded call events here and expects a call-control
document (or plain ``OK`` for status callbacks) in return. A webhook never
answers with an error status: on failure the caller hears an apology.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, WebSocket
from fastapi.responses import Response

from app.config.constants import LOGGER_NAME, TERMINAL_CALL_STATUSES
from app.dependencies import CallServices, get_services, get_ws_services
from app.services.call_control import (
    media_stream_url,
    render_apology,
    render_gather,
    render_goodbye,
    render_media_stream,
)
from app.services.session_router import should_use_realtime

router = APIRouter()
logger = logging.getLogger(LOGGER_NAME)

ANONYMOUS_CALL = "anonymous"


def get_base_url(request: Request, services: CallServices) -> str:
    """Configured public URL if set, otherwise the URL the request came in on."""
    if services.settings.public_base_url:
        return services.settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def gather_url(base_url: str) -> str:
    return f"{base_url}/twilio-webhook-fallback/gather"


def twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


def new_room_name() -> str:
    return f"realtime-call-{secrets.token_hex(8)}"


@router.post("/twilio-webhook-realtime")
async def handle_incoming_call(
    request: Request,
    CallSid: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    services: CallServices = Depends(get_services),
):
    """
    Route an incoming call to the realtime bridge or the turn-based fallback.
    """
    settings = services.settings
    logger.info(f"[INCOMING CALL] CallSid: {CallSid}, From: {From}, To: {To}")

    try:
        base_url = get_base_url(request, services)
        if not should_use_realtime(CallSid, settings.realtime_enabled, settings.realtime_percentage):
            greeting = services.conversation.start(CallSid or ANONYMOUS_CALL)
            return twiml(render_gather(greeting, gather_url(base_url), settings.language))

        room = new_room_name()
        if services.room_service is not None:
            await services.room_service.create_room(
                room,
                metadata={"callSid": CallSid, "from": From, "to": To, "type": "realtime-call"},
            )
        stream_url = media_stream_url(base_url, room, CallSid)
        logger.info(f"[INCOMING CALL] Streaming call {CallSid} to {stream_url}")
        return twiml(render_media_stream(stream_url))

    except Exception as e:
        logger.error(
            f"[INCOMING CALL] Error processing incoming call - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {e}",
            exc_info=True,
        )
        return twiml(render_apology(settings.language))


@router.post("/twilio-webhook-fallback/gather")
async def handle_gather(
    request: Request,
    CallSid: Optional[str] = Form(None),
    SpeechResult: Optional[str] = Form(None),
    services: CallServices = Depends(get_services),
):
    """Answer one transcribed caller utterance on the fallback path."""
    language = services.settings.language
    call_id = CallSid or ANONYMOUS_CALL
    logger.info(
        f"[GATHER] CallSid: {CallSid}, SpeechResult length: {len(SpeechResult) if SpeechResult else 0}"
    )

    try:
        result = await services.conversation.handle_turn(call_id, SpeechResult)
        if result.end_call:
            return twiml(render_goodbye(result.text, language))
        return twiml(render_gather(result.text, gather_url(get_base_url(request, services)), language))

    except Exception as e:
        logger.error(
            f"[GATHER] Error processing speech input - CallSid: {CallSid}, Error: {type(e).__name__}: {e}",
            exc_info=True,
        )
        return twiml(render_apology(language))


@router.post("/twilio-status-realtime")
async def handle_call_status(
    CallSid: Optional[str] = Form(None),
    CallStatus: Optional[str] = Form(None),
    services: CallServices = Depends(get_services),
):
    """Release a call's resources once the provider reports it finished."""
    logger.info(f"[CALL STATUS] CallSid: {CallSid}, CallStatus: {CallStatus}")

    try:
        if CallSid and CallStatus in TERMINAL_CALL_STATUSES:
            bridge = services.registry.lookup(CallSid)
            # The media-stream handler deletes the room once its bridge is closed
            if bridge is not None:
                await bridge.disconnect(f"call {CallStatus}")
            services.conversation.end(CallSid)
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling status update - CallSid: {CallSid}, "
            f"CallStatus: {CallStatus}, Error: {type(e).__name__}: {e}",
            exc_info=True,
        )

    # Always OK, so the provider does not retry
    return Response(content="OK", media_type="text/plain")


@router.websocket("/media-stream-realtime")
async def media_stream_endpoint(
    websocket: WebSocket,
    room: Optional[str] = None,
    callSid: Optional[str] = None,
    services: CallServices = Depends(get_ws_services),
):
    """Bidirectional audio for one realtime call."""
    await services.media_streams.handle_websocket(websocket, room, callSid)
