import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from telehook.capture import CaptureSession, CaptureSessionManager, SessionOperationResult
from telehook.converter import nesting_depth
from telehook.dependencies import get_captures, get_processor, get_services, get_stats
from telehook.formatting import render_preview
from telehook.models import (
    CaptureSessionResponse,
    RenderTemplateRequest,
    RenderTemplateResponse,
    StartCaptureRequest,
    SubmitCaptureResponse,
)
from telehook.processing import WebhookProcessor
from telehook.request_log import RequestMetadata
from telehook.services import Services
from telehook.stats import StatsAggregator

logger = logging.getLogger(__name__)
router = APIRouter()

_CAPTURE_ERROR_STATUS = {
    SessionOperationResult.SESSION_NOT_FOUND: 404,
    SessionOperationResult.SESSION_EXPIRED: 404,
    SessionOperationResult.SESSION_ALREADY_COMPLETED: 409,
    SessionOperationResult.SESSION_CANCELLED: 409,
}


def _session_response(session: CaptureSession, captures: CaptureSessionManager) -> CaptureSessionResponse:
    return CaptureSessionResponse(
        session_id=session.session_id,
        capture_url=captures.capture_url(session.session_id),
        status=session.status.value,
        created_at=session.created_at,
        expires_at=session.expires_at,
        payload=session.captured_payload,
    )


@router.post("/api/trigger/{public_id}")
async def trigger_webhook(
    public_id: str,
    request: Request,
    processor: WebhookProcessor = Depends(get_processor),
) -> JSONResponse:
    body = await request.body()
    metadata = RequestMetadata(
        method=request.method,
        url=str(request.url.path) + (f"?{request.url.query}" if request.url.query else ""),
        headers=dict(request.headers),
        body=body.decode(errors="replace"),
        remote_ip=request.client.host if request.client else None,
    )
    result = await processor.process_webhook(public_id, body, metadata)
    return JSONResponse(
        content=result.body,
        status_code=result.status_code,
        headers={"X-Request-ID": result.request_id or ""},
    )


@router.post("/api/payload/capture/start")
async def start_capture(
    body: StartCaptureRequest,
    captures: CaptureSessionManager = Depends(get_captures),
) -> CaptureSessionResponse:
    session = captures.create_session(body.user_id)
    return _session_response(session, captures)


@router.get("/api/payload/capture/status/{session_id}")
async def capture_status(
    session_id: str,
    captures: CaptureSessionManager = Depends(get_captures),
) -> CaptureSessionResponse:
    session = captures.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' was not found")
    return _session_response(session, captures)


@router.post("/api/payload/capture/cancel/{session_id}")
async def cancel_capture(
    session_id: str,
    captures: CaptureSessionManager = Depends(get_captures),
) -> CaptureSessionResponse:
    result = captures.cancel_session(session_id)
    if result is not SessionOperationResult.SUCCESS:
        raise HTTPException(status_code=_CAPTURE_ERROR_STATUS[result], detail=result.value)
    return _session_response(captures.get_session(session_id), captures)


@router.post("/api/payload/capture/{session_id}")
async def submit_captured_payload(
    session_id: str,
    request: Request,
    services: Services = Depends(get_services),
) -> JSONResponse:
    body = await request.body()
    if len(body) > services.settings.max_payload_bytes:
        raise HTTPException(status_code=413, detail="Payload too large")
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError):
        raise HTTPException(status_code=400, detail="Invalid payload format") from None
    if nesting_depth(payload) > services.settings.max_payload_depth:
        raise HTTPException(status_code=400, detail="Payload nesting too deep")

    result = services.captures.complete_session(session_id, payload)
    response = SubmitCaptureResponse(accepted=result is SessionOperationResult.SUCCESS, result=result.value)
    status_code = 200 if response.accepted else _CAPTURE_ERROR_STATUS[result]
    return JSONResponse(content=response.model_dump(), status_code=status_code)


@router.post("/api/templates/render")
async def render_template(body: RenderTemplateRequest) -> RenderTemplateResponse:
    preview = render_preview(body.template, body.sample_data)
    return RenderTemplateResponse(success=preview.success, rendered=preview.rendered, errors=preview.errors)


@router.get("/api/stats/overview")
async def overview_stats(days: int = 30, stats: StatsAggregator = Depends(get_stats)) -> dict:
    return await stats.get_overview(days)


@router.get("/api/stats/webhooks/{webhook_id}")
async def webhook_stats(webhook_id: int, days: int = 30, stats: StatsAggregator = Depends(get_stats)) -> dict:
    return await stats.get_webhook_stats(webhook_id, days)


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/ready")
async def ready(request: Request) -> dict:
    if not request.app.state.ready:
        raise HTTPException(status_code=503)
    return {"status": "ok"}
