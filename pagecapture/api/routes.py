"""Capture, batch and progress endpoint handlers."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sse_starlette.sse import EventSourceResponse

from pagecapture.api.schemas import BatchAccepted, BatchRequest, CaptureAccepted, MessageResponse
from pagecapture.api.service import CaptureService, stream_events
from pagecapture.auth.dependencies import require_api_key
from pagecapture.capture import CaptureRequest

router = APIRouter(dependencies=[Depends(require_api_key)])


def _get_service(request: Request) -> CaptureService:
    return request.app.state.capture_service


@router.post("/captures", status_code=status.HTTP_202_ACCEPTED, response_model=CaptureAccepted)
async def create_capture(
    body: CaptureRequest,
    service: CaptureService = Depends(_get_service),
):
    task_id = service.start_capture(body)
    return CaptureAccepted(task_id=task_id)


@router.post("/batches", status_code=status.HTTP_202_ACCEPTED, response_model=BatchAccepted)
async def create_batch(
    body: BatchRequest,
    service: CaptureService = Depends(_get_service),
):
    batch_id = service.start_batch(body.item_payloads())
    return BatchAccepted(batch_id=batch_id, total=len(body.urls))


@router.get("/captures/{task_id}/events")
async def capture_events(
    task_id: str,
    cancel_on_disconnect: bool = False,
    service: CaptureService = Depends(_get_service),
):
    states = await service.subscribe(task_id)
    if states is None:
        raise HTTPException(status_code=404, detail="Capture not found or expired")
    return EventSourceResponse(
        stream_events(service, task_id, states, cancel_on_disconnect=cancel_on_disconnect)
    )


@router.get("/captures/{task_id}")
async def get_capture(
    task_id: str,
    service: CaptureService = Depends(_get_service),
):
    state = await service.current_state(task_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Capture not found or expired")
    return Response(content=state.model_dump_json(), media_type="application/json")


@router.delete("/captures/{task_id}", response_model=MessageResponse)
async def cancel_capture(
    task_id: str,
    service: CaptureService = Depends(_get_service),
):
    if not await service.cancel(task_id):
        raise HTTPException(status_code=404, detail="Capture not running")
    return MessageResponse(message="Capture cancelled")
