"""Recurring capture task endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pagecapture.api.schemas import MessageResponse
from pagecapture.auth.dependencies import require_api_key
from pagecapture.capture import InvalidSchedule
from pagecapture.config import Settings
from pagecapture.scheduling.models import ScheduledTask, ScheduledTaskCreate
from pagecapture.scheduling.notifications import validate_webhook_url
from pagecapture.scheduling.scheduler import TaskScheduler

router = APIRouter(prefix="/scheduling", dependencies=[Depends(require_api_key)])


def _get_scheduler(request: Request) -> TaskScheduler:
    return request.app.state.scheduler


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Task not found")


@router.post("/tasks", status_code=status.HTTP_201_CREATED, response_model=ScheduledTask)
async def create_task(
    body: ScheduledTaskCreate,
    scheduler: TaskScheduler = Depends(_get_scheduler),
    settings: Settings = Depends(_get_settings),
):
    webhook = body.notifications.webhook
    if webhook and not validate_webhook_url(webhook.url, settings.allowed_webhook_hosts):
        raise HTTPException(
            status_code=422,
            detail="webhook url host not in ALLOWED_WEBHOOK_HOSTS",
        )
    try:
        return scheduler.schedule_task(body)
    except InvalidSchedule as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/tasks", response_model=list[ScheduledTask])
async def list_tasks(scheduler: TaskScheduler = Depends(_get_scheduler)):
    return scheduler.list_tasks()


@router.get("/tasks/{task_id}", response_model=ScheduledTask)
async def get_task(task_id: str, scheduler: TaskScheduler = Depends(_get_scheduler)):
    task = scheduler.get_task(task_id)
    if task is None:
        raise _not_found()
    return task


@router.post("/tasks/{task_id}/pause", response_model=MessageResponse)
async def pause_task(task_id: str, scheduler: TaskScheduler = Depends(_get_scheduler)):
    if not scheduler.pause_task(task_id):
        raise _not_found()
    return MessageResponse(message="Task paused successfully")


@router.post("/tasks/{task_id}/resume", response_model=MessageResponse)
async def resume_task(task_id: str, scheduler: TaskScheduler = Depends(_get_scheduler)):
    if not scheduler.resume_task(task_id):
        raise _not_found()
    return MessageResponse(message="Task resumed successfully")


@router.post("/tasks/{task_id}/run", status_code=status.HTTP_202_ACCEPTED, response_model=MessageResponse)
async def run_task(task_id: str, scheduler: TaskScheduler = Depends(_get_scheduler)):
    if scheduler.get_task(task_id) is None:
        raise _not_found()
    if not scheduler.run_now(task_id):
        raise HTTPException(status_code=409, detail="Task is already running")
    return MessageResponse(message="Task run started")


@router.delete("/tasks/{task_id}", response_model=MessageResponse)
async def delete_task(task_id: str, scheduler: TaskScheduler = Depends(_get_scheduler)):
    if not scheduler.delete_task(task_id):
        raise _not_found()
    return MessageResponse(message="Task deleted successfully")
