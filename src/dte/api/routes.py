# src/dte/api/routes.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dte.client import Client
from dte.domain.errors import (
    ConflictError,
    DTEBaseError,
    NotFoundError,
    TaskCancelledError,
    TaskExecutionError,
    ValidationError,
)
from dte.domain.models import (
    EmitEventRequest,
    ErrorResponse,
    QueueListResponse,
    SpawnRequest,
    SpawnResult,
    TaskInfo,
)
from dte.logging import get_logger

from .deps import get_client

_LOG = get_logger(__name__)
router = APIRouter()


def _error_response(err: DTEBaseError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


def _status_for(err: DTEBaseError) -> int:
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, (ConflictError, TaskCancelledError)):
        return 409
    return 400


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.get("/queues", response_model=QueueListResponse)
def list_queues(client: Client = Depends(get_client)):
    return QueueListResponse(queues=client.list_queues())


@router.post("/queues/{queue_name}", status_code=201)
def create_queue(queue_name: str, client: Client = Depends(get_client)):
    try:
        client.create_queue(queue_name)
        return {"queue": queue_name}
    except DTEBaseError as e:
        return _error_response(e, _status_for(e))


@router.delete("/queues/{queue_name}")
def drop_queue(queue_name: str, client: Client = Depends(get_client)):
    client.drop_queue(queue_name)
    return {"queue": queue_name, "dropped": True}


@router.post("/tasks", response_model=SpawnResult, status_code=201)
def spawn_task(req: SpawnRequest, client: Client = Depends(get_client)):
    """
    Spawn a task.

    Notes:
    - Registered tasks default to their registered queue.
    - A repeated idempotency_key returns the existing task with created=false.
    """
    try:
        return client.spawn(req.task_name, req.params, req.options, queue=req.queue)
    except (ValidationError, TaskExecutionError) as e:
        return _error_response(e, 400)
    except DTEBaseError as e:
        return _error_response(e, _status_for(e))


@router.get("/tasks/{task_id}", response_model=TaskInfo)
def get_task(task_id: str, queue: Optional[str] = None, client: Client = Depends(get_client)):
    info = client.get_task(task_id, queue=queue)
    if info is None:
        return _error_response(
            NotFoundError(f"Task not found: {task_id}", details={"task_id": task_id}),
            404,
        )
    return info


@router.post("/tasks/{task_id}/cancel")
def cancel_task(task_id: str, queue: Optional[str] = None, client: Client = Depends(get_client)):
    try:
        client.cancel_task(task_id, queue=queue)
        return {"task_id": task_id, "cancelled": True}
    except DTEBaseError as e:
        return _error_response(e, _status_for(e))


@router.post("/events", status_code=202)
def emit_event(req: EmitEventRequest, client: Client = Depends(get_client)):
    try:
        client.emit_event(req.event_name, req.payload, queue=req.queue)
        _LOG.debug("Event %s emitted via API", req.event_name)
        return {"event_name": req.event_name, "emitted": True}
    except DTEBaseError as e:
        return _error_response(e, _status_for(e))
