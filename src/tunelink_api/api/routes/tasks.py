"""Task API endpoints: status, cancellation, and the event stream."""

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from tunelink import InvalidTransitionError, TaskStatus

from tunelink_api.api.deps import ConversionEngineDep, EventStreamDep, TaskTrackerDep
from tunelink_api.api.exceptions import ErrorResponse
from tunelink_api.core.models import Task
from tunelink_api.schemas.conversions import CancelTaskResponse

router = APIRouter(prefix="/tasks", tags=["tasks"])

HEARTBEAT_INTERVAL = 30.0


@router.get(
    "/{task_id}",
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
async def get_task(task_id: str, tracker: TaskTrackerDep) -> Task:
    """Get a conversion task, including its result once finished."""
    return await asyncio.to_thread(tracker.get, task_id)


@router.post(
    "/{task_id}/cancel",
    responses={
        404: {"model": ErrorResponse, "description": "Task not found"},
        409: {"model": ErrorResponse, "description": "Task already finished"},
    },
)
async def cancel_task(
    task_id: str, tracker: TaskTrackerDep, engine: ConversionEngineDep
) -> CancelTaskResponse:
    """Cancel a running task. It stops at the next track boundary."""
    if not await engine.cancel(task_id):
        task = await asyncio.to_thread(tracker.get, task_id)
        raise InvalidTransitionError(task_id, task.status, TaskStatus.CANCELLED)
    return CancelTaskResponse(task_id=task_id)


@router.get(
    "/{task_id}/events",
    response_class=StreamingResponse,
    summary="Stream task events via SSE",
    description=(
        "On connect, sends a snapshot event with the current task, "
        "then streams conversion events until the task finishes. "
        "Heartbeat comments sent every 30s."
    ),
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
async def stream_task_events(
    task_id: str, tracker: TaskTrackerDep, event_stream: EventStreamDep
) -> StreamingResponse:
    """Stream the events of one task via Server-Sent Events."""
    # Raises TaskNotFoundError before the stream starts
    await asyncio.to_thread(tracker.get, task_id)

    async def event_generator() -> AsyncIterator[str]:
        async with event_stream.subscribe(task_id) as queue:
            # Subscribe first, then snapshot (events queue up correctly)
            task = await asyncio.to_thread(tracker.get, task_id)
            yield f"event: snapshot\ndata: {task.model_dump_json()}\n\n"
            if task.status.is_finished:
                return

            while True:
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=HEARTBEAT_INTERVAL
                    )
                except TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield f"data: {event.model_dump_json()}\n\n"
                if event.event_type.is_terminal:
                    return

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
