import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from doorstep.api.deps import CurrentUser, get_current_user
from doorstep.realtime.registry import ConnectionRegistry

router = APIRouter()
log = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


@router.get("/events")
async def event_stream(
    user: CurrentUser = Depends(get_current_user),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """
    Server-sent events for the calling user. Messages are cache invalidations
    ({"type": "invalidate", "keys": [...]}) plus periodic heartbeats.
    Raises ConnectionLimitExceeded (503) once the server is full.
    """
    connection = registry.register(user.id)
    log.info(f"SSE connection opened for user {user.id} ({registry.total} open)")
    return StreamingResponse(connection.stream(), media_type="text/event-stream", headers=SSE_HEADERS)
