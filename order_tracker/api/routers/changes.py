from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from ..changes import feed

router = APIRouter()


@router.get("/stream")
async def stream_changes(request: Request, heartbeat: float = Query(15.0, gt=0, le=300)) -> StreamingResponse:
    """Server-sent events, one ``data:`` line per row-level change."""

    async def event_source():
        yield ": connected\n\n"
        async for event in feed.subscribe(heartbeat=heartbeat):
            if await request.is_disconnected():
                break
            if event is None:
                yield ": ping\n\n"
                continue
            yield f"data: {event.model_dump_json()}\n\n"

    return StreamingResponse(event_source(), media_type="text/event-stream")
