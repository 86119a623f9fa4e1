"""Event ingress route."""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...services.event_consumer import EventConsumer
from ..dependencies import get_event_consumer

router = APIRouter(prefix="/events", tags=["events"])


@router.post("")
async def ingest_event(
    request: Request,
    consumer: EventConsumer = Depends(get_event_consumer),
) -> JSONResponse:
    """Process one event envelope.

    200 for processed and duplicate events. A malformed envelope is
    recorded and acknowledged with 400; the source must not retry it.
    """
    body = await request.body()
    raw: Any
    try:
        raw = json.loads(body)
    except ValueError:
        raw = body

    result = await consumer.process_raw(raw)
    status_code = 400 if result.rejected else 200
    return JSONResponse(status_code=status_code, content=result.to_dict())
