"""Chat relay endpoint.

POST a conversation, receive the assistant reply as server-sent events:

    data: {"type": "text-delta", "text": "Hi"}
    data: {"type": "finish"}
    data: [DONE]
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.core.errors import InvalidConversationError
from app.models.chunks import encode_sse, encode_sse_done
from app.services.llm import get_llm_provider
from app.services.relay import ChatRelay, parse_chat_request

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


@router.post("")
async def chat(request: Request):
    try:
        payload = await request.json()
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError
        logger.warning(f"Rejected chat request with invalid JSON: {e}")
        raise HTTPException(
            status_code=400,
            detail={"kind": InvalidConversationError.kind, "message": f"Invalid JSON body: {e}"},
        )

    try:
        messages = parse_chat_request(payload)
    except InvalidConversationError as e:
        logger.warning(f"Rejected chat request: {e}")
        raise HTTPException(status_code=400, detail={"kind": e.kind, "message": str(e)})

    relay = ChatRelay(get_llm_provider())

    async def event_stream():
        # A client disconnect cancels this generator; the relay closes
        # the upstream call and nothing further is written.
        async for chunk in relay.stream(messages):
            yield encode_sse(chunk)
        yield encode_sse_done()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)
