# The module is to define the API endpoints for chat interactions.
# Date: 2025-10-02
# Version: 0.2.0

import asyncio
import json

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from arcchat.core.errors import ArcChatError, ProviderConfigError, SessionBusyError
from arcchat.core.orchestrator import TurnOutcome, run_conversation_step
from arcchat.services.llm_connector import get_active_provider
from arcchat.services.session_manager import session_manager
from arcchat.utils.logger import console
from arcchat.models.api_models import CancelResponse, ChatRequest, ChatResponse

router = APIRouter()


def _to_response(session_id: str, outcome: TurnOutcome) -> ChatResponse:
    return ChatResponse(
        session_id=session_id,
        role=outcome.message.role,
        content=outcome.message.content,
        actions=outcome.actions,
        error=outcome.error,
        cancelled=outcome.cancelled,
        iterations=outcome.iterations,
        usage=outcome.usage,
    )


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@router.post("/", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """
    Runs one full turn and returns the finalized assistant message.
    """
    console.info(f"Received chat request for session_id: {request.session_id}")
    try:
        outcome = await run_conversation_step(request.session_id, request.user_input, provider_id=request.provider)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    console.success(f"Sending response for session_id: {request.session_id}")
    return _to_response(request.session_id, outcome)


@router.post("/stream")
async def chat_stream(request: ChatRequest):
    """
    Runs one turn and streams it as server-sent events: a `chunk` event per
    text delta, then a single `result` (or `error`) event.
    """
    if session_manager.is_streaming(request.session_id):
        raise HTTPException(status_code=409, detail=str(SessionBusyError(request.session_id)))
    try:
        get_active_provider(request.provider)
    except ProviderConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    queue: asyncio.Queue = asyncio.Queue()

    async def on_chunk(text: str):
        await queue.put(_sse("chunk", {"text": text}))

    async def run_turn():
        try:
            outcome = await run_conversation_step(request.session_id, request.user_input,
                                                  provider_id=request.provider, on_chunk=on_chunk)
            await queue.put(_sse("result", _to_response(request.session_id, outcome).model_dump()))
        except ArcChatError as e:
            await queue.put(_sse("error", {"detail": str(e)}))
        finally:
            await queue.put(None)

    async def event_source():
        task = asyncio.create_task(run_turn())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item
        finally:
            if not task.done():
                # client went away
                session_manager.cancel(request.session_id)
            await task

    return StreamingResponse(event_source(), media_type="text/event-stream")


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel_chat(session_id: str):
    """
    Fires the cancel signal of the session's running turn, if any.
    """
    return CancelResponse(session_id=session_id, cancelled=session_manager.cancel(session_id))
