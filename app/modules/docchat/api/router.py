from typing import Any, Dict, Optional
import asyncio
import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from app.modules.docchat.schema.query import (
    ConversationListItem,
    ConversationListResponse,
    ConversationResponse,
    MessageResponse,
    MessagesResponse,
    NewConversationRequest,
    PromptRequest,
    RenameConversationRequest,
)
from app.modules.docchat.services.rag.pipeline import ChatPipeline, PreparedAnswer
from core.config import get_pipeline, settings

logger = logging.getLogger(__name__)

v1 = APIRouter(prefix="/docchat", tags=["DocChat"])
admin = APIRouter(prefix="/admin", tags=["Admin"])


async def _record(pipeline: ChatPipeline, prepared: PreparedAnswer) -> None:
    try:
        await pipeline.complete(prepared)
    except Exception as e:
        logger.error(f"[api] {prepared.conversation_id}: failed to record turn: {e}", exc_info=True)


def _stream_response(pipeline: ChatPipeline, prepared: PreparedAnswer) -> StreamingResponse:
    async def body():
        chunks = prepared.stream.__aiter__()
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            # Scheduled before any await so a cancelled request still persists
            task = pipeline.detach(_record(pipeline, prepared))
            try:
                await chunks.aclose()
            finally:
                await asyncio.shield(task)

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8")


@v1.post("/conversations/{conversation_id}/ask")
async def ask(
    conversation_id: str,
    req: PromptRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Classify the prompt, ground follow-ups on conversation memory and stream the answer."""
    prepared = await pipeline.prepare_answer(conversation_id, req.prompt)
    return _stream_response(pipeline, prepared)


@v1.post("/conversations/{conversation_id}/ground")
async def ground(
    conversation_id: str,
    req: PromptRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Ingest the page at an https URL into conversation memory and stream a simplified summary."""
    prepared = await pipeline.prepare_grounding(conversation_id, req.prompt)
    return _stream_response(pipeline, prepared)


# Conversation management endpoints

@v1.post("/conversations", response_model=ConversationResponse, status_code=201)
async def new_conversation(
    req: NewConversationRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> ConversationResponse:
    conv = await pipeline.store.create_conversation(req.user_id, req.title)
    return ConversationResponse(conversation_id=conv.id, title=conv.title)


@v1.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    user_id: str = Query(..., min_length=1),
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> ConversationListResponse:
    rows = await pipeline.store.list_conversations(user_id)
    return ConversationListResponse(
        conversations=[
            ConversationListItem(id=r.id, title=r.title, created_at=r.created_at.isoformat()) for r in rows
        ]
    )


@v1.get("/conversations/{conversation_id}/messages", response_model=MessagesResponse)
async def get_messages(
    conversation_id: str,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> MessagesResponse:
    await pipeline.store.require_conversation(conversation_id)
    rows = await pipeline.store.messages(conversation_id)
    return MessagesResponse(
        messages=[
            MessageResponse(id=r.id, role=r.role, content=r.content, created_at=r.created_at.isoformat())
            for r in rows
        ]
    )


@v1.put("/conversations/{conversation_id}", response_model=ConversationResponse)
async def rename_conversation(
    conversation_id: str,
    req: RenameConversationRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> ConversationResponse:
    conv = await pipeline.store.rename_conversation(conversation_id, req.title or "")
    return ConversationResponse(conversation_id=conv.id, title=conv.title)


@v1.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Delete a conversation, its messages and its semantic memory."""
    await pipeline.delete_conversation(conversation_id)
    return {"success": True, "deleted_id": conversation_id}


@admin.post("/reset")
async def reset_everything(
    x_admin_token: Optional[str] = Header(default=None),
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Wipe all conversations and semantic records. Requires the configured admin token."""
    expected = settings.ADMIN_TOKEN
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Forbidden")
    await pipeline.reset_all()
    return {"success": True}
