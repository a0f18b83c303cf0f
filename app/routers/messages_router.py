"""Messages API: single-message reads, receipts, edits and search."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.message import (
    AttachmentRead,
    MessageRead,
    MessageSearchResult,
    MessageUpdate,
)
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/messages",
    tags=["messages"],
    responses={404: {"description": "Not found"}},
)


@router.get("/search", response_model=MessageSearchResult)
def search_messages(
    q: str = Query(..., min_length=1, max_length=200),
    thread_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageSearchResult:
    """Search the caller's conversations (case-insensitive substring)."""
    results, total = gateway.search_messages(context, q, thread_id=thread_id, limit=limit)
    return MessageSearchResult(
        results=[MessageRead.from_message(m) for m in results],
        total=total,
        query=q,
    )


@router.get("/{message_id}", response_model=MessageRead)
def get_message(
    message_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageRead:
    return MessageRead.from_message(gateway.get_message(context, message_id))


@router.patch("/{message_id}", response_model=MessageRead)
def edit_message(
    message_id: UUID,
    data: MessageUpdate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageRead:
    """Edit content. Only the sender may edit."""
    message = gateway.edit_message(context, message_id, data.content)
    return MessageRead.from_message(message)


@router.delete("/{message_id}", status_code=204)
def delete_message(
    message_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> None:
    """Soft delete. Only the sender may delete."""
    gateway.delete_message(context, message_id)


@router.post("/{message_id}/read", response_model=MessageRead)
def mark_read(
    message_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageRead:
    """Record a read receipt for the caller. Safe to repeat."""
    return MessageRead.from_message(gateway.mark_read(context, message_id))


@router.get("/{message_id}/attachments", response_model=List[AttachmentRead])
def list_attachments(
    message_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> List[AttachmentRead]:
    """Every attachment of the message, including failed and infected ones."""
    return gateway.list_attachments(context, message_id)
