"""Threads API: conversations, their messages, typing state and events."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate

from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.export import ExportJobRead
from app.schemas.message import MessageCreate, MessagePage, MessageRead
from app.schemas.presence import EventPoll, EventRead, TypingRead
from app.schemas.thread import (
    DirectThreadCreate,
    RetentionRestore,
    RetentionRestoreResult,
    ThreadArchiveUpdate,
    ThreadCreate,
    ThreadMarkReadResult,
    ThreadMuteUpdate,
    ThreadRead,
)
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/threads",
    tags=["threads"],
    responses={404: {"description": "Not found"}},
)

MAX_POLL_SECONDS = 30.0


@router.get("", response_model=Page[ThreadRead])
def list_threads(
    include_archived: bool = Query(False),
    params: Params = Depends(),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> Page[ThreadRead]:
    """List the caller's threads, most recent activity first."""
    query = gateway.threads_query(context, include_archived=include_archived)
    return paginate(
        query,
        params=params,
        transformer=lambda threads: gateway.thread_views(threads, context.user_id),
    )


@router.post("", response_model=ThreadRead, status_code=201)
def create_thread(
    data: ThreadCreate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadRead:
    """Create a thread. The caller is always a participant."""
    thread = gateway.create_thread(context, data)
    return gateway.thread_view(thread, context.user_id)


@router.post("/direct", response_model=ThreadRead)
def start_direct_thread(
    data: DirectThreadCreate,
    response: Response,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadRead:
    """Get the open thread between the caller and recipient, creating it if needed."""
    thread, created = gateway.start_direct_thread(context, data)
    response.status_code = 201 if created else 200
    return gateway.thread_view(thread, context.user_id)


@router.get("/{thread_id}", response_model=ThreadRead)
def get_thread(
    thread_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadRead:
    thread = gateway.get_thread(context, thread_id)
    return gateway.thread_view(thread, context.user_id)


@router.patch("/{thread_id}/mute", response_model=ThreadRead)
def mute_thread(
    thread_id: UUID,
    data: ThreadMuteUpdate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadRead:
    thread = gateway.mute_thread(context, thread_id, data.muted)
    return gateway.thread_view(thread, context.user_id)


@router.patch("/{thread_id}/archive", response_model=ThreadRead)
def archive_thread(
    thread_id: UUID,
    data: ThreadArchiveUpdate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadRead:
    """Archive or unarchive. Archived threads are readable but reject sends."""
    thread = gateway.archive_thread(context, thread_id, data.archived)
    return gateway.thread_view(thread, context.user_id)


@router.post("/{thread_id}/restore", response_model=RetentionRestoreResult)
def restore_archived_messages(
    thread_id: UUID,
    data: RetentionRestore,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> RetentionRestoreResult:
    """Moderators only: bring back messages archived by retention."""
    restored = gateway.restore_archived(context, thread_id, data.retention_policy)
    return RetentionRestoreResult(thread_id=thread_id, restored=restored)


@router.get("/{thread_id}/messages", response_model=MessagePage)
def list_messages(
    thread_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[int] = Query(None, ge=1, description="Cursor from next_cursor"),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessagePage:
    """Newest-first page of messages."""
    return gateway.list_messages(context, thread_id, limit=limit, before=before)


@router.post("/{thread_id}/messages", response_model=MessageRead, status_code=201)
def send_message(
    thread_id: UUID,
    data: MessageCreate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageRead:
    """Send a message. Attachments start `pending` and are scanned asynchronously."""
    message = gateway.send_message(context, thread_id, data)
    return MessageRead.from_message(message)


@router.post("/{thread_id}/read", response_model=ThreadMarkReadResult)
def mark_thread_read(
    thread_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ThreadMarkReadResult:
    marked = gateway.mark_thread_read(context, thread_id)
    return ThreadMarkReadResult(
        thread_id=thread_id,
        marked=marked,
        unread_count=gateway.threads.get_unread_count(thread_id, context.user_id),
    )


@router.get("/{thread_id}/typing", response_model=TypingRead)
def list_typing(
    thread_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> TypingRead:
    """Who else is typing in the thread right now."""
    user_ids = gateway.list_typing(context, thread_id)
    return TypingRead(thread_id=thread_id, user_ids=sorted(user_ids))


@router.get("/{thread_id}/events", response_model=EventPoll)
def poll_events(
    thread_id: UUID,
    timeout: float = Query(0.0, ge=0.0, le=MAX_POLL_SECONDS),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> EventPoll:
    """Long poll for thread events published while the request is open."""
    events = gateway.poll_events(context, thread_id, timeout=timeout)
    return EventPoll(
        events=[
            EventRead(
                type=e.type.value,
                thread_id=e.thread_id,
                payload=e.payload,
                occurred_at=e.occurred_at,
            )
            for e in events
        ]
    )


@router.post("/{thread_id}/exports", response_model=ExportJobRead, status_code=202)
def export_thread(
    thread_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ExportJobRead:
    """Queue a transcript export; poll /exports/{id} for the download URL."""
    return gateway.export_thread(context, thread_id)
