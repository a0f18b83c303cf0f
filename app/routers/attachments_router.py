"""Attachments API: ingest, status and re-ingest of failed uploads."""

from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.message import AttachmentIngest, AttachmentRead
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/attachments",
    tags=["attachments"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=AttachmentRead, status_code=202)
def ingest_attachment(
    data: AttachmentIngest,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> AttachmentRead:
    """Attach a file to one of the caller's messages. The scan runs in the background."""
    return gateway.ingest_attachment(context, data)


@router.get("/{attachment_id}", response_model=AttachmentRead)
def get_attachment(
    attachment_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> AttachmentRead:
    return gateway.get_attachment(context, attachment_id)


@router.post("/{attachment_id}/reingest", response_model=AttachmentRead, status_code=202)
def reingest_attachment(
    attachment_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> AttachmentRead:
    """Retry a failed attachment as a new upload, within the re-ingest budget."""
    return gateway.reingest_attachment(context, attachment_id)
