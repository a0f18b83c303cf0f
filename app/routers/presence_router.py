"""Typing indicator updates."""

from fastapi import APIRouter, Depends

from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.presence import TypingUpdate
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/typing",
    tags=["presence"],
    responses={404: {"description": "Not found"}},
)


@router.put("", status_code=204)
def set_typing(
    data: TypingUpdate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> None:
    """Fire-and-forget; entries expire after PRESENCE_TTL_SECONDS."""
    gateway.set_typing(context, data.thread_id, data.is_typing)
