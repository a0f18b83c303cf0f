"""Audit trail: append-scan reads for moderators. No write endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate

from app.constants.messaging import AuditAction
from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.moderation import AuditLogRead
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/audit-logs",
    tags=["audit"],
)


@router.get("", response_model=Page[AuditLogRead])
def list_audit_entries(
    action: Optional[AuditAction] = Query(None),
    user_id: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    params: Params = Depends(),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> Page[AuditLogRead]:
    """Audit entries oldest first, optionally filtered."""
    query = gateway.audit_entries_query(
        context, action=action, user_id=user_id, target_id=target_id
    )
    return paginate(query, params=params)
