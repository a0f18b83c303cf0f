"""Moderation API: report intake for participants, queue and decisions for moderators."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate

from app.constants.messaging import ReportStatus
from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.message import MessageRead
from app.schemas.moderation import MessageReview, ReportCreate, ReportRead, ReportResolve
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/moderation",
    tags=["moderation"],
    responses={404: {"description": "Not found"}},
)


@router.post("/reports", response_model=ReportRead, status_code=201)
def report_message(
    data: ReportCreate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ReportRead:
    """Report a message in one of the caller's threads."""
    return gateway.report_message(context, data)


@router.get("/reports", response_model=Page[ReportRead])
def list_reports(
    status: Optional[ReportStatus] = Query(None),
    message_id: Optional[UUID] = Query(None),
    params: Params = Depends(),
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> Page[ReportRead]:
    """Moderation queue, newest first."""
    query = gateway.reports_query(context, status=status, message_id=message_id)
    return paginate(query, params=params)


@router.get("/reports/{report_id}", response_model=ReportRead)
def get_report(
    report_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ReportRead:
    return gateway.get_report(context, report_id)


@router.post("/reports/{report_id}/review", response_model=ReportRead)
def review_report(
    report_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ReportRead:
    return gateway.review_report(context, report_id)


@router.post("/reports/{report_id}/resolve", response_model=ReportRead)
def resolve_report(
    report_id: UUID,
    data: ReportResolve,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ReportRead:
    """Close the report; removal actions also remove the message."""
    return gateway.resolve_report(context, report_id, data.action)


@router.post("/reports/{report_id}/dismiss", response_model=ReportRead)
def dismiss_report(
    report_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ReportRead:
    return gateway.dismiss_report(context, report_id)


@router.patch("/messages/{message_id}", response_model=MessageRead)
def review_message(
    message_id: UUID,
    data: MessageReview,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> MessageRead:
    """Approve, flag or remove a message directly."""
    message = gateway.review_message(context, message_id, data.status)
    return MessageRead.from_message(message)
