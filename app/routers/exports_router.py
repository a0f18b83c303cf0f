"""Thread export jobs."""

from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.context import RequestContext
from app.routers.utils.dependencies import get_gateway, get_request_context
from app.schemas.export import ExportCreate, ExportJobRead
from app.services.conversation_gateway import ConversationGateway

router = APIRouter(
    prefix="/exports",
    tags=["exports"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=ExportJobRead, status_code=202)
def create_export(
    data: ExportCreate,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ExportJobRead:
    return gateway.export_thread(context, data.thread_id)


@router.get("/{job_id}", response_model=ExportJobRead)
def get_export(
    job_id: UUID,
    context: RequestContext = Depends(get_request_context),
    gateway: ConversationGateway = Depends(get_gateway),
) -> ExportJobRead:
    """Export status; download_url is set once the job completes."""
    return gateway.get_export_job(context, job_id)
