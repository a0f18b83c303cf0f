from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.core.context import MODERATOR_ROLE, CurrentUser, RequestContext
from app.db import get_db
from app.services.conversation_gateway import ConversationGateway


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """
    FastAPI dependency resolving the caller forwarded by the identity layer.

    The gateway in front of this service authenticates the user and passes
    the identity as X-User-Id. Roles are never taken from the request: the
    moderator role comes only from MODERATOR_IDS.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    is_moderator = user_id in settings.moderators
    roles = frozenset({MODERATOR_ROLE}) if is_moderator else frozenset()
    return CurrentUser(id=user_id, roles=roles)


def get_request_context(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> RequestContext:
    """Caller plus the network metadata recorded on audit entries."""
    return RequestContext(
        user=current_user,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_gateway(db: Session = Depends(get_db)) -> ConversationGateway:
    """FastAPI dependency building the gateway for this request's session."""
    return ConversationGateway(db)
