"""Caller identity and request metadata passed from routers into services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

MODERATOR_ROLE = "moderator"
SYSTEM_USER_ID = "system"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_moderator(self) -> bool:
        return MODERATOR_ROLE in self.roles


@dataclass(frozen=True)
class RequestContext:
    """Who is acting plus the network/client metadata recorded in audit entries."""

    user: CurrentUser
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.user.id


SYSTEM_CONTEXT = RequestContext(
    user=CurrentUser(id=SYSTEM_USER_ID, roles=frozenset({MODERATOR_ROLE})),
    user_agent="parley-worker",
)
