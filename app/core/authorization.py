"""
authorize(caller, action, resource_id) capability.

Identity and roles belong to the identity collaborator; this module only
defines the contract and a default policy based on thread membership.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from app.constants.actions import Action, MODERATOR_ACTIONS
from app.core.context import CurrentUser
from app.models.thread import ThreadParticipant

# Reads a moderator may perform on threads they are not part of
MODERATOR_THREAD_READS = frozenset(
    {Action.THREAD_READ, Action.MESSAGE_READ, Action.ATTACHMENT_READ}
)


class Authorizer(Protocol):
    def authorize(
        self, caller: CurrentUser, action: Action, resource_id: Optional[UUID]
    ) -> bool: ...


class ParticipantAuthorizer:
    """
    Default policy.

    Thread-scoped actions (resource_id is a thread id) require membership;
    moderation and audit actions require the moderator role; unscoped actions
    (creating threads, searching one's own threads) are open to any caller.
    """

    def __init__(self, db: Session, moderator_ids: Iterable[str] = ()) -> None:
        self.db = db
        self._moderator_ids = frozenset(moderator_ids)

    def is_moderator(self, caller: CurrentUser) -> bool:
        return caller.is_moderator or caller.id in self._moderator_ids

    def authorize(
        self, caller: CurrentUser, action: Action, resource_id: Optional[UUID]
    ) -> bool:
        if action in MODERATOR_ACTIONS:
            return self.is_moderator(caller)
        if resource_id is None:
            return True
        if action in MODERATOR_THREAD_READS and self.is_moderator(caller):
            return True
        return (
            self.db.query(ThreadParticipant.id)
            .filter(
                ThreadParticipant.thread_id == resource_id,
                ThreadParticipant.user_id == caller.id,
            )
            .first()
            is not None
        )
