"""Action names passed to the identity collaborator's authorize() capability."""

from enum import StrEnum


class Action(StrEnum):
    THREAD_CREATE = "thread.create"
    THREAD_READ = "thread.read"
    THREAD_UPDATE = "thread.update"
    THREAD_EXPORT = "thread.export"
    MESSAGE_SEND = "message.send"
    MESSAGE_READ = "message.read"
    MESSAGE_UPDATE = "message.update"
    MESSAGE_DELETE = "message.delete"
    MESSAGE_SEARCH = "message.search"
    MESSAGE_REPORT = "message.report"
    ATTACHMENT_CREATE = "attachment.create"
    ATTACHMENT_READ = "attachment.read"
    TYPING_UPDATE = "typing.update"
    TYPING_READ = "typing.read"
    MODERATION_READ = "moderation.read"
    MODERATION_UPDATE = "moderation.update"
    AUDIT_READ = "audit.read"
    RETENTION_RESTORE = "retention.restore"


# Actions reserved for the moderator role
MODERATOR_ACTIONS = frozenset(
    {
        Action.MODERATION_READ,
        Action.MODERATION_UPDATE,
        Action.AUDIT_READ,
        Action.RETENTION_RESTORE,
    }
)
