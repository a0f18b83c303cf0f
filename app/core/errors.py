"""
Domain errors for the messaging core.

Routers never build HTTP errors for these directly; app.main maps each family
to a status code. Only TransientError is safe to retry.
"""

from __future__ import annotations

from typing import Optional


class MessagingError(Exception):
    """Base class for all messaging domain errors."""

    code = "messaging_error"

    def __init__(self, message: str, *, entity_id: Optional[object] = None) -> None:
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id


class NotFoundError(MessagingError):
    code = "not_found"


class ThreadNotFound(NotFoundError):
    code = "thread_not_found"


class MessageNotFound(NotFoundError):
    code = "message_not_found"


class AttachmentNotFound(NotFoundError):
    code = "attachment_not_found"


class ReportNotFound(NotFoundError):
    code = "report_not_found"


class ExportJobNotFound(NotFoundError):
    code = "export_job_not_found"


class ForbiddenError(MessagingError):
    code = "forbidden"


class Unauthorized(ForbiddenError):
    """The identity collaborator denied the caller this action."""

    code = "unauthorized"


class InvalidStateError(MessagingError):
    code = "invalid_state"


class ThreadArchived(InvalidStateError):
    code = "thread_archived"


class AlreadyResolved(InvalidStateError):
    code = "already_resolved"


class IllegalModerationTransition(InvalidStateError):
    code = "illegal_moderation_transition"


class ConflictError(MessagingError):
    code = "conflict"


class TransientError(MessagingError):
    code = "transient"
    retry_after_seconds = 1


class OperationTimeout(TransientError):
    code = "operation_timeout"


class TransientScanError(TransientError):
    code = "transient_scan_error"


class ValidationError(MessagingError):
    code = "validation_error"


class InvalidParticipants(ValidationError):
    code = "invalid_participants"


class UnsupportedAttachmentError(ValidationError):
    code = "unsupported_attachment"
