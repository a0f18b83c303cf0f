from app.services.attachment_service import AttachmentService
from app.services.audit_log_service import AuditLogService
from app.services.export_service import ExportService
from app.services.message_service import MessageService
from app.services.moderation_service import ModerationService
from app.services.presence_service import PresenceTracker
from app.services.retention_service import RetentionEnforcer
from app.services.thread_service import ThreadService

__all__ = [
    "AttachmentService",
    "AuditLogService",
    "ExportService",
    "MessageService",
    "ModerationService",
    "PresenceTracker",
    "RetentionEnforcer",
    "ThreadService",
]
