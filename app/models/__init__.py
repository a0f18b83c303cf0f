from app.models.attachment import Attachment
from app.models.audit_log_entry import AuditLogEntry
from app.models.export_job import ExportJob
from app.models.message import Message, MessageReceipt
from app.models.moderation_report import ModerationReport
from app.models.thread import Thread, ThreadParticipant

__all__ = [
    "Attachment",
    "AuditLogEntry",
    "ExportJob",
    "Message",
    "MessageReceipt",
    "ModerationReport",
    "Thread",
    "ThreadParticipant",
]
