"""
Database models - import all models here so Alembic can discover them.
"""
from hookgate.models.webhook_event import WebhookEvent
from hookgate.models.audit_log import AuditLogEntry
from hookgate.models.dedup_record import DedupRecord
from hookgate.models.retry_task import RetryTask
from hookgate.models.dead_letter import DeadLetter

__all__ = [
    "WebhookEvent",
    "AuditLogEntry",
    "DedupRecord",
    "RetryTask",
    "DeadLetter",
]
