"""Database models and storage layer."""

from .database import (
    Base,
    SessionLocal,
    init_database,
    create_session_factory,
    session_scope,
    create_tables,
)
from .models import (
    WorkflowModel,
    WorkflowExecutionModel,
    ActivityLogModel,
    NotificationModel,
    OutboundEmailModel,
    RecordModel,
)

__all__ = [
    "Base",
    "SessionLocal",
    "init_database",
    "create_session_factory",
    "session_scope",
    "create_tables",
    "WorkflowModel",
    "WorkflowExecutionModel",
    "ActivityLogModel",
    "NotificationModel",
    "OutboundEmailModel",
    "RecordModel",
]
