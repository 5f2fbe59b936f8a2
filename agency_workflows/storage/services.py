"""SQL-backed collaborators for notification, email and database nodes."""

import uuid
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from ..config import AppConfig
from ..core.exceptions import HandlerError, StorageError
from ..core.logging import get_logger
from ..core.services import ChatCompletionsAIService, HandlerServices, HttpxClient
from .database import SessionFactory, session_scope
from .models import NotificationModel, OutboundEmailModel, RecordModel


logger = get_logger(__name__)


class SqlNotificationService:
    """Stores notifications in the notifications table."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    async def send(self, title: str, message: str, **options) -> Dict[str, Any]:
        try:
            with session_scope(self.session_factory) as db:
                notification = NotificationModel(
                    title=title,
                    message=message,
                    priority=options.get("priority") or "medium",
                    recipient=options.get("recipient"),
                    workflow_id=options.get("workflow_id"),
                    execution_id=options.get("execution_id")
                )
                db.add(notification)
                db.flush()
                notification_id = notification.id
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating notification: {str(e)}")
            raise StorageError(f"Failed to create notification: {str(e)}", operation="create", table="notifications")

        logger.debug(f"Created notification {notification_id}: {title}")
        return {"notificationId": notification_id}


class SqlEmailOutbox:
    """Queues outbound emails in the outbound_emails table for a delivery worker."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    async def send(self, to: Union[str, List[str]], subject: str, body: str, **options) -> Dict[str, Any]:
        recipients = to if isinstance(to, list) else [address.strip() for address in str(to).split(",")]
        try:
            with session_scope(self.session_factory) as db:
                email = OutboundEmailModel(
                    recipients=recipients,
                    subject=subject,
                    body=body,
                    workflow_id=options.get("workflow_id"),
                    execution_id=options.get("execution_id")
                )
                db.add(email)
                db.flush()
                email_id = email.id
        except SQLAlchemyError as e:
            logger.error(f"Database error while queueing email: {str(e)}")
            raise StorageError(f"Failed to queue email: {str(e)}", operation="create", table="outbound_emails")

        logger.debug(f"Queued email {email_id} to {', '.join(recipients)}")
        return {"emailId": email_id, "status": "queued", "recipients": recipients}


class SqlRecordStore:
    """JSON record store addressed by logical table name."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    async def execute(self, operation: str, table: str, **options) -> Dict[str, Any]:
        data = options.get("data")
        record_id = options.get("record_id")
        try:
            with session_scope(self.session_factory) as db:
                if operation == "create":
                    if not isinstance(data, dict):
                        raise HandlerError("Create operation requires a data object")
                    record = RecordModel(
                        id=record_id or str(uuid.uuid4()),
                        table_name=table,
                        data=data,
                        workflow_id=options.get("workflow_id")
                    )
                    db.add(record)
                    return {"recordId": record.id, "record": data}

                if operation in ("read", "update", "delete"):
                    if not record_id:
                        raise HandlerError(f"{operation.capitalize()} operation requires a recordId")
                    record = db.query(RecordModel).filter(
                        RecordModel.table_name == table,
                        RecordModel.id == record_id
                    ).first()
                    if record is None:
                        raise HandlerError(f"Record '{record_id}' not found in table '{table}'")
                    if operation == "read":
                        return {"recordId": record.id, "record": record.data}
                    if operation == "update":
                        if not isinstance(data, dict):
                            raise HandlerError("Update operation requires a data object")
                        record.data = {**record.data, **data}
                        return {"recordId": record.id, "record": record.data}
                    db.delete(record)
                    return {"recordId": record_id, "deleted": True}

                filters = options.get("filters") or {}
                records = db.query(RecordModel).filter(RecordModel.table_name == table).order_by(RecordModel.created_at).all()
                matches = [
                    {"recordId": record.id, **record.data}
                    for record in records
                    if all(record.data.get(key) == value for key, value in filters.items())
                ]
                return {"records": matches, "count": len(matches)}
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation} on {table}: {str(e)}")
            raise StorageError(f"Failed to {operation} records: {str(e)}", operation=operation, table="records")


def build_handler_services(config: AppConfig, session_factory: Optional[SessionFactory] = None) -> HandlerServices:
    """Wire the SQL-backed collaborators and outbound clients from configuration."""
    http = HttpxClient(timeout=config.http_timeout)
    ai = None
    if config.ai_base_url:
        ai = ChatCompletionsAIService(config.ai_base_url, config.ai_api_key)
    return HandlerServices(
        notifications=SqlNotificationService(session_factory),
        email=SqlEmailOutbox(session_factory),
        database=SqlRecordStore(session_factory),
        ai=ai,
        http=http,
        ai_default_model=config.ai_default_model
    )
