"""SQLAlchemy database models for workflows, executions and handler side effects."""

from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Text, JSON, Integer, Float, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions and their run statistics."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="DRAFT")
    definition = Column(JSON, nullable=False)  # nodes, edges and settings
    execution_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime)
    average_execution_time = Column(Float, nullable=False, default=0.0)
    success_rate = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship("WorkflowExecutionModel", back_populates="workflow", cascade="all, delete-orphan")


class WorkflowExecutionModel(Base):
    """Database model for workflow executions."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    status = Column(String, nullable=False)  # RUNNING, COMPLETED, FAILED, PARTIAL, TIMEOUT
    test_mode = Column(Boolean, nullable=False, default=False)
    trigger_data = Column(JSON)
    result = Column(JSON)  # serialized ExecutionResult
    error_message = Column(Text)
    execution_time = Column(Float)
    nodes_executed = Column(Integer)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    workflow = relationship("WorkflowModel", back_populates="executions")


class ActivityLogModel(Base):
    """Audit trail entries."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String, nullable=False)
    execution_id = Column(String)
    action = Column(String, nullable=False)  # workflow_executed, workflow_created, ...
    details = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)


class NotificationModel(Base):
    """In-app notifications created by notification nodes."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String, default="medium")
    recipient = Column(String)
    workflow_id = Column(String)
    execution_id = Column(String)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class OutboundEmailModel(Base):
    """Outbox of emails queued by email nodes for delivery."""
    __tablename__ = "outbound_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipients = Column(JSON, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="queued")
    workflow_id = Column(String)
    execution_id = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)


class RecordModel(Base):
    """Generic JSON records manipulated by database nodes."""
    __tablename__ = "records"

    id = Column(String, primary_key=True)
    table_name = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False)
    workflow_id = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
