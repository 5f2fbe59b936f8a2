"""Tests for the SQL-backed collaborators."""

import pytest

from agency_workflows.config import get_testing_config
from agency_workflows.core.engine import WorkflowEngine
from agency_workflows.core.exceptions import HandlerError
from agency_workflows.models.core import ExecutionRequest, ExecutionStatusEnum
from agency_workflows.storage.database import init_database, reset_database_engine, session_scope
from agency_workflows.storage.models import NotificationModel, OutboundEmailModel
from agency_workflows.storage.services import (
    SqlEmailOutbox,
    SqlNotificationService,
    SqlRecordStore,
    build_handler_services,
)

from .conftest import make_workflow


@pytest.fixture
def record_store(session_factory):
    return SqlRecordStore(session_factory)


class TestSqlNotificationService:
    """Test cases for SqlNotificationService."""

    @pytest.mark.asyncio
    async def test_send_stores_notification(self, session_factory):
        service = SqlNotificationService(session_factory)
        delivery = await service.send("New lead", "Amara applied", priority="high", workflow_id="wf-1")

        with session_scope(session_factory) as db:
            stored = db.query(NotificationModel).one()
            assert stored.id == delivery["notificationId"]
            assert (stored.title, stored.priority, stored.workflow_id) == ("New lead", "high", "wf-1")
            assert stored.read is False


class TestSqlEmailOutbox:
    """Test cases for SqlEmailOutbox."""

    @pytest.mark.asyncio
    async def test_send_queues_email(self, session_factory):
        outbox = SqlEmailOutbox(session_factory)
        delivery = await outbox.send("a@example.org, b@example.org", "Offer", "Congratulations")

        assert delivery["status"] == "queued"
        assert delivery["recipients"] == ["a@example.org", "b@example.org"]
        with session_scope(session_factory) as db:
            assert db.query(OutboundEmailModel).one().subject == "Offer"


class TestSqlRecordStore:
    """Test cases for SqlRecordStore."""

    @pytest.mark.asyncio
    async def test_crud(self, record_store):
        created = await record_store.execute("create", "students", data={"name": "Amara", "stage": "lead"})
        record_id = created["recordId"]

        read = await record_store.execute("read", "students", record_id=record_id)
        assert read["record"] == {"name": "Amara", "stage": "lead"}

        updated = await record_store.execute("update", "students", record_id=record_id, data={"stage": "applicant"})
        assert updated["record"] == {"name": "Amara", "stage": "applicant"}

        deleted = await record_store.execute("delete", "students", record_id=record_id)
        assert deleted == {"recordId": record_id, "deleted": True}

        with pytest.raises(HandlerError, match="not found"):
            await record_store.execute("read", "students", record_id=record_id)

    @pytest.mark.asyncio
    async def test_query_with_filters(self, record_store):
        await record_store.execute("create", "students", data={"name": "Amara", "country": "NG"})
        await record_store.execute("create", "students", data={"name": "Tunde", "country": "GH"})
        await record_store.execute("create", "agents", data={"name": "Kofi", "country": "NG"})

        outcome = await record_store.execute("query", "students", filters={"country": "NG"})
        assert outcome["count"] == 1
        assert outcome["records"][0]["name"] == "Amara"

    @pytest.mark.asyncio
    async def test_invalid_requests(self, record_store):
        with pytest.raises(HandlerError, match="requires a data object"):
            await record_store.execute("create", "students", data=None)
        with pytest.raises(HandlerError, match="requires a recordId"):
            await record_store.execute("update", "students", data={"a": 1})


class TestBuildHandlerServices:
    """Test cases for wiring the SQL collaborators into the engine."""

    @pytest.mark.asyncio
    async def test_database_nodes_use_record_store(self, session_factory):
        config = get_testing_config()
        engine = WorkflowEngine(config=config, services=build_handler_services(config, session_factory))
        workflow = make_workflow(
            [
                {"id": "trigger", "type": "trigger"},
                {"id": "save", "type": "database", "config": {
                    "operation": "create", "table": "students", "data": {"name": "{name}"}
                }},
                {"id": "find", "type": "database", "config": {
                    "operation": "query", "table": "students", "filters": {"name": "Amara"}
                }},
                {"id": "notify", "type": "notification", "config": {"title": "Saved {name}", "message": "m"}},
            ],
            [
                {"source": "trigger", "target": "save"},
                {"source": "save", "target": "find"},
                {"source": "find", "target": "notify"},
            ]
        )
        result = await engine.execute(workflow, ExecutionRequest(trigger_data={"name": "Amara"}))

        assert result.status == ExecutionStatusEnum.COMPLETED
        assert result.results[2].result["result"]["count"] == 1
        with session_scope(session_factory) as db:
            assert db.query(NotificationModel).one().title == "Saved Amara"

    def test_ai_service_only_with_base_url(self, session_factory):
        config = get_testing_config()
        assert build_handler_services(config, session_factory).ai is None

        config.ai_base_url = "http://ai.test/v1"
        assert build_handler_services(config, session_factory).ai is not None


class TestGlobalDatabase:
    """Test cases for the process-wide engine used by the service."""

    def test_init_database_creates_tables(self, tmp_path):
        reset_database_engine()
        try:
            init_database(f"sqlite:///{tmp_path / 'agency.db'}")
            with session_scope() as db:
                db.add(NotificationModel(title="Hello", message="World"))
            with session_scope() as db:
                assert db.query(NotificationModel).one().title == "Hello"
        finally:
            reset_database_engine()
