"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from agency_workflows.config import AppConfig, get_testing_config
from agency_workflows.core.engine import WorkflowEngine
from agency_workflows.core.exceptions import HandlerError
from agency_workflows.core.handlers import NodeHandler, default_registry
from agency_workflows.core.services import HandlerServices, HttpxClient
from agency_workflows.models.core import (
    EdgeDefinition,
    NodeDefinition,
    WorkflowDefinition,
    WorkflowStatus,
)
from agency_workflows.storage.database import create_session_factory


class FakeClock:
    """Monotonic clock that tests can move forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested durations and returns at once."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


class RecordingNotifications:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, title, message, **options):
        self.sent.append({"title": title, "message": message, **options})
        return {"notificationId": len(self.sent)}


class RecordingEmail:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, to, subject, body, **options):
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"emailId": len(self.sent), "status": "queued"}


class FailingHandler(NodeHandler):
    """Always fails."""
    node_type = "always_fail"

    async def execute(self, node, context, token):
        raise HandlerError(node.config.get("message", "boom"), node_id=node.id, node_type=node.type)


class FlakyHandler(NodeHandler):
    """Fails a configured number of times, then succeeds."""
    node_type = "flaky"

    def __init__(self):
        self.calls = 0

    async def execute(self, node, context, token):
        self.calls += 1
        if self.calls <= node.config.get("failures", 1):
            raise HandlerError(f"transient failure {self.calls}")
        return {"success": True, "calls": self.calls}


class ClockAdvancingHandler(NodeHandler):
    """Moves the injected fake clock forward to simulate a long-running node."""
    node_type = "advance_clock"

    def __init__(self, clock: FakeClock):
        self.clock = clock

    async def execute(self, node, context, token):
        self.clock.advance(node.config.get("seconds", 0))
        return {"success": True}


class SlowHandler(NodeHandler):
    """Sleeps far longer than any test timeout and records whether it was cancelled."""
    node_type = "slow"

    def __init__(self):
        self.started = 0
        self.cancelled = 0
        self.finished = 0

    async def execute(self, node, context, token):
        self.started += 1
        try:
            await asyncio.sleep(node.config.get("seconds", 30))
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        self.finished += 1
        return {"success": True}


def http_responder(request: httpx.Request) -> httpx.Response:
    """Mock HTTP endpoint used by api/http/webhook nodes."""
    if request.url.path == "/fail":
        return httpx.Response(500, json={"error": "upstream failure"})
    if request.url.path == "/missing":
        return httpx.Response(404, text="not found")
    body = request.content.decode() if request.content else None
    return httpx.Response(200, json={"ok": True, "method": request.method, "path": request.url.path, "body": body})


def make_workflow(
    nodes: List[Dict[str, Any]],
    edges: Optional[List[Dict[str, Any]]] = None,
    status: WorkflowStatus = WorkflowStatus.ACTIVE,
    **kwargs
) -> WorkflowDefinition:
    """Build a workflow definition from plain node and edge dicts."""
    return WorkflowDefinition(
        name=kwargs.pop("name", "Test workflow"),
        status=status,
        nodes=[NodeDefinition.model_validate(node) for node in nodes],
        edges=[EdgeDefinition.model_validate(edge) for edge in edges or []],
        **kwargs
    )


@pytest.fixture
def config() -> AppConfig:
    """Testing configuration with short timeouts."""
    return get_testing_config()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def email() -> RecordingEmail:
    return RecordingEmail()


@pytest.fixture
def services(notifications, email, fake_sleep) -> HandlerServices:
    """Collaborators that never leave the process."""
    return HandlerServices(
        notifications=notifications,
        email=email,
        http=HttpxClient(timeout=5.0, transport=httpx.MockTransport(http_responder)),
        sleep=fake_sleep
    )


@pytest.fixture
def slow_handler() -> SlowHandler:
    return SlowHandler()


@pytest.fixture
def flaky_handler() -> FlakyHandler:
    return FlakyHandler()


@pytest.fixture
def registry(slow_handler, flaky_handler):
    """Built-in handlers plus the test handlers above."""
    return default_registry(extra=[FailingHandler(), slow_handler, flaky_handler])


@pytest.fixture
def engine(config, registry, services) -> WorkflowEngine:
    """Engine with recording collaborators and test handlers."""
    return WorkflowEngine(config=config, registry=registry, services=services)


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    return create_session_factory("sqlite:///:memory:")
