"""External collaborators used by node handlers in real (non-test) mode."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from .exceptions import ConfigurationError, HandlerError


logger = logging.getLogger(__name__)


class NotificationService(Protocol):
    async def send(self, title: str, message: str, **options) -> Dict[str, Any]: ...


class EmailService(Protocol):
    async def send(self, to: Any, subject: str, body: str, **options) -> Dict[str, Any]: ...


class DatabaseService(Protocol):
    async def execute(self, operation: str, table: str, **options) -> Dict[str, Any]: ...


class AIService(Protocol):
    async def complete(self, prompt: str, model: str, max_tokens: int, temperature: float) -> Dict[str, Any]: ...


@dataclass
class HttpResponse:
    """Parsed outcome of an outbound HTTP call."""
    status_code: int
    data: Any
    headers: Dict[str, str] = field(default_factory=dict)


class HttpxClient:
    """Outbound HTTP over ``httpx.AsyncClient``; cancelling the awaiting task aborts the request."""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None
    ) -> HttpResponse:
        kwargs: Dict[str, Any] = {"headers": headers or {}}
        if body is not None:
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method.upper(), url, **kwargs)
        except httpx.TimeoutException as e:
            raise HandlerError(f"Request to {url} timed out") from e
        except httpx.HTTPError as e:
            raise HandlerError(f"Request to {url} failed: {e}") from e

        return HttpResponse(
            status_code=response.status_code,
            data=_parse_body(response),
            headers=dict(response.headers)
        )


def _parse_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text
    return response.text


class ChatCompletionsAIService:
    """AI service backed by an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, http: Optional[HttpxClient] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http or HttpxClient(timeout=60.0)

    async def complete(self, prompt: str, model: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = await self.http.request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=headers,
            body={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if response.status_code >= 400:
            raise HandlerError(f"AI service returned HTTP {response.status_code}")

        data = response.data if isinstance(response.data, dict) else {}
        choices = data.get("choices") or []
        if not choices:
            raise HandlerError("AI service returned no choices")
        return {
            "response": choices[0].get("message", {}).get("content", ""),
            "model": data.get("model", model),
            "usage": data.get("usage", {}),
        }


class CallableRegistry:
    """Named async or sync callables, used for integrations and custom actions."""

    def __init__(self, kind: str):
        self.kind = kind
        self._callables: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, func: Callable[..., Any]):
        if not name or not name.strip():
            raise ConfigurationError(f"{self.kind.capitalize()} name cannot be empty")
        self._callables[name] = func
        logger.debug(f"Registered {self.kind} '{name}'")

    def unregister(self, name: str) -> bool:
        return self._callables.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._callables

    def list_names(self):
        return sorted(self._callables)

    async def call(self, name: str, **params) -> Any:
        func = self._callables.get(name)
        if func is None:
            raise HandlerError(f"No {self.kind} registered under '{name}'")
        result = func(**params)
        if asyncio.iscoroutine(result):
            result = await result
        return result


@dataclass
class HandlerServices:
    """Bundle of collaborators handed to handlers through the execution context."""
    notifications: Optional[NotificationService] = None
    email: Optional[EmailService] = None
    database: Optional[DatabaseService] = None
    ai: Optional[AIService] = None
    http: HttpxClient = field(default_factory=HttpxClient)
    integrations: CallableRegistry = field(default_factory=lambda: CallableRegistry("integration"))
    actions: CallableRegistry = field(default_factory=lambda: CallableRegistry("action"))
    sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ai_default_model: str = "gpt-3.5-turbo"

    def require(self, name: str) -> Any:
        """Return the named collaborator or fail the node if none is configured."""
        service = getattr(self, name, None)
        if service is None:
            raise HandlerError(f"No {name} service configured")
        return service
