"""Handlers that reach outside the engine: HTTP calls, webhooks, database, AI, integrations and actions."""

import logging
from typing import Any, Dict
from urllib.parse import urlparse

from ...models.core import NodeType
from ..exceptions import ConfigurationError, HandlerError
from .base import NodeHandler, completed, simulated


logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
DATABASE_OPERATIONS = ("create", "read", "query", "update", "delete")


class ApiHandler(NodeHandler):
    """Performs an HTTP request; statuses of 400 and above fail the node."""

    node_type = NodeType.API.value
    description = "Calls an HTTP API and reports status and parsed response"
    required_fields = ("url",)
    default_method = "GET"

    def validate(self, node):
        super().validate(node)
        url = node.config["url"]
        if not isinstance(url, str) or ("{" not in url and urlparse(url).scheme not in ("http", "https")):
            raise ConfigurationError(
                f"Node '{node.id}' url must be an http(s) URL",
                node_id=node.id,
                config_key="url"
            )
        method = str(node.config.get("method", self.default_method)).upper()
        if method not in HTTP_METHODS:
            raise ConfigurationError(
                f"Node '{node.id}' has unsupported HTTP method '{method}'",
                node_id=node.id,
                config_key="method"
            )
        headers = node.config.get("headers")
        if headers is not None and not isinstance(headers, dict):
            raise ConfigurationError(
                f"Node '{node.id}' headers must be an object",
                node_id=node.id,
                config_key="headers"
            )

    def request_body(self, node, context) -> Any:
        return node.config.get("body")

    async def execute(self, node, context, token):
        url = context.render(node.config["url"])
        method = str(node.config.get("method", self.default_method)).upper()

        if context.test_mode:
            return simulated(f"{self.node_type.upper()} call executed (test mode)", url=url, method=method)

        token.raise_if_cancelled()
        headers = {key: context.render(value) for key, value in (node.config.get("headers") or {}).items()}
        response = await context.services.http.request(method, url, headers=headers, body=self.request_body(node, context))

        if response.status_code >= 400:
            raise HandlerError(
                f"{method} {url} returned HTTP {response.status_code}",
                node_id=node.id,
                node_type=node.type,
                details={"statusCode": response.status_code, "response": response.data}
            )

        logger.debug(f"{method} {url} returned {response.status_code}")
        return completed(
            f"{self.node_type.upper()} call executed",
            url=url,
            method=method,
            statusCode=response.status_code,
            response=response.data
        )


class HttpHandler(ApiHandler):
    node_type = NodeType.HTTP.value
    description = "Performs an HTTP request and reports status and parsed response"


class WebhookHandler(ApiHandler):
    node_type = NodeType.WEBHOOK.value
    description = "Posts a payload (default: the trigger data) to a URL"
    default_method = "POST"

    def request_body(self, node, context) -> Any:
        payload = node.config.get("payload")
        return context.trigger_data if payload is None else payload


class DatabaseHandler(NodeHandler):
    node_type = NodeType.DATABASE.value
    description = "Creates, reads, updates or deletes records in a table"
    required_fields = ("operation", "table")

    def validate(self, node):
        super().validate(node)
        operation = node.config["operation"]
        if operation not in DATABASE_OPERATIONS:
            raise ConfigurationError(
                f"Node '{node.id}' has unsupported database operation '{operation}'",
                node_id=node.id,
                config_key="operation"
            )

    async def execute(self, node, context, token):
        operation = node.config["operation"]
        table = node.config["table"]

        if context.test_mode:
            return simulated("Database operation executed (test mode)", operation=operation, table=table)

        service = context.services.require("database")
        token.raise_if_cancelled()
        data = node.config.get("data")
        if isinstance(data, dict):
            data = {key: context.render(value) for key, value in data.items()}
        outcome = await service.execute(
            operation,
            table,
            data=data,
            record_id=context.render(node.config.get("recordId")),
            filters=node.config.get("filters") or {},
            workflow_id=context.workflow_id
        )
        return completed("Database operation executed", operation=operation, table=table, result=outcome)


class AIHandler(NodeHandler):
    node_type = NodeType.AI.value
    description = "Sends a rendered prompt to an AI model"
    required_fields = ("prompt",)

    async def execute(self, node, context, token):
        prompt = context.render(node.config["prompt"])
        model = node.config.get("model") or context.services.ai_default_model
        max_tokens = node.config.get("maxTokens", 1000)
        temperature = node.config.get("temperature", 0.7)

        if context.test_mode:
            return simulated(
                "AI processing completed (test mode)",
                prompt=prompt,
                model=model,
                response=f"Simulated response for: {prompt[:100]}"
            )

        service = context.services.require("ai")
        token.raise_if_cancelled()
        output = await service.complete(prompt, model, max_tokens, temperature)
        return completed(
            "AI processing completed",
            prompt=prompt,
            model=output.get("model") or model,
            response=output.get("response"),
            usage=output.get("usage") or {}
        )


class IntegrationHandler(NodeHandler):
    node_type = NodeType.INTEGRATION.value
    description = "Invokes an action on a registered third-party integration"
    required_fields = ("service", "action")

    async def execute(self, node, context, token):
        service = node.config["service"]
        action = node.config["action"]
        params: Dict[str, Any] = node.config.get("params") or {}

        if context.test_mode:
            return simulated("Integration executed (test mode)", service=service, action=action, params=params)

        token.raise_if_cancelled()
        output = await context.services.integrations.call(
            service,
            action=action,
            params={key: context.render(value) for key, value in params.items()},
            variables=context.variables
        )
        return completed("Integration executed", service=service, action=action, result=output)


class ActionHandler(NodeHandler):
    """Runs a registered action callable, or acknowledges a generic action."""

    node_type = NodeType.ACTION.value
    description = "Runs a named action"

    async def execute(self, node, context, token):
        action = node.config.get("action", "generic_action")

        if context.test_mode:
            return simulated("Action executed (test mode)", action=action)

        token.raise_if_cancelled()
        actions = context.services.actions
        if actions.has(action):
            output = await actions.call(action, params=node.config.get("params") or {}, variables=context.variables)
        else:
            output = {"action": action, "acknowledged": True}
        return completed("Action executed successfully", action=action, result=output)
