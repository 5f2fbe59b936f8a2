"""Notification and email handlers."""

from ...models.core import NodeType
from .base import NodeHandler, completed, simulated


class NotificationHandler(NodeHandler):
    node_type = NodeType.NOTIFICATION.value
    description = "Creates an in-app notification"
    required_fields = ("title", "message")

    async def execute(self, node, context, token):
        title = context.render(node.config["title"])
        message = context.render(node.config["message"])
        priority = node.config.get("priority", "medium")

        if context.test_mode:
            return simulated("Notification created (test mode)", title=title, priority=priority)

        service = context.services.require("notifications")
        token.raise_if_cancelled()
        delivery = await service.send(
            title,
            message,
            priority=priority,
            recipient=node.config.get("recipient"),
            workflow_id=context.workflow_id,
            execution_id=context.execution_id
        )
        return completed("Notification created", title=title, priority=priority, delivery=delivery)


class EmailHandler(NodeHandler):
    """Sends an email whose body or template is rendered from the execution variables."""

    node_type = NodeType.EMAIL.value
    description = "Sends an email rendered from a body or template"
    required_fields = ("to", "subject", ("body", "template"))

    async def execute(self, node, context, token):
        to = node.config["to"]
        to = [context.render(address) for address in to] if isinstance(to, list) else context.render(to)
        subject = context.render(node.config["subject"])
        body = context.render(node.config.get("body") or node.config.get("template"))

        if context.test_mode:
            return simulated("Email sent (test mode)", to=to, subject=subject, body=body)

        service = context.services.require("email")
        token.raise_if_cancelled()
        delivery = await service.send(
            to,
            subject,
            body,
            workflow_id=context.workflow_id,
            execution_id=context.execution_id
        )
        return completed("Email sent", to=to, subject=subject, delivery=delivery)
