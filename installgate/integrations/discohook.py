"""Discord webhook messages."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..engine import AppBlock

if TYPE_CHECKING:
    from ..engine import InvocationContext, Manifest

logger = logging.getLogger(__name__)

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["webhookUrl"],
    "properties": {
        "webhookUrl": {
            "type": "string",
            "title": "Webhook URL",
            "description": "The Discord webhook URL",
        },
        "username": {
            "type": "string",
            "title": "Username",
            "description": "The username that will appear when sending messages",
        },
        "avatarUrl": {
            "type": "string",
            "title": "Avatar URL",
            "description": "URL for the avatar that will be displayed",
        },
    },
    "additionalProperties": False,
}

SEND_RESULT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "success": {"type": "boolean"},
        "message": {"type": "string"},
    },
    "additionalProperties": False,
}


def register_discohook(manifest: Manifest) -> AppBlock:
    app = manifest.register_app(
        AppBlock(
            name="discohook",
            description="Send messages to Discord channels via webhooks",
            icon="https://assets.deco.cx/icons/discord.svg",
            input_schema=INPUT_SCHEMA,
        )
    )

    @app.action(
        "messages/send",
        title="DISCOHOOK_SEND_MESSAGE",
        description="Send a message through the configured Discord webhook",
        input_schema={
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The message content to send"},
                "username": {"type": "string", "description": "Override the default username"},
                "avatarUrl": {"type": "string", "description": "Override the default avatar URL"},
                "threadName": {"type": "string", "description": "Create a thread with this name"},
            },
            "required": ["content"],
        },
        output_schema=SEND_RESULT_SCHEMA,
    )
    async def send_message(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        webhook_url = ctx.props.get("webhookUrl")
        if not webhook_url:
            return {"success": False, "message": "Webhook URL is not configured"}

        body = {
            "content": props.get("content"),
            "username": props.get("username") or ctx.props.get("username"),
            "avatar_url": props.get("avatarUrl") or ctx.props.get("avatarUrl"),
            "thread_name": props.get("threadName"),
        }
        try:
            response = await ctx.http.post(
                webhook_url,
                json={key: value for key, value in body.items() if value is not None},
            )
        except httpx.HTTPError as exc:
            logger.warning("Discord webhook request failed: %s", exc)
            return {"success": False, "message": f"Error sending message: {exc}"}

        if response.is_error:
            return {
                "success": False,
                "message": f"Failed to send message: {response.status_code} {response.text}",
            }
        return {"success": True, "message": "Message sent successfully"}

    return app


__all__ = ["INPUT_SCHEMA", "register_discohook"]
