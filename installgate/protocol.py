"""Transport-agnostic tool protocol: results and the per-instance request pipeline."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from mcp.types import TextContent
from starlette.responses import Response

from .discovery import ToolDescriptor, list_tools
from .errors import NotFoundError

if TYPE_CHECKING:
    from .engine import Runtime

logger = logging.getLogger(__name__)


@dataclass
class CallToolRequest:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


ListNext = Callable[[], Awaitable[list[ToolDescriptor]]]
CallNext = Callable[[CallToolRequest], Awaitable[Any]]
ListMiddleware = Callable[[ListNext], Awaitable[list[ToolDescriptor]]]
CallMiddleware = Callable[[CallToolRequest, CallNext], Awaitable[Any]]


def response_payload(response: Response) -> dict[str, Any]:
    """Describe an HTTP response produced by a block as plain data."""
    payload: dict[str, Any] = {"status": response.status_code}
    location = response.headers.get("location")
    if location:
        payload["location"] = location
    body = bytes(getattr(response, "body", b"") or b"")
    if body:
        try:
            payload["body"] = json.loads(body)
        except ValueError:
            payload["body"] = body.decode("utf-8", errors="replace")
    return payload


@dataclass
class ToolResult:
    content: list[dict[str, Any]]
    structured_content: dict[str, Any] | None = None
    is_error: bool = False

    @classmethod
    def from_value(cls, value: Any) -> ToolResult:
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, Response):
            value = response_payload(value)
        if isinstance(value, str):
            text = value
        else:
            text = json.dumps(value, default=str)
        return cls(
            content=[{"type": "text", "text": text}],
            structured_content=value if isinstance(value, dict) else None,
        )

    def to_mcp_content(self) -> list[TextContent]:
        return [TextContent(type="text", text=item["text"]) for item in self.content]


def _bind_list(middleware: ListMiddleware, next_handler: ListNext) -> ListNext:
    async def handler() -> list[ToolDescriptor]:
        return await middleware(next_handler)

    return handler


def _bind_call(middleware: CallMiddleware, next_handler: CallNext) -> CallNext:
    async def handler(request: CallToolRequest) -> Any:
        return await middleware(request, next_handler)

    return handler


class ToolPipeline:
    """Runs list/call requests through middleware before the runtime's own tools.

    The first middleware registered is the outermost one.
    """

    def __init__(
        self,
        runtime: Runtime,
        list_middlewares: Iterable[ListMiddleware] = (),
        call_middlewares: Iterable[CallMiddleware] = (),
    ) -> None:
        self.runtime = runtime
        self._list_middlewares = list(list_middlewares)
        self._call_middlewares = list(call_middlewares)

    def use(
        self,
        list_middleware: ListMiddleware | None = None,
        call_middleware: CallMiddleware | None = None,
    ) -> None:
        if list_middleware is not None:
            self._list_middlewares.append(list_middleware)
        if call_middleware is not None:
            self._call_middlewares.append(call_middleware)

    async def _native_list(self) -> list[ToolDescriptor]:
        return await list_tools(self.runtime)

    async def _native_call(self, request: CallToolRequest) -> Any:
        for tool in await list_tools(self.runtime):
            if tool.name == request.name:
                return await self.runtime.invoke(tool.resolve_type, request.arguments)
        raise NotFoundError(f"Tool {request.name} not found")

    async def list_tools(self) -> list[ToolDescriptor]:
        handler: ListNext = self._native_list
        for middleware in reversed(self._list_middlewares):
            handler = _bind_list(middleware, handler)
        return await handler()

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        handler: CallNext = self._native_call
        for middleware in reversed(self._call_middlewares):
            handler = _bind_call(middleware, handler)
        value = await handler(CallToolRequest(name=name, arguments=dict(arguments or {})))
        return ToolResult.from_value(value)


__all__ = [
    "CallMiddleware",
    "CallNext",
    "CallToolRequest",
    "ListMiddleware",
    "ListNext",
    "ToolPipeline",
    "ToolResult",
    "response_payload",
]
