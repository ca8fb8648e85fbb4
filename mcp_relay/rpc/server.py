"""
Embedded RPC Server

Serves the installed tools, resources and prompts over session transports
with the MCP SDK's low-level Server. Every connected transport gets its own
ServerSession, fed through a pair of in-memory streams:

    transport.on_message -> inbound stream -> Server.run -> outbound stream -> transport.send

Sessions run stateless: a relayed session may start mid-conversation, so
requests are served without a prior initialize handshake.

Supported methods:
- initialize, notifications/initialized, ping
- tools/list, tools/call
- resources/list, resources/templates/list, resources/read
- prompts/list, prompts/get

Error mapping:
- Unknown method: -32601
- Missing/invalid params, unknown procedure: -32602
- Tool invocation failure: CallToolResult with isError=true
- Any other procedure failure: -32603
"""

import asyncio
import contextvars
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, get_args
from urllib.parse import unquote

import anyio
import mcp.types as types
from mcp.server.fastmcp.resources import ResourceTemplate
from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from mcp.shared.message import SessionMessage
from pydantic import BaseModel, ValidationError

from mcp_relay.invoke import InvocationError
from mcp_relay.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    JSONRPCMessage,
    create_error,
    parse_error_payload,
)
from mcp_relay.registry.descriptor import validate_arguments
from mcp_relay.transport import SSETransport, StreamClosedError, TransportError

logger = logging.getLogger(__name__)

_session_id: contextvars.ContextVar[str] = contextvars.ContextVar("mcp_relay_session_id", default="")

_TEMPLATE_VARIABLE = re.compile(r"\{(\w+)\}")


@dataclass
class ProcedureContext:
    """Per-request data handed to procedure handlers."""
    session_id: str
    request_id: types.RequestId | None = None

    def extra(self) -> dict[str, Any]:
        """Context forwarded to compute functions."""
        return {"sessionId": self.session_id, "requestId": self.request_id}


ToolHandler = Callable[[dict[str, Any], ProcedureContext], Awaitable[Any] | Any]
PromptHandler = Callable[[dict[str, Any], ProcedureContext], Awaitable[Any] | Any]
ResourceReader = Callable[[str, dict[str, str], ProcedureContext], Awaitable[Any] | Any]
ResourceLister = Callable[[ProcedureContext], Awaitable[Any] | Any]


@dataclass
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    arguments: type[BaseModel] | None = None

    def to_mcp_format(self) -> types.Tool:
        schema = (
            self.arguments.model_json_schema()
            if self.arguments is not None
            else {"type": "object", "properties": {}}
        )
        schema.pop("title", None)
        return types.Tool(name=self.name, description=self.description, inputSchema=schema)


@dataclass
class ResourceDefinition:
    name: str
    template: ResourceTemplate
    read: ResourceReader
    list_resources: ResourceLister | None = None
    description: str = ""

    def to_mcp_format(self) -> types.ResourceTemplate:
        return types.ResourceTemplate(
            uriTemplate=self.template.uri_template,
            name=self.name,
            description=self.description or None,
        )

    def match(self, uri: str) -> dict[str, str] | None:
        """Template variables read back from `uri`, or None if it does not match."""
        found = self.template.matches(uri)
        if found is None:
            return None
        return {name: unquote(value) for name, value in found.items()}


@dataclass
class PromptDefinition:
    name: str
    description: str
    handler: PromptHandler
    arguments: type[BaseModel] | None = None

    def to_mcp_format(self) -> types.Prompt:
        arguments = None
        if self.arguments is not None:
            arguments = [
                types.PromptArgument(
                    name=name,
                    description=info.description,
                    required=info.is_required(),
                )
                for name, info in self.arguments.model_fields.items()
            ]
        return types.Prompt(name=self.name, description=self.description, arguments=arguments)


def _error(code: int, message: str, data: Any = None) -> McpError:
    return McpError(types.ErrorData(code=code, message=message, data=data))


async def _call(handler: Callable[..., Any], *args: Any) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _coerce(result: Any, model: type[BaseModel]) -> Any:
    if isinstance(result, model):
        return result
    try:
        return model.model_validate(result)
    except ValidationError as e:
        raise InvocationError(f"Handler returned an invalid {model.__name__}") from e


def _validated(arguments_model: type[BaseModel] | None, arguments: dict[str, Any] | None) -> dict[str, Any]:
    if arguments_model is None:
        return arguments or {}
    try:
        return validate_arguments(arguments_model, arguments)
    except ValidationError as e:
        raise _error(
            INVALID_PARAMS,
            f"Invalid params: {e.error_count()} validation error(s)",
            e.errors(include_url=False, include_context=False),
        ) from e


def _method_name(request_type: type[BaseModel]) -> str | None:
    literal = get_args(request_type.model_fields["method"].annotation)
    return literal[0] if literal else None


@dataclass
class _Connection:
    inbound: Any
    task: asyncio.Task
    pending: dict[Any, asyncio.Future]


class RpcServer:
    """
    MCP capability server.

    Procedures are registered with tool(), resource() and prompt(), then the
    server is attached to one or more transports with connect().
    """

    def __init__(self, name: str = "MCP Lambda Server", version: str = "1.0.7"):
        self.name = name
        self.version = version
        self.tools: dict[str, ToolDefinition] = {}
        self.resources: dict[str, ResourceDefinition] = {}
        self.prompts: dict[str, PromptDefinition] = {}
        self._connections: dict[str, _Connection] = {}

        self._server: Server = Server(name, version=version)
        handlers = {
            types.ListToolsRequest: self._list_tools,
            types.CallToolRequest: self._call_tool,
            types.ListResourcesRequest: self._list_resources,
            types.ListResourceTemplatesRequest: self._list_resource_templates,
            types.ReadResourceRequest: self._read_resource,
            types.ListPromptsRequest: self._list_prompts,
            types.GetPromptRequest: self._get_prompt,
        }
        for request_type, handler in handlers.items():
            self._server.request_handlers[request_type] = self._guarded(handler)

        # initialize is answered by the ServerSession itself
        self._methods = {"initialize"} | {
            name for name in map(_method_name, self._server.request_handlers) if name
        }

    # ================================================================
    # Registration
    # ================================================================

    def tool(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        arguments: type[BaseModel] | None = None,
    ) -> None:
        """Register a tool."""
        self.tools[name] = ToolDefinition(name, description, handler, arguments)
        logger.debug(f"Registered tool: {name}")

    def resource(
        self,
        name: str,
        uri_template: str,
        read: ResourceReader,
        list_resources: ResourceLister | None = None,
        description: str = "",
    ) -> None:
        """
        Register a templated resource.

        Raises:
            ValueError: If a template variable appears more than once
        """
        variables = _TEMPLATE_VARIABLE.findall(uri_template)
        if len(set(variables)) != len(variables):
            raise ValueError(f"Duplicate variable in URI template: {uri_template}")

        template = ResourceTemplate(
            uri_template=uri_template,
            name=name,
            description=description or None,
            fn=read,
            parameters={},
        )
        self.resources[name] = ResourceDefinition(name, template, read, list_resources, description)
        logger.debug(f"Registered resource: {name} ({uri_template})")

    def prompt(
        self,
        name: str,
        description: str,
        handler: PromptHandler,
        arguments: type[BaseModel] | None = None,
    ) -> None:
        """Register a prompt."""
        self.prompts[name] = PromptDefinition(name, description, handler, arguments)
        logger.debug(f"Registered prompt: {name}")

    def capabilities(self) -> types.ServerCapabilities:
        """Capabilities for the procedure kinds that have registrations."""
        return types.ServerCapabilities(
            tools=types.ToolsCapability(listChanged=False) if self.tools else None,
            resources=types.ResourcesCapability(subscribe=False, listChanged=False) if self.resources else None,
            prompts=types.PromptsCapability(listChanged=False) if self.prompts else None,
        )

    # ================================================================
    # Transport wiring
    # ================================================================

    async def connect(self, transport: SSETransport) -> None:
        """
        Attach the server to a transport and start it.

        Inbound requests are handled concurrently. On a transport that
        acknowledges each submission, on_message returns only after the
        reply has been written, so the reply precedes the acknowledgement.

        Raises:
            NoStreamError: If the transport has no stream bound
        """
        inbound_writer, inbound_reader = anyio.create_memory_object_stream[SessionMessage | Exception](0)
        pending: dict[Any, asyncio.Future] = {}

        async def on_message(message: JSONRPCMessage) -> None:
            root = message.root
            if isinstance(root, (types.JSONRPCResponse, types.JSONRPCError)):
                logger.debug(f"Ignoring client response {root.id} on session {transport.session_id}")
                return
            is_request = isinstance(root, types.JSONRPCRequest)
            if is_request and root.method not in self._methods:
                await self._send(
                    transport, create_error(root.id, METHOD_NOT_FOUND, f"Method not found: {root.method}")
                )
                return

            waiter = None
            if is_request and transport.acknowledges:
                waiter = asyncio.get_running_loop().create_future()
                pending[root.id] = waiter
            try:
                await inbound_writer.send(SessionMessage(message=message))
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                logger.warning(f"Session {transport.session_id} is no longer serving requests")
                pending.pop(getattr(root, "id", None), None)
                return
            if waiter is not None:
                await waiter

        async def on_error(error: Exception) -> None:
            logger.warning(f"Invalid message on session {transport.session_id}: {error}")
            # Acknowledging transports report the error in their own reply
            if not transport.acknowledges:
                await self._send(transport, parse_error_payload(str(error)))

        def on_close() -> None:
            logger.debug(f"Transport closed for session {transport.session_id}")
            inbound_writer.close()

        transport.on_message = on_message
        transport.on_error = on_error
        transport.on_close = on_close
        try:
            await transport.start()
        except Exception:
            inbound_writer.close()
            inbound_reader.close()
            raise

        task = asyncio.create_task(self._run_connection(transport, inbound_reader, pending))
        self._connections[transport.session_id] = _Connection(inbound_writer, task, pending)

    async def disconnect(self, transport: SSETransport) -> None:
        """Stop serving a transport. Safe to call more than once."""
        connection = self._connections.pop(transport.session_id, None)
        if connection is None:
            return
        connection.inbound.close()
        connection.task.cancel()
        await asyncio.gather(connection.task, return_exceptions=True)

    async def close(self) -> None:
        """Disconnect every transport."""
        for connection in list(self._connections.values()):
            connection.inbound.close()
            connection.task.cancel()
        tasks = [c.task for c in self._connections.values()]
        self._connections.clear()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_connection(
        self,
        transport: SSETransport,
        inbound_reader: Any,
        pending: dict[Any, asyncio.Future],
    ) -> None:
        _session_id.set(transport.session_id)
        outbound_writer, outbound_reader = anyio.create_memory_object_stream[SessionMessage](0)
        options = self._server.create_initialization_options().model_copy(
            update={"capabilities": self.capabilities()}
        )

        async def pump() -> None:
            async with outbound_reader:
                async for session_message in outbound_reader:
                    await self._send(transport, session_message.message)
                    waiter = pending.pop(getattr(session_message.message.root, "id", None), None)
                    if waiter is not None and not waiter.done():
                        waiter.set_result(None)

        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(pump)
                await self._server.run(inbound_reader, outbound_writer, options, stateless=True)
        except Exception as e:
            logger.error(f"RPC session {transport.session_id} failed: {e}")
        finally:
            for waiter in pending.values():
                if not waiter.done():
                    waiter.set_result(None)
            pending.clear()
            logger.debug(f"RPC session ended: {transport.session_id}")

    async def _send(self, transport: SSETransport, message: JSONRPCMessage | dict[str, Any]) -> None:
        try:
            await transport.send(message)
        except (TransportError, StreamClosedError) as e:
            logger.debug(f"Dropping reply for session {transport.session_id}: {e}")

    # ================================================================
    # Request handlers
    # ================================================================

    def _guarded(self, handler: Callable[[Any], Awaitable[types.ServerResult]]):
        async def guarded(request: Any) -> types.ServerResult:
            try:
                return await handler(request)
            except McpError:
                raise
            except InvocationError as e:
                raise _error(INTERNAL_ERROR, str(e)) from e
            except Exception as e:
                logger.error(f"Error handling {request.method}: {e}")
                raise _error(INTERNAL_ERROR, "Internal error") from e

        return guarded

    def _context(self) -> ProcedureContext:
        return ProcedureContext(
            session_id=_session_id.get(),
            request_id=self._server.request_context.request_id,
        )

    async def _list_tools(self, request: types.ListToolsRequest) -> types.ServerResult:
        return types.ServerResult(
            types.ListToolsResult(tools=[t.to_mcp_format() for t in self.tools.values()])
        )

    async def _call_tool(self, request: types.CallToolRequest) -> types.ServerResult:
        name = request.params.name
        tool = self.tools.get(name)
        if tool is None:
            raise _error(INVALID_PARAMS, f"Tool {name} not found")

        arguments = _validated(tool.arguments, request.params.arguments)
        try:
            result = await _call(tool.handler, arguments, self._context())
        except InvocationError as e:
            logger.error(f"Tool {name} failed: {e}")
            return types.ServerResult(
                types.CallToolResult(content=[types.TextContent(type="text", text=str(e))], isError=True)
            )
        return types.ServerResult(_coerce(result, types.CallToolResult))

    async def _list_resources(self, request: types.ListResourcesRequest) -> types.ServerResult:
        resources: list[types.Resource] = []
        for definition in self.resources.values():
            if definition.list_resources is None:
                continue
            listed = await _call(definition.list_resources, self._context())
            resources.extend(_coerce(listed, types.ListResourcesResult).resources)
        return types.ServerResult(types.ListResourcesResult(resources=resources))

    async def _list_resource_templates(self, request: types.ListResourceTemplatesRequest) -> types.ServerResult:
        return types.ServerResult(
            types.ListResourceTemplatesResult(
                resourceTemplates=[r.to_mcp_format() for r in self.resources.values()]
            )
        )

    async def _read_resource(self, request: types.ReadResourceRequest) -> types.ServerResult:
        uri = str(request.params.uri)
        for definition in self.resources.values():
            variables = definition.match(uri)
            if variables is not None:
                result = await _call(definition.read, uri, variables, self._context())
                return types.ServerResult(_coerce(result, types.ReadResourceResult))
        raise _error(INVALID_PARAMS, f"Resource {uri} not found")

    async def _list_prompts(self, request: types.ListPromptsRequest) -> types.ServerResult:
        return types.ServerResult(
            types.ListPromptsResult(prompts=[p.to_mcp_format() for p in self.prompts.values()])
        )

    async def _get_prompt(self, request: types.GetPromptRequest) -> types.ServerResult:
        name = request.params.name
        prompt = self.prompts.get(name)
        if prompt is None:
            raise _error(INVALID_PARAMS, f"Prompt {name} not found")

        arguments = _validated(prompt.arguments, request.params.arguments)
        result = await _call(prompt.handler, arguments, self._context())
        return types.ServerResult(_coerce(result, types.GetPromptResult))
