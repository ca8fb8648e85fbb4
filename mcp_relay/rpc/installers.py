"""
Registration Installers

One installer per registration type turns a stored registration into a
procedure on an RpcServer. Each installed procedure forwards to the
registration's compute function through the invoker.

Invoke payloads:
- tool:     {"args": {...}, "extra": {...}}
- prompt:   {"args": {...}, "extra": {...}}
- resource: {"action": "list", "extra": {...}}
            {"action": "read", "uri": "...", "variables": {...}, "extra": {...}}
"""

import logging
from typing import Any, Callable

from mcp.types import CallToolResult, GetPromptResult, ListResourcesResult, ReadResourceResult
from pydantic import ValidationError

from mcp_relay.invoke import ProcedureInvoker, invoke_procedure
from mcp_relay.registry import (
    DescriptorError,
    Registration,
    RegistrationType,
    RegistryError,
    ResourceParameters,
    model_from_descriptor,
)
from mcp_relay.rpc.server import ProcedureContext, RpcServer

logger = logging.getLogger(__name__)

Installer = Callable[[RpcServer, Registration, ProcedureInvoker], None]


def _model_name(registration: Registration) -> str:
    return "".join(part.capitalize() for part in registration.id.replace("_", "-").split("-"))


def install_tool(server: RpcServer, registration: Registration, invoker: ProcedureInvoker) -> None:
    arguments = model_from_descriptor(registration.parameters, _model_name(registration))
    target = registration.lambda_arn

    async def handler(args: dict[str, Any], ctx: ProcedureContext) -> CallToolResult:
        return await invoke_procedure(
            invoker, target, {"args": args, "extra": ctx.extra()}, CallToolResult
        )

    server.tool(registration.name, registration.description, handler, arguments)


def install_resource(server: RpcServer, registration: Registration, invoker: ProcedureInvoker) -> None:
    try:
        parameters = ResourceParameters.model_validate(registration.parameters)
    except ValidationError as e:
        raise DescriptorError(
            f"Resource {registration.name} needs a uriTemplate parameter"
        ) from e
    target = registration.lambda_arn

    async def list_resources(ctx: ProcedureContext) -> ListResourcesResult:
        return await invoke_procedure(
            invoker, target, {"action": "list", "extra": ctx.extra()}, ListResourcesResult
        )

    async def read(uri: str, variables: dict[str, str], ctx: ProcedureContext) -> ReadResourceResult:
        payload = {"action": "read", "uri": uri, "variables": variables, "extra": ctx.extra()}
        return await invoke_procedure(invoker, target, payload, ReadResourceResult)

    server.resource(
        registration.name,
        parameters.uriTemplate,
        read,
        list_resources=list_resources,
        description=registration.description,
    )


def install_prompt(server: RpcServer, registration: Registration, invoker: ProcedureInvoker) -> None:
    arguments = model_from_descriptor(registration.parameters, _model_name(registration))
    target = registration.lambda_arn

    async def handler(args: dict[str, Any], ctx: ProcedureContext) -> GetPromptResult:
        return await invoke_procedure(
            invoker, target, {"args": args, "extra": ctx.extra()}, GetPromptResult
        )

    server.prompt(registration.name, registration.description, handler, arguments)


INSTALLERS: dict[RegistrationType, Installer] = {
    RegistrationType.TOOL: install_tool,
    RegistrationType.RESOURCE: install_resource,
    RegistrationType.PROMPT: install_prompt,
}

_uncovered = set(RegistrationType) - set(INSTALLERS)
if _uncovered:
    raise RuntimeError(f"No installer for registration types: {sorted(t.value for t in _uncovered)}")


def install_registration(
    server: RpcServer,
    registration: Registration,
    invoker: ProcedureInvoker,
) -> None:
    """
    Install one registration on the server.

    Raises:
        RegistryError: If the type has no installer
        DescriptorError: If the parameters cannot be translated
    """
    installer = INSTALLERS.get(registration.type)
    if installer is None:
        raise RegistryError(f"Unsupported registration type: {registration.type}")
    installer(server, registration, invoker)
    logger.debug(f"Installed {registration.type.value} {registration.name}")
