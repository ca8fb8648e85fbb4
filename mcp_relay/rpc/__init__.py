# RPC Layer
# Embedded MCP server and the installers that populate it from registrations

from .server import (
    RpcServer,
    ProcedureContext,
    ToolDefinition,
    ResourceDefinition,
    PromptDefinition,
)
from .installers import INSTALLERS, install_registration

__all__ = [
    "RpcServer",
    "ProcedureContext",
    "ToolDefinition",
    "ResourceDefinition",
    "PromptDefinition",
    "INSTALLERS",
    "install_registration",
]
