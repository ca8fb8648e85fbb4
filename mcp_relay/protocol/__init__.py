# Protocol Layer
# JSON-RPC 2.0 codec over the MCP SDK message types, and SSE framing

from .messages import (
    JSONRPC_VERSION,
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
    RequestId,
    JSONRPCMessage,
    MessageValidationError,
    validate,
    to_dict,
    serialize,
    create_result,
    create_error,
    parse_error_payload,
)
from .sse import SSE_HEADERS, encode_headers, encode_event, endpoint_url

__all__ = [
    "JSONRPC_VERSION",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "RequestId",
    "JSONRPCMessage",
    "MessageValidationError",
    "validate",
    "to_dict",
    "serialize",
    "create_result",
    "create_error",
    "parse_error_payload",
    "SSE_HEADERS",
    "encode_headers",
    "encode_event",
    "endpoint_url",
]
