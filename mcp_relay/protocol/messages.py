"""
JSON-RPC 2.0 Message Codec

Message shapes come from the MCP SDK (mcp.types): a JSONRPCMessage wraps one
of four members:
- Request: has both "method" and "id"
- Notification: has "method" but no "id"
- Response: has "id" and "result"
- Error: has "id" and "error"

Ids must be strings or integers. Booleans, floats, null and containers are
rejected before the SDK sees the message, so lax coercion can never turn
`true` into `1`.

The one message the SDK cannot express is a parse error for input that had
no usable id; parse_error_payload() builds it as plain data.
"""

import json
from typing import Any

import mcp.types as types
from pydantic import ValidationError

JSONRPC_VERSION = "2.0"

PARSE_ERROR = types.PARSE_ERROR
INVALID_REQUEST = types.INVALID_REQUEST
METHOD_NOT_FOUND = types.METHOD_NOT_FOUND
INVALID_PARAMS = types.INVALID_PARAMS
INTERNAL_ERROR = types.INTERNAL_ERROR

RequestId = types.RequestId
JSONRPCMessage = types.JSONRPCMessage

_MEMBER_TYPES = (
    types.JSONRPCRequest,
    types.JSONRPCNotification,
    types.JSONRPCResponse,
    types.JSONRPCError,
)


class MessageValidationError(ValueError):
    """Raised when raw input is not a valid JSON-RPC 2.0 message."""

    def __init__(self, message: str, detail: Any = None):
        self.detail = detail
        super().__init__(message)


# =============================================================================
# Codec
# =============================================================================

def _check_id(data: dict[str, Any]) -> None:
    if "id" not in data:
        return
    request_id = data["id"]
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        raise MessageValidationError(
            f"Invalid id: expected a string or integer, got {type(request_id).__name__}"
        )


def validate(raw: Any) -> JSONRPCMessage:
    """
    Parse and validate a protocol message.

    Args:
        raw: JSON text (str or bytes), an already-decoded dict, or an SDK message

    Returns:
        The validated message

    Raises:
        MessageValidationError: If the input is not valid JSON or does not
            match any JSON-RPC 2.0 message shape
    """
    if isinstance(raw, types.JSONRPCMessage):
        return raw
    if isinstance(raw, _MEMBER_TYPES):
        return types.JSONRPCMessage(raw)

    data = raw
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MessageValidationError(f"Invalid JSON: {e}", detail=str(e)) from e

    if not isinstance(data, dict):
        raise MessageValidationError(
            f"Expected a JSON-RPC message object, got {type(data).__name__}"
        )

    _check_id(data)
    try:
        return types.JSONRPCMessage.model_validate(data)
    except ValidationError as e:
        raise MessageValidationError(
            f"Invalid JSON-RPC message: {e.error_count()} validation error(s)",
            detail=e.errors(include_url=False, include_context=False),
        ) from e


def to_dict(message: JSONRPCMessage | dict[str, Any]) -> dict[str, Any]:
    """Plain JSON-compatible data for a message, without unset optional members."""
    if isinstance(message, dict):
        return message
    return message.model_dump(mode="json", by_alias=True, exclude_none=True)


def serialize(message: JSONRPCMessage | dict[str, Any]) -> str:
    """Compact JSON text for a message."""
    if isinstance(message, dict):
        return json.dumps(message, separators=(",", ":"))
    return message.model_dump_json(by_alias=True, exclude_none=True)


# =============================================================================
# Constructors
# =============================================================================

def create_result(request_id: RequestId, result: dict[str, Any]) -> JSONRPCMessage:
    """Build a success response."""
    return types.JSONRPCMessage(
        types.JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, result=result)
    )


def create_error(
    request_id: RequestId,
    code: int,
    message: str,
    data: Any = None,
) -> JSONRPCMessage:
    """Build an error response for a request with a known id."""
    return types.JSONRPCMessage(
        types.JSONRPCError(
            jsonrpc=JSONRPC_VERSION,
            id=request_id,
            error=types.ErrorData(code=code, message=message, data=data),
        )
    )


def parse_error_payload(message: str = "Parse error") -> dict[str, Any]:
    """A -32700 error with a null id, for input that could not be parsed."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": None,
        "error": {"code": PARSE_ERROR, "message": message},
    }
