"""
Compute Invocation Port

Registered procedures run in external compute functions. An invoker sends a
JSON payload to a function (addressed by ARN) and returns the raw response,
which is always wrapped as:

    {"statusCode": 200, "body": <result object or JSON text>}

The body must match the MCP result type (mcp.types) for the registration:
- tool: CallToolResult
- prompt: GetPromptResult
- resource list: ListResourcesResult
- resource read: ReadResourceResult
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class InvocationResponse(BaseModel):
    """The {statusCode, body} wrapper every function returns."""
    statusCode: int
    body: Any


ResultT = TypeVar("ResultT", bound=BaseModel)


# =============================================================================
# Invoker
# =============================================================================

class ProcedureInvoker(ABC):
    """
    Abstract interface for invoking procedure functions.

    Also manages the invoke permission a registration grants the relay
    function; adapters without a permission model keep the default no-ops.
    """

    @abstractmethod
    async def invoke(self, target: str, payload: dict[str, Any]) -> bytes | dict[str, Any]:
        """
        Invoke a function synchronously.

        Args:
            target: Function ARN
            payload: JSON-serializable request

        Returns:
            Raw response payload (JSON bytes or an already-decoded dict)

        Raises:
            InvocationError: If the invocation itself fails
        """
        ...

    async def grant_access(self, registration_id: str, target: str) -> None:
        """Allow the relay to invoke `target` on behalf of a registration."""
        pass

    async def revoke_access(self, registration_id: str) -> None:
        """Remove the permission added by grant_access."""
        pass

    async def close(self) -> None:
        pass


def decode_response(raw: bytes | str | dict[str, Any], model: type[ResultT]) -> ResultT:
    """
    Decode a function response into a result model.

    Raises:
        InvocationError: If the payload is not a {statusCode, body} wrapper,
            reports an error status, or the body does not match `model`
    """
    try:
        data = json.loads(raw) if isinstance(raw, (bytes, bytearray, str)) else raw
        response = InvocationResponse.model_validate(data)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise InvocationError(f"Malformed function response: {e}") from e

    body = response.body
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise InvocationError(f"Function response body is not JSON: {e}") from e

    if response.statusCode >= 400:
        raise InvocationError(
            f"Function returned status {response.statusCode}",
            status_code=response.statusCode,
        )

    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise InvocationError(
            f"Function response does not match {model.__name__}: "
            f"{e.error_count()} validation error(s)"
        ) from e


async def invoke_procedure(
    invoker: ProcedureInvoker,
    target: str,
    payload: dict[str, Any],
    model: type[ResultT],
) -> ResultT:
    """Invoke a function and decode its response."""
    logger.debug(f"Invoking {target}")
    raw = await invoker.invoke(target, payload)
    return decode_response(raw, model)


# =============================================================================
# Exceptions
# =============================================================================

class InvocationError(Exception):
    """A procedure function failed or returned an unusable response."""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
