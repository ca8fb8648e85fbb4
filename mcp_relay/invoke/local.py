"""
Local Procedure Invoker

Maps function ARNs to in-process callables. Used for development, tests, and
single-process deployments where procedures are plain Python functions.

Handlers receive the invoke payload and may be sync or async. A handler may
return the full {statusCode, body} wrapper; anything else is wrapped as a
200 response.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable

from mcp_relay.invoke.ports import InvocationError, ProcedureInvoker

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class LocalInvoker(ProcedureInvoker):
    """In-process invoker keyed by ARN."""

    def __init__(self, handlers: dict[str, Handler] | None = None):
        self._handlers: dict[str, Handler] = dict(handlers or {})
        # registration id -> ARN, mirrors the permission statements
        self.grants: dict[str, str] = {}

    def register(self, target: str, handler: Handler) -> None:
        self._handlers[target] = handler

    async def invoke(self, target: str, payload: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(target)
        if handler is None:
            raise InvocationError(f"No function registered for {target}")

        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
        except InvocationError:
            raise
        except Exception as e:
            logger.error(f"Function {target} raised: {e}")
            raise InvocationError(f"Function {target} failed: {e}") from e

        if isinstance(result, dict) and "statusCode" in result:
            return result
        return {"statusCode": 200, "body": result}

    async def grant_access(self, registration_id: str, target: str) -> None:
        self.grants[registration_id] = target

    async def revoke_access(self, registration_id: str) -> None:
        self.grants.pop(registration_id, None)
