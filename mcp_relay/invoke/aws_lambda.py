"""
AWS Lambda Procedure Invoker

Invokes procedure functions with a synchronous (RequestResponse) Lambda
invocation, and manages the resource-policy statement that lets a
registered function be invoked on the relay's behalf.
"""

import asyncio
import json
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from mcp_relay.aws import error_code
from mcp_relay.invoke.ports import InvocationError, ProcedureInvoker

logger = logging.getLogger(__name__)


def statement_id(registration_id: str) -> str:
    return f"MCP-Execute-{registration_id}"


class LambdaInvoker(ProcedureInvoker):
    """Invoker backed by the Lambda API."""

    def __init__(self, lambda_client: Any, function_name: str | None = None):
        """
        Initialize the invoker.

        Args:
            lambda_client: boto3 Lambda client
            function_name: Relay function that permission statements are
                added to (None disables grant/revoke)
        """
        self._lambda = lambda_client
        self._function_name = function_name

    async def invoke(self, target: str, payload: dict[str, Any]) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._lambda.invoke,
                FunctionName=target,
                InvocationType="RequestResponse",
                Payload=json.dumps(payload).encode("utf-8"),
            )
        except (BotoCoreError, ClientError) as e:
            raise InvocationError(f"Invocation of {target} failed: {e}") from e

        body = response["Payload"].read()
        if response.get("FunctionError"):
            raise InvocationError(
                f"Function {target} raised {response['FunctionError']}: "
                f"{body.decode('utf-8', errors='replace')}"
            )
        return body

    async def grant_access(self, registration_id: str, target: str) -> None:
        if self._function_name is None:
            return
        await asyncio.to_thread(
            self._lambda.add_permission,
            FunctionName=self._function_name,
            StatementId=statement_id(registration_id),
            Action="lambda:InvokeFunction",
            Principal="lambda.amazonaws.com",
            SourceArn=target,
        )
        logger.info(f"Granted invoke permission for {registration_id}")

    async def revoke_access(self, registration_id: str) -> None:
        if self._function_name is None:
            return
        try:
            await asyncio.to_thread(
                self._lambda.remove_permission,
                FunctionName=self._function_name,
                StatementId=statement_id(registration_id),
            )
        except ClientError as e:
            if error_code(e) != "ResourceNotFoundException":
                raise
            logger.warning(f"No permission statement to remove for {registration_id}")
            return
        logger.info(f"Revoked invoke permission for {registration_id}")
