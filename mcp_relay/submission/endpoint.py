"""
Submission Endpoint

Receives one client message for a session and deposits it into the relay
substrate. Runs in isolation from the streaming leg: the substrate, keyed by
session id, is the only thing the two share.

Formats:
- raw:     POST /message?sessionId=<id>, body = JSON-RPC message text
- wrapped: POST /message, body = {"sessionId": "<uuid>", "message": "<text>"}

Responses (status, body):
    202 {"status": "Message accepted"}
    400 {"error": "Missing sessionId query parameter"}
    400 {"error": "Missing request body, expected a raw JSON-RPC message string"}
    400 {"error": "Invalid JSON-RPC format"}
    400 {"error": "Missing request body"}               (wrapped)
    400 {"error": "Invalid request format"}             (wrapped)
    404 {"error": "Session not found" | "Session invalid"}
    500 {"error": "Internal server error"}
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError

from mcp_relay.protocol import MessageValidationError, validate
from mcp_relay.relay import RelayStrategy, SessionNotFoundError

logger = logging.getLogger(__name__)


class SubmissionFormat(str, Enum):
    RAW = "raw"
    WRAPPED = "wrapped"


@dataclass
class SubmissionResult:
    """HTTP status and JSON body for one submission."""
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.status_code == 202


class WrappedSubmission(BaseModel):
    sessionId: UUID
    message: str


def _accepted() -> SubmissionResult:
    return SubmissionResult(202, {"status": "Message accepted"})


def _internal_error() -> SubmissionResult:
    return SubmissionResult(500, {"error": "Internal server error"})


def _bad_request(message: str) -> SubmissionResult:
    return SubmissionResult(400, {"error": message})


class SubmissionEndpoint:
    """Validates submissions and deposits them through the relay strategy."""

    def __init__(
        self,
        strategy: RelayStrategy,
        submission_format: SubmissionFormat | str = SubmissionFormat.RAW,
    ):
        self._strategy = strategy
        self._format = SubmissionFormat(submission_format)

    @property
    def submission_format(self) -> SubmissionFormat:
        return self._format

    async def submit(self, session_id: str | None, body: str | bytes | None) -> SubmissionResult:
        """
        Handle one submission. Never raises.

        Args:
            session_id: The sessionId query parameter (ignored when wrapped)
            body: Raw request body
        """
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")

        if self._format == SubmissionFormat.WRAPPED:
            if not body:
                return _bad_request("Missing request body")
            try:
                wrapped = WrappedSubmission.model_validate_json(body)
            except ValidationError:
                return _bad_request("Invalid request format")
            return await self._deposit(str(wrapped.sessionId), wrapped.message)

        if not session_id:
            return _bad_request("Missing sessionId query parameter")
        if not body:
            return _bad_request("Missing request body, expected a raw JSON-RPC message string")
        try:
            validate(body)
        except MessageValidationError:
            return _bad_request("Invalid JSON-RPC format")
        return await self._deposit(session_id, body)

    async def _deposit(self, session_id: str, payload: str) -> SubmissionResult:
        try:
            await self._strategy.deposit(session_id, payload)
        except SessionNotFoundError:
            logger.info(f"Submission for unknown session {session_id}")
            return SubmissionResult(404, {"error": self._strategy.not_found_message})
        except Exception as e:
            logger.error(f"Failed to deposit message for session {session_id}: {e}")
            return _internal_error()
        logger.debug(f"Message accepted for session {session_id}")
        return _accepted()
