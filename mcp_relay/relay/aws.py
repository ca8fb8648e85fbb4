"""
AWS Relay Substrates

- SqsSessionQueue: one SQS FIFO queue per session
- DynamoRecordStore: one DynamoDB item per session in a shared table

Item layout (session table, partition key sessionId):
    {
        "sessionId": {"S": "<id>"},
        "createdAt": {"S": "<iso timestamp>"},
        "messageQueue": {"L": [{"M": {"payload": {"S": "<json-rpc text>"}}}]}
    }
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from mcp_relay.aws import error_code
from mcp_relay.relay.ports import (
    QueuedMessage,
    SessionQueue,
    SessionRecord,
    SessionRecordStore,
    SessionNotFoundError,
    ProvisioningError,
)

logger = logging.getLogger(__name__)

_MISSING_QUEUE_CODES = {
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
}


def _is_missing_queue(exc: ClientError) -> bool:
    return error_code(exc) in _MISSING_QUEUE_CODES


# =============================================================================
# SQS Session Queue
# =============================================================================

class SqsSessionQueue(SessionQueue):
    """
    Session queues on SQS FIFO queues with content-based deduplication.

    Receives block a thread for up to the long-poll wait, so they run on a
    dedicated executor; every other call uses the loop's default executor.
    """

    def __init__(self, sqs: Any, long_poll_workers: int = 32):
        """
        Initialize the SQS session queue.

        Args:
            sqs: boto3 SQS client
            long_poll_workers: Threads reserved for receive_message long-polls
        """
        self._sqs = sqs
        self._poll_executor = ThreadPoolExecutor(
            max_workers=long_poll_workers,
            thread_name_prefix="sqs-long-poll",
        )

    async def create_queue(self, name: str) -> str:
        try:
            response = await asyncio.to_thread(
                self._sqs.create_queue,
                QueueName=name,
                Attributes={
                    "FifoQueue": "true",
                    "ContentBasedDeduplication": "true",
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise ProvisioningError(f"Failed to create queue {name}: {e}") from e
        return response["QueueUrl"]

    async def get_queue_url(self, name: str) -> str:
        try:
            response = await asyncio.to_thread(self._sqs.get_queue_url, QueueName=name)
        except ClientError as e:
            if _is_missing_queue(e):
                raise SessionNotFoundError(name) from e
            raise
        return response["QueueUrl"]

    async def send_message(self, queue_url: str, body: str, group_id: str) -> str:
        try:
            response = await asyncio.to_thread(
                self._sqs.send_message,
                QueueUrl=queue_url,
                MessageBody=body,
                MessageGroupId=group_id,
            )
        except ClientError as e:
            if _is_missing_queue(e):
                raise SessionNotFoundError(queue_url) from e
            raise
        return response.get("MessageId", "")

    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: float = 20.0,
    ) -> list[QueuedMessage]:
        receive = functools.partial(
            self._sqs.receive_message,
            QueueUrl=queue_url,
            MaxNumberOfMessages=max_messages,
            # SQS takes whole seconds, capped at 20
            WaitTimeSeconds=max(0, min(20, int(wait_seconds))),
        )
        try:
            response = await asyncio.get_running_loop().run_in_executor(self._poll_executor, receive)
        except ClientError as e:
            if _is_missing_queue(e):
                raise SessionNotFoundError(queue_url) from e
            raise

        return [
            QueuedMessage(
                body=message.get("Body", ""),
                receipt=message["ReceiptHandle"],
                message_id=message.get("MessageId", ""),
            )
            for message in response.get("Messages", [])
        ]

    async def delete_message(self, queue_url: str, receipt: str) -> None:
        await asyncio.to_thread(
            self._sqs.delete_message,
            QueueUrl=queue_url,
            ReceiptHandle=receipt,
        )

    async def delete_queue(self, queue_url: str) -> None:
        try:
            await asyncio.to_thread(self._sqs.delete_queue, QueueUrl=queue_url)
        except ClientError as e:
            if _is_missing_queue(e):
                raise SessionNotFoundError(queue_url) from e
            raise

    async def close(self) -> None:
        self._poll_executor.shutdown(wait=False, cancel_futures=True)


# =============================================================================
# DynamoDB Session Record Store
# =============================================================================

class DynamoRecordStore(SessionRecordStore):
    """
    Session records in a DynamoDB table.

    Appends use list_append(if_not_exists(...)) conditioned on the item
    existing, so a submission never resurrects a deleted session. Clearing
    is an unconditional REMOVE of the list attribute.
    """

    def __init__(self, dynamodb: Any, table_name: str):
        """
        Initialize the DynamoDB record store.

        Args:
            dynamodb: boto3 DynamoDB client
            table_name: Session table (partition key sessionId)
        """
        self._ddb = dynamodb
        self._table = table_name

    def _key(self, session_id: str) -> dict[str, Any]:
        return {"sessionId": {"S": session_id}}

    async def create(self, session_id: str) -> SessionRecord:
        record = SessionRecord(
            session_id=session_id,
            created_at=datetime.now(timezone.utc),
        )
        try:
            await asyncio.to_thread(
                self._ddb.put_item,
                TableName=self._table,
                Item={
                    "sessionId": {"S": session_id},
                    "createdAt": {"S": record.created_at.isoformat()},
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise ProvisioningError(f"Failed to create session {session_id}: {e}") from e
        return record

    async def get(self, session_id: str) -> SessionRecord | None:
        response = await asyncio.to_thread(
            self._ddb.get_item,
            TableName=self._table,
            Key=self._key(session_id),
            ConsistentRead=True,
        )
        item = response.get("Item")
        if item is None:
            return None

        messages = [
            entry["M"]["payload"]["S"]
            for entry in item.get("messageQueue", {}).get("L", [])
            if "payload" in entry.get("M", {})
        ]
        created_at = item.get("createdAt", {}).get("S")
        return SessionRecord(
            session_id=session_id,
            messages=messages,
            created_at=(
                datetime.fromisoformat(created_at)
                if created_at else datetime.now(timezone.utc)
            ),
        )

    async def append_message(self, session_id: str, payload: str) -> None:
        try:
            await asyncio.to_thread(
                self._ddb.update_item,
                TableName=self._table,
                Key=self._key(session_id),
                UpdateExpression=(
                    "SET messageQueue = list_append("
                    "if_not_exists(messageQueue, :empty_list), :message)"
                ),
                ConditionExpression="attribute_exists(sessionId)",
                ExpressionAttributeValues={
                    ":message": {"L": [{"M": {"payload": {"S": payload}}}]},
                    ":empty_list": {"L": []},
                },
            )
        except ClientError as e:
            if error_code(e) == "ConditionalCheckFailedException":
                raise SessionNotFoundError(session_id) from e
            raise

    async def clear_messages(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._ddb.update_item,
            TableName=self._table,
            Key=self._key(session_id),
            UpdateExpression="REMOVE messageQueue",
        )

    async def delete(self, session_id: str) -> None:
        await asyncio.to_thread(
            self._ddb.delete_item,
            TableName=self._table,
            Key=self._key(session_id),
        )
