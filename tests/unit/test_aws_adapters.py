"""Unit tests for the SQS, DynamoDB and registration-table adapters (mocked boto3)."""

from __future__ import annotations

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mcp_relay.registry import RegistryError
from mcp_relay.registry.dynamodb import DynamoRegistrationStore, from_item, to_item
from mcp_relay.relay import ProvisioningError, SessionNotFoundError
from mcp_relay.relay.aws import DynamoRecordStore, SqsSessionQueue

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/mcp-session-s.fifo"


def _client_error(code: str, operation: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# =============================================================================
# SQS
# =============================================================================


class TestSqsSessionQueue:
    """Tests for the SQS FIFO adapter."""

    @pytest.mark.asyncio
    async def test_create_fifo_queue(self) -> None:
        sqs = MagicMock()
        sqs.create_queue.return_value = {"QueueUrl": QUEUE_URL}

        assert await SqsSessionQueue(sqs).create_queue("mcp-session-s.fifo") == QUEUE_URL
        sqs.create_queue.assert_called_once_with(
            QueueName="mcp-session-s.fifo",
            Attributes={"FifoQueue": "true", "ContentBasedDeduplication": "true"},
        )

    @pytest.mark.asyncio
    async def test_create_failure(self) -> None:
        sqs = MagicMock()
        sqs.create_queue.side_effect = _client_error("AccessDenied")
        with pytest.raises(ProvisioningError):
            await SqsSessionQueue(sqs).create_queue("mcp-session-s.fifo")

    @pytest.mark.asyncio
    async def test_missing_queue(self) -> None:
        """Both missing-queue error codes map to SessionNotFoundError."""
        sqs = MagicMock()
        sqs.get_queue_url.side_effect = _client_error("AWS.SimpleQueueService.NonExistentQueue")
        sqs.send_message.side_effect = _client_error("QueueDoesNotExist")
        queue = SqsSessionQueue(sqs)

        with pytest.raises(SessionNotFoundError):
            await queue.get_queue_url("mcp-session-ghost.fifo")
        with pytest.raises(SessionNotFoundError):
            await queue.send_message(QUEUE_URL, "x", group_id="ghost")

    @pytest.mark.asyncio
    async def test_send_uses_session_group(self) -> None:
        sqs = MagicMock()
        sqs.send_message.return_value = {"MessageId": "m-1"}

        assert await SqsSessionQueue(sqs).send_message(QUEUE_URL, "body", group_id="s") == "m-1"
        sqs.send_message.assert_called_once_with(
            QueueUrl=QUEUE_URL, MessageBody="body", MessageGroupId="s"
        )

    @pytest.mark.asyncio
    async def test_receive_clamps_wait(self) -> None:
        """Wait times are whole seconds between 0 and 20."""
        sqs = MagicMock()
        sqs.receive_message.return_value = {
            "Messages": [{"Body": "a", "ReceiptHandle": "r-1", "MessageId": "m-1"}]
        }
        queue = SqsSessionQueue(sqs)

        [message] = await queue.receive_messages(QUEUE_URL, wait_seconds=45)
        assert (message.body, message.receipt) == ("a", "r-1")
        assert sqs.receive_message.call_args.kwargs["WaitTimeSeconds"] == 20

        sqs.receive_message.return_value = {}
        assert await queue.receive_messages(QUEUE_URL, wait_seconds=0.5) == []
        assert sqs.receive_message.call_args.kwargs["WaitTimeSeconds"] == 0

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        sqs = MagicMock()
        queue = SqsSessionQueue(sqs)
        await queue.delete_message(QUEUE_URL, "r-1")
        await queue.delete_queue(QUEUE_URL)
        sqs.delete_message.assert_called_once_with(QueueUrl=QUEUE_URL, ReceiptHandle="r-1")
        sqs.delete_queue.assert_called_once_with(QueueUrl=QUEUE_URL)

    @pytest.mark.asyncio
    async def test_long_polls_do_not_delay_other_calls(self) -> None:
        """Lookups complete while every default-executor thread's worth of receives is blocked."""
        release = threading.Event()

        def receive_message(**kwargs):
            release.wait(5)
            return {}

        sqs = MagicMock()
        sqs.receive_message.side_effect = receive_message
        sqs.get_queue_url.return_value = {"QueueUrl": QUEUE_URL}
        queue = SqsSessionQueue(sqs, long_poll_workers=8)
        default_executor = ThreadPoolExecutor(max_workers=2)
        asyncio.get_running_loop().set_default_executor(default_executor)

        polls = [
            asyncio.create_task(queue.receive_messages(QUEUE_URL, wait_seconds=20))
            for _ in range(5)
        ]
        try:
            await asyncio.sleep(0.05)
            url = await asyncio.wait_for(queue.get_queue_url("mcp-session-s.fifo"), timeout=1)
        finally:
            release.set()
            results = await asyncio.gather(*polls)
            await queue.close()
            default_executor.shutdown(wait=False)

        assert url == QUEUE_URL
        assert results == [[]] * 5
        assert sqs.receive_message.call_count == 5


# =============================================================================
# DynamoDB session records
# =============================================================================


class TestDynamoRecordStore:
    """Tests for the session-table adapter."""

    @pytest.mark.asyncio
    async def test_create(self) -> None:
        ddb = MagicMock()
        await DynamoRecordStore(ddb, "sessions").create("s")
        item = ddb.put_item.call_args.kwargs["Item"]
        assert item["sessionId"] == {"S": "s"}
        assert "createdAt" in item

    @pytest.mark.asyncio
    async def test_get(self) -> None:
        """The message list is read from the nested payload attributes."""
        ddb = MagicMock()
        ddb.get_item.return_value = {
            "Item": {
                "sessionId": {"S": "s"},
                "createdAt": {"S": "2024-01-01T00:00:00+00:00"},
                "messageQueue": {"L": [
                    {"M": {"payload": {"S": "one"}}},
                    {"M": {"payload": {"S": "two"}}},
                ]},
            }
        }

        record = await DynamoRecordStore(ddb, "sessions").get("s")

        assert record.messages == ["one", "two"]
        assert ddb.get_item.call_args.kwargs["ConsistentRead"] is True

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        ddb = MagicMock()
        ddb.get_item.return_value = {}
        assert await DynamoRecordStore(ddb, "sessions").get("s") is None

    @pytest.mark.asyncio
    async def test_append_is_conditional(self) -> None:
        """Appends use list_append and require the item to exist."""
        ddb = MagicMock()
        await DynamoRecordStore(ddb, "sessions").append_message("s", "payload")

        kwargs = ddb.update_item.call_args.kwargs
        assert "list_append(if_not_exists(messageQueue, :empty_list), :message)" in kwargs["UpdateExpression"]
        assert kwargs["ConditionExpression"] == "attribute_exists(sessionId)"
        assert kwargs["ExpressionAttributeValues"][":message"] == {
            "L": [{"M": {"payload": {"S": "payload"}}}]
        }

    @pytest.mark.asyncio
    async def test_append_missing_session(self) -> None:
        ddb = MagicMock()
        ddb.update_item.side_effect = _client_error("ConditionalCheckFailedException", "UpdateItem")
        with pytest.raises(SessionNotFoundError):
            await DynamoRecordStore(ddb, "sessions").append_message("ghost", "payload")

    @pytest.mark.asyncio
    async def test_clear_is_unconditional(self) -> None:
        ddb = MagicMock()
        await DynamoRecordStore(ddb, "sessions").clear_messages("s")
        kwargs = ddb.update_item.call_args.kwargs
        assert kwargs["UpdateExpression"] == "REMOVE messageQueue"
        assert "ConditionExpression" not in kwargs


# =============================================================================
# DynamoDB registrations
# =============================================================================


class TestDynamoRegistrationStore:
    """Tests for the registration-table adapter."""

    def test_item_shape(self, make_registration) -> None:
        """Items use camelCase keys and a JSON-text parameters attribute."""
        registration = make_registration(parameters={"city": "string", "days": {"type": "number"}})
        item = to_item(registration)

        assert item["id"] == {"S": "tool-weather"}
        assert item["lambdaArn"]["S"].startswith("arn:aws:lambda:")
        assert json.loads(item["parameters"]["S"]) == registration.parameters
        assert from_item(item) == registration

    @pytest.mark.asyncio
    async def test_list_all_paginates_and_skips_malformed(self, make_registration) -> None:
        ddb = MagicMock()
        first = to_item(make_registration(name="a"))
        second = to_item(make_registration(name="b"))
        ddb.scan.side_effect = [
            {"Items": [first, {"id": {"S": "junk"}}], "LastEvaluatedKey": {"id": {"S": "tool-a"}}},
            {"Items": [second]},
        ]

        registrations = await DynamoRegistrationStore(ddb, "registrations").list_all()

        assert [r.id for r in registrations] == ["tool-a", "tool-b"]
        assert ddb.scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"id": {"S": "tool-a"}}

    @pytest.mark.asyncio
    async def test_list_all_failure(self) -> None:
        ddb = MagicMock()
        ddb.scan.side_effect = _client_error("ResourceNotFoundException", "Scan")
        with pytest.raises(RegistryError):
            await DynamoRegistrationStore(ddb, "registrations").list_all()

    @pytest.mark.asyncio
    async def test_get_put_delete(self, make_registration) -> None:
        ddb = MagicMock()
        store = DynamoRegistrationStore(ddb, "registrations")
        registration = make_registration()

        await store.put(registration)
        ddb.get_item.return_value = {"Item": ddb.put_item.call_args.kwargs["Item"]}
        assert await store.get("tool-weather") == registration

        ddb.delete_item.return_value = {"Attributes": {"id": {"S": "tool-weather"}}}
        assert await store.delete("tool-weather") is True
        ddb.delete_item.return_value = {}
        assert await store.delete("tool-weather") is False
