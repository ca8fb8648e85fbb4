"""
DynamoDB Registration Store

Registrations live in one table keyed by id. The parameters object is
stored as a JSON string so arbitrary nesting survives attribute typing.
"""

import asyncio
import json
import logging
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from mcp_relay.registry.ports import Registration, RegistrationStore, RegistryError

logger = logging.getLogger(__name__)


# =============================================================================
# Serialization Helpers
# =============================================================================

_deserializer = TypeDeserializer()
_serializer = TypeSerializer()


def to_item(registration: Registration) -> dict[str, Any]:
    """Registration to a DynamoDB item."""
    data = registration.to_wire()
    data["parameters"] = json.dumps(data["parameters"])
    return {k: _serializer.serialize(v) for k, v in data.items()}


def from_item(item: dict[str, Any]) -> Registration:
    """DynamoDB item to a Registration."""
    raw = {k: _deserializer.deserialize(v) for k, v in item.items()}
    if isinstance(raw.get("parameters"), str):
        raw["parameters"] = json.loads(raw["parameters"])
    return Registration.model_validate(raw)


class DynamoRegistrationStore(RegistrationStore):
    """Registration storage in a DynamoDB table (partition key id)."""

    def __init__(self, dynamodb: Any, table_name: str):
        """
        Initialize the store.

        Args:
            dynamodb: boto3 DynamoDB client
            table_name: Registration table
        """
        self._ddb = dynamodb
        self._table = table_name

    async def list_all(self) -> list[Registration]:
        registrations: list[Registration] = []
        kwargs: dict[str, Any] = {"TableName": self._table}
        try:
            while True:
                response = await asyncio.to_thread(self._ddb.scan, **kwargs)
                for item in response.get("Items", []):
                    try:
                        registrations.append(from_item(item))
                    except (ValidationError, ValueError) as e:
                        logger.warning(f"Skipping malformed registration item: {e}")
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as e:
            raise RegistryError(f"Registration scan failed: {e}") from e
        return registrations

    async def get(self, registration_id: str) -> Registration | None:
        response = await asyncio.to_thread(
            self._ddb.get_item,
            TableName=self._table,
            Key={"id": {"S": registration_id}},
        )
        item = response.get("Item")
        if item is None:
            return None
        return from_item(item)

    async def put(self, registration: Registration) -> Registration:
        await asyncio.to_thread(
            self._ddb.put_item,
            TableName=self._table,
            Item=to_item(registration),
        )
        return registration

    async def delete(self, registration_id: str) -> bool:
        response = await asyncio.to_thread(
            self._ddb.delete_item,
            TableName=self._table,
            Key={"id": {"S": registration_id}},
            ReturnValues="ALL_OLD",
        )
        return "Attributes" in response
