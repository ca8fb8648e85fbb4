"""
Relay Module

Moves submitted messages from the submission leg to the streaming leg
through external shared state keyed by session id.

Components:
- SessionQueue / SessionRecordStore: substrate ports
- InMemory*, Redis*, Sqs/Dynamo*: substrate adapters
- QueueRelay / RecordRelay: drain loops run by the streaming leg
- QueueStrategy / RecordStrategy: pair a substrate with its relay and deposit

The Redis and AWS adapters live in mcp_relay.relay.redis and
mcp_relay.relay.aws and are imported by the factory on demand.
"""

from mcp_relay.relay.ports import (
    QueuedMessage,
    SessionRecord,
    SessionQueue,
    SessionRecordStore,
    SubstrateError,
    SessionNotFoundError,
    ProvisioningError,
)
from mcp_relay.relay.memory import InMemorySessionQueue, InMemorySessionRecordStore
from mcp_relay.relay.inbound import InboundRelay, QueueRelay, RecordRelay, queue_name_for
from mcp_relay.relay.strategy import RelayStrategy, QueueStrategy, RecordStrategy

__all__ = [
    # Port interfaces
    "QueuedMessage",
    "SessionRecord",
    "SessionQueue",
    "SessionRecordStore",
    "SubstrateError",
    "SessionNotFoundError",
    "ProvisioningError",
    # In-memory adapters
    "InMemorySessionQueue",
    "InMemorySessionRecordStore",
    # Relay loops
    "InboundRelay",
    "QueueRelay",
    "RecordRelay",
    "queue_name_for",
    # Strategies
    "RelayStrategy",
    "QueueStrategy",
    "RecordStrategy",
]
