"""
Relay Factory

Builds the process-wide collaborators (registry, invoker, relay strategy)
from RelaySettings. Clients are created once here and injected into the
session controller and the submission endpoint.

Usage:
    # From environment
    bundle = await create_bundle_from_env()

    # From settings
    settings = RelaySettings(strategy=RelayStrategyName.QUEUE, backend=Backend.REDIS)
    bundle = await create_bundle(settings)

    # In-memory, for tests and local runs
    bundle = create_memory_bundle(strategy=RelayStrategyName.RECORD)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from redis.asyncio import Redis

from mcp_relay.aws import create_client
from mcp_relay.config import (
    Backend,
    InvokerBackend,
    RegistryBackend,
    RelaySettings,
    RelayStrategyName,
    settings_from_env,
)
from mcp_relay.invoke import LocalInvoker, ProcedureInvoker
from mcp_relay.registry import InMemoryRegistrationStore, Registration, RegistrationStore
from mcp_relay.relay import (
    InMemorySessionQueue,
    InMemorySessionRecordStore,
    QueueStrategy,
    RecordStrategy,
    RelayStrategy,
    SessionQueue,
    SessionRecordStore,
)

logger = logging.getLogger(__name__)


@dataclass
class RelayBundle:
    """
    Process-wide collaborators with cleanup support.
    """
    registry: RegistrationStore
    invoker: ProcedureInvoker
    strategy: RelayStrategy
    settings: RelaySettings = field(default_factory=RelaySettings)
    _redis: Any = field(default=None, repr=False)  # redis.asyncio.Redis

    async def close(self) -> None:
        """Close all clients."""
        await self.strategy.close()
        await self.registry.close()
        await self.invoker.close()
        if self._redis is not None:
            await self._redis.aclose()


class _AwsClients:
    """Lazily created boto3 clients, one per service."""

    def __init__(self, region: str | None):
        self._region = region
        self._clients: dict[str, Any] = {}

    def get(self, service: str, **options: Any) -> Any:
        if service not in self._clients:
            self._clients[service] = create_client(service, self._region, **options)
        return self._clients[service]


def _build_strategy(
    settings: RelaySettings,
    queue: SessionQueue | None,
    records: SessionRecordStore | None,
) -> RelayStrategy:
    if settings.strategy == RelayStrategyName.QUEUE:
        return QueueStrategy(queue, wait_seconds=settings.wait_seconds)
    return RecordStrategy(records, poll_interval=settings.poll_interval)


async def create_bundle(settings: RelaySettings) -> RelayBundle:
    """
    Create a bundle for the configured backends.

    Raises:
        ConfigurationError: If required settings are missing
    """
    settings.validate()
    aws = _AwsClients(settings.aws_region)
    redis_client: Redis | None = None
    use_queue = settings.strategy == RelayStrategyName.QUEUE

    # === Relay substrate ===
    queue: SessionQueue | None = None
    records: SessionRecordStore | None = None
    if settings.backend == Backend.MEMORY:
        queue, records = InMemorySessionQueue(), InMemorySessionRecordStore()
    elif settings.backend == Backend.REDIS:
        from mcp_relay.relay.redis import RedisSessionQueue, RedisSessionRecordStore

        redis_client = Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        if use_queue:
            queue = RedisSessionQueue(redis_client, key_prefix=settings.key_prefix)
        else:
            records = RedisSessionRecordStore(redis_client, key_prefix=settings.key_prefix)
    else:
        from mcp_relay.relay.aws import DynamoRecordStore, SqsSessionQueue

        if use_queue:
            queue = SqsSessionQueue(
                aws.get("sqs", max_pool_connections=settings.long_poll_workers + 10),
                long_poll_workers=settings.long_poll_workers,
            )
        else:
            records = DynamoRecordStore(aws.get("dynamodb"), settings.session_table)
    strategy = _build_strategy(settings, queue, records)

    # === Registry ===
    registry: RegistrationStore
    if settings.registry_backend == RegistryBackend.SQL:
        from mcp_relay.registry.sqlalchemy import create_sqlalchemy_registry

        registry = await create_sqlalchemy_registry(settings.registry_database_url)
    elif settings.registry_backend == RegistryBackend.AWS:
        from mcp_relay.registry.dynamodb import DynamoRegistrationStore

        registry = DynamoRegistrationStore(aws.get("dynamodb"), settings.registration_table)
    else:
        registry = InMemoryRegistrationStore()

    # === Invoker ===
    invoker: ProcedureInvoker
    if settings.invoker_backend == InvokerBackend.AWS:
        from mcp_relay.invoke.aws_lambda import LambdaInvoker

        invoker = LambdaInvoker(aws.get("lambda"), function_name=settings.sse_function_name)
    else:
        invoker = LocalInvoker()

    logger.info(
        f"Relay configured: strategy={settings.strategy.value} "
        f"backend={settings.backend.value} registry={settings.registry_backend.value} "
        f"invoker={settings.invoker_backend.value}"
    )
    return RelayBundle(
        registry=registry,
        invoker=invoker,
        strategy=strategy,
        settings=settings,
        _redis=redis_client,
    )


async def create_bundle_from_env() -> RelayBundle:
    """Create a bundle from environment variables."""
    return await create_bundle(settings_from_env())


def create_memory_bundle(
    strategy: RelayStrategyName = RelayStrategyName.RECORD,
    registrations: list[Registration] | None = None,
    invoker: ProcedureInvoker | None = None,
    poll_interval: float = 1.0,
    wait_seconds: float = 20.0,
    message_function_url: str = "",
) -> RelayBundle:
    """
    Create a fully in-memory bundle.

    Both legs must run in the same process for messages to flow.
    """
    settings = RelaySettings(
        strategy=strategy,
        poll_interval=poll_interval,
        wait_seconds=wait_seconds,
        message_function_url=message_function_url,
    )
    return RelayBundle(
        registry=InMemoryRegistrationStore(registrations),
        invoker=invoker or LocalInvoker(),
        strategy=_build_strategy(settings, InMemorySessionQueue(), InMemorySessionRecordStore()),
        settings=settings,
    )
