"""
Relay Configuration

Environment-based settings for the relay service. Every required value is
checked once at startup; a missing one raises ConfigurationError.

Environment variables:
    RELAY_STRATEGY: "queue" or "record" (default "record")
    RELAY_BACKEND: "memory", "redis", "aws" (default "memory")
    AWS_REGION: Region for all AWS clients (required by any aws backend)
    SESSION_TABLE_NAME: DynamoDB session table (aws + record)
    REGISTRY_BACKEND: "memory", "sql", "aws" (default follows RELAY_BACKEND)
    REGISTRATION_TABLE_NAME: DynamoDB registration table (aws registry)
    REGISTRY_DATABASE_URL: SQLAlchemy async URL (sql registry)
    INVOKER_BACKEND: "local" or "aws" (default "aws" when AWS_REGION is set)
    SSE_FUNCTION_NAME: Function that registrations grant invoke access to
    MESSAGE_FUNCTION_URL: Submission base URL; the endpoint is <url>/message
    SUBMISSION_FORMAT: "raw" or "wrapped" (default "raw")
    REDIS_URL: Redis connection URL (default "redis://localhost:6379")
    RELAY_KEY_PREFIX: Redis key prefix (default "mcp")
    RELAY_POLL_INTERVAL: Record poll interval in seconds (default 1.0)
    RELAY_WAIT_SECONDS: Queue long-poll wait in seconds (default 20)
    RELAY_LONG_POLL_WORKERS: Threads reserved for SQS long-polls (default 32)

Values can be loaded from a .env file in the working directory.
"""

import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv

from mcp_relay.submission import SubmissionFormat


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""
    pass


class RelayStrategyName(str, Enum):
    """How pending messages are stored between the two legs."""
    QUEUE = "queue"
    RECORD = "record"


class Backend(str, Enum):
    """Relay substrate backends."""
    MEMORY = "memory"
    REDIS = "redis"
    AWS = "aws"


class RegistryBackend(str, Enum):
    """Registration store backends."""
    MEMORY = "memory"
    SQL = "sql"
    AWS = "aws"


class InvokerBackend(str, Enum):
    """Procedure invoker backends."""
    LOCAL = "local"
    AWS = "aws"


@dataclass
class RelaySettings:
    """
    Configuration for the relay service.

    Attributes:
        strategy: Queue-backed or record-backed relay
        backend: Where the relay substrate lives
        registry_backend: Where registrations live
        invoker_backend: How procedures are invoked
        submission_format: Raw JSON-RPC body or {sessionId, message} wrapper
        aws_region: Region for AWS clients
        session_table: DynamoDB session table
        registration_table: DynamoDB registration table
        registry_database_url: SQLAlchemy async URL for the SQL registry
        sse_function_name: Function receiving invoke-permission statements
        message_function_url: Base URL of the submission endpoint
        redis_url: Redis connection URL
        key_prefix: Prefix for Redis keys
        poll_interval: Record relay poll interval (seconds)
        wait_seconds: Queue relay long-poll wait (seconds)
        long_poll_workers: Threads reserved for SQS long-polls
    """
    strategy: RelayStrategyName = RelayStrategyName.RECORD
    backend: Backend = Backend.MEMORY
    registry_backend: RegistryBackend = RegistryBackend.MEMORY
    invoker_backend: InvokerBackend = InvokerBackend.LOCAL
    submission_format: SubmissionFormat = SubmissionFormat.RAW
    aws_region: str | None = None
    session_table: str | None = None
    registration_table: str | None = None
    registry_database_url: str | None = None
    sse_function_name: str | None = None
    message_function_url: str = ""
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "mcp"
    poll_interval: float = 1.0
    wait_seconds: float = 20.0
    long_poll_workers: int = 32

    @property
    def message_endpoint(self) -> str:
        """Submission URL announced in the endpoint event."""
        return f"{self.message_function_url.rstrip('/')}/message"

    def validate(self) -> None:
        """
        Check that every value the selected backends need is present.

        Raises:
            ConfigurationError: On the first missing value
        """
        uses_aws = (
            self.backend == Backend.AWS
            or self.registry_backend == RegistryBackend.AWS
            or self.invoker_backend == InvokerBackend.AWS
        )
        if uses_aws and not self.aws_region:
            raise ConfigurationError("AWS_REGION environment variable is required")
        if (
            self.backend == Backend.AWS
            and self.strategy == RelayStrategyName.RECORD
            and not self.session_table
        ):
            raise ConfigurationError("SESSION_TABLE_NAME environment variable is required")
        if self.registry_backend == RegistryBackend.AWS and not self.registration_table:
            raise ConfigurationError("REGISTRATION_TABLE_NAME environment variable is required")
        if self.registry_backend == RegistryBackend.SQL and not self.registry_database_url:
            raise ConfigurationError("REGISTRY_DATABASE_URL environment variable is required")
        if self.poll_interval <= 0:
            raise ConfigurationError("RELAY_POLL_INTERVAL must be positive")
        if self.wait_seconds < 0:
            raise ConfigurationError("RELAY_WAIT_SECONDS must not be negative")
        if self.long_poll_workers < 1:
            raise ConfigurationError("RELAY_LONG_POLL_WORKERS must be at least 1")


def _enum(enum_type: type[Enum], name: str, value: str) -> Enum:
    try:
        return enum_type(value.lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_type)
        raise ConfigurationError(f"{name} must be one of {allowed}, got {value!r}") from e


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def settings_from_env(load_env_file: bool = True) -> RelaySettings:
    """
    Create RelaySettings from environment variables and validate them.

    Raises:
        ConfigurationError: If a value is invalid or a required one is missing
    """
    if load_env_file:
        load_dotenv()

    backend = _enum(Backend, "RELAY_BACKEND", os.getenv("RELAY_BACKEND", "memory"))

    # Registry follows the relay backend unless set; Redis has no registry adapter
    default_registry = "aws" if backend == Backend.AWS else "memory"
    registry_backend = _enum(
        RegistryBackend,
        "REGISTRY_BACKEND",
        os.getenv("REGISTRY_BACKEND", default_registry),
    )

    aws_region = os.getenv("AWS_REGION") or None
    invoker_backend = _enum(
        InvokerBackend,
        "INVOKER_BACKEND",
        os.getenv("INVOKER_BACKEND", "aws" if aws_region else "local"),
    )

    settings = RelaySettings(
        strategy=_enum(RelayStrategyName, "RELAY_STRATEGY", os.getenv("RELAY_STRATEGY", "record")),
        backend=backend,
        registry_backend=registry_backend,
        invoker_backend=invoker_backend,
        submission_format=_enum(
            SubmissionFormat, "SUBMISSION_FORMAT", os.getenv("SUBMISSION_FORMAT", "raw")
        ),
        aws_region=aws_region,
        session_table=os.getenv("SESSION_TABLE_NAME") or None,
        registration_table=os.getenv("REGISTRATION_TABLE_NAME") or None,
        registry_database_url=os.getenv("REGISTRY_DATABASE_URL") or None,
        sse_function_name=os.getenv("SSE_FUNCTION_NAME") or None,
        message_function_url=os.getenv("MESSAGE_FUNCTION_URL", ""),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
        key_prefix=os.getenv("RELAY_KEY_PREFIX", "mcp"),
        poll_interval=_float("RELAY_POLL_INTERVAL", 1.0),
        wait_seconds=_float("RELAY_WAIT_SECONDS", 20.0),
        long_poll_workers=_int("RELAY_LONG_POLL_WORKERS", 32),
    )
    settings.validate()
    return settings
