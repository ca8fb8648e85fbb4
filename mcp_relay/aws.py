"""
AWS Client Helpers

boto3 clients are created once per process by the factory and injected into
the adapters. boto3 is synchronous, so adapters call it through
asyncio.to_thread; SQS long-polls get a dedicated executor.
"""

from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


def create_client(
    service: str,
    region: str,
    max_attempts: int = 3,
    max_pool_connections: int = 10,
) -> Any:
    """Create a boto3 client with standard-mode retries."""
    return boto3.client(
        service,
        region_name=region,
        config=Config(
            retries={"max_attempts": max_attempts, "mode": "standard"},
            max_pool_connections=max_pool_connections,
        ),
    )


def error_code(exc: ClientError) -> str:
    """Service error code of a ClientError ("" if absent)."""
    return exc.response.get("Error", {}).get("Code", "")
