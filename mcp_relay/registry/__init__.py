"""
Registry Module

Procedure registrations and their storage.

Components:
- RegistrationStore: storage port
- InMemoryRegistrationStore: development/testing store
- DynamoRegistrationStore: DynamoDB store (mcp_relay.registry.dynamodb)
- SqlAlchemyRegistrationStore: SQL store (mcp_relay.registry.sqlalchemy)
- model_from_descriptor: parameter descriptor -> pydantic model
"""

from mcp_relay.registry.ports import (
    RegistrationType,
    RegistrationRequest,
    Registration,
    ResourceParameters,
    RegistrationStore,
    RegistryError,
    RegistrationNotFoundError,
    DescriptorError,
    registration_id,
)
from mcp_relay.registry.memory import InMemoryRegistrationStore
from mcp_relay.registry.descriptor import model_from_descriptor, validate_arguments

__all__ = [
    "RegistrationType",
    "RegistrationRequest",
    "Registration",
    "ResourceParameters",
    "RegistrationStore",
    "RegistryError",
    "RegistrationNotFoundError",
    "DescriptorError",
    "registration_id",
    "InMemoryRegistrationStore",
    "model_from_descriptor",
    "validate_arguments",
]
