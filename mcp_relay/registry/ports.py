"""
Procedure Registry Port Interfaces

A registration names one remote procedure (tool, resource or prompt) backed
by a compute function. The streaming leg reads every registration with a
full scan at session start; the registration API writes them.

Registration record:
    {
        "id": "<type>-<name>",
        "type": "tool" | "resource" | "prompt",
        "name": "...",
        "description": "...",
        "lambdaArn": "arn:aws:lambda:...",
        "parameters": {...}
    }

Adapters (in-memory, DynamoDB, SQLAlchemy) implement RegistrationStore.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RegistrationType(str, Enum):
    """Kinds of procedure a registration can install."""
    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


def registration_id(type_: RegistrationType | str, name: str) -> str:
    """Registrations are keyed by type and name."""
    return f"{RegistrationType(type_).value}-{name}"


class RegistrationRequest(BaseModel):
    """Registration as submitted to the API (the id is derived)."""
    model_config = ConfigDict(populate_by_name=True)

    type: RegistrationType
    name: str
    description: str
    lambda_arn: str = Field(alias="lambdaArn", pattern=r"^arn:aws:lambda:")
    parameters: dict[str, Any]


class Registration(RegistrationRequest):
    """A stored registration."""
    id: str

    @classmethod
    def from_request(cls, request: RegistrationRequest) -> "Registration":
        return cls(
            id=registration_id(request.type, request.name),
            **request.model_dump(),
        )

    def to_wire(self) -> dict[str, Any]:
        """API/storage shape, with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ResourceParameters(BaseModel):
    """Parameters of a resource registration."""
    model_config = ConfigDict(extra="allow")

    uriTemplate: str


class RegistrationStore(ABC):
    """
    Abstract interface for registration storage.

    list_all is the full scan used at session start; the rest back the
    registration API.
    """

    @abstractmethod
    async def list_all(self) -> list[Registration]:
        """
        Return every registration.

        Raises:
            RegistryError: If the store is unavailable
        """
        ...

    @abstractmethod
    async def get(self, registration_id: str) -> Registration | None:
        """Get a registration by id, or None."""
        ...

    @abstractmethod
    async def put(self, registration: Registration) -> Registration:
        """Create or replace a registration."""
        ...

    @abstractmethod
    async def delete(self, registration_id: str) -> bool:
        """
        Delete a registration.

        Returns:
            True if deleted, False if not found
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        pass


# =============================================================================
# Exceptions
# =============================================================================

class RegistryError(Exception):
    """Base exception for registry errors."""
    pass


class RegistrationNotFoundError(RegistryError):
    """Registration does not exist."""
    def __init__(self, registration_id: str):
        self.registration_id = registration_id
        super().__init__(f"Registration not found: {registration_id}")


class DescriptorError(RegistryError):
    """A parameter descriptor is outside the supported grammar."""
    pass
