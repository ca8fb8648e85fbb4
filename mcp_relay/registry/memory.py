"""
In-Memory Registration Store

Dict-backed store for development and tests.
"""

import asyncio

from mcp_relay.registry.ports import Registration, RegistrationStore


class InMemoryRegistrationStore(RegistrationStore):
    """
    In-memory registration storage.

    Listing preserves insertion order.
    """

    def __init__(self, registrations: list[Registration] | None = None):
        self._registrations: dict[str, Registration] = {
            r.id: r for r in registrations or []
        }
        self._lock = asyncio.Lock()

    async def list_all(self) -> list[Registration]:
        async with self._lock:
            return list(self._registrations.values())

    async def get(self, registration_id: str) -> Registration | None:
        async with self._lock:
            return self._registrations.get(registration_id)

    async def put(self, registration: Registration) -> Registration:
        async with self._lock:
            self._registrations[registration.id] = registration
            return registration

    async def delete(self, registration_id: str) -> bool:
        async with self._lock:
            return self._registrations.pop(registration_id, None) is not None
