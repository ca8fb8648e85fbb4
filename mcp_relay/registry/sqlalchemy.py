"""
SQLAlchemy Registration Store

Async SQLAlchemy 2.0 implementation of RegistrationStore.

Compatible with:
- SQLite (aiosqlite)
- PostgreSQL (asyncpg)
"""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from mcp_relay.registry.models import Base, RegistrationModel
from mcp_relay.registry.ports import (
    Registration,
    RegistrationStore,
    RegistryError,
)


# =============================================================================
# Converters
# =============================================================================

def model_to_registration(model: RegistrationModel) -> Registration:
    return Registration(
        id=model.id,
        type=model.type,
        name=model.name,
        description=model.description,
        lambda_arn=model.lambda_arn,
        parameters=model.parameters or {},
    )


class SqlAlchemyRegistrationStore(RegistrationStore):
    """
    SQLAlchemy implementation of registration storage.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        self._engine = engine

    async def list_all(self) -> list[Registration]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RegistrationModel).order_by(RegistrationModel.created_at)
                )
                return [model_to_registration(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RegistryError(f"Registration scan failed: {e}") from e

    async def get(self, registration_id: str) -> Registration | None:
        async with self._session_factory() as session:
            model = await session.get(RegistrationModel, registration_id)
            if model is None:
                return None
            return model_to_registration(model)

    async def put(self, registration: Registration) -> Registration:
        async with self._session_factory() as session:
            async with session.begin():
                existing = await session.get(RegistrationModel, registration.id)
                if existing:
                    existing.type = registration.type.value
                    existing.name = registration.name
                    existing.description = registration.description
                    existing.lambda_arn = registration.lambda_arn
                    existing.parameters = registration.parameters
                else:
                    session.add(RegistrationModel(
                        id=registration.id,
                        type=registration.type.value,
                        name=registration.name,
                        description=registration.description,
                        lambda_arn=registration.lambda_arn,
                        parameters=registration.parameters,
                    ))
                return registration

    async def delete(self, registration_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                model = await session.get(RegistrationModel, registration_id)
                if model is None:
                    return False
                await session.delete(model)
                return True

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()


async def create_sqlalchemy_registry(
    database_url: str,
    echo: bool = False,
    create_tables: bool = True,
) -> SqlAlchemyRegistrationStore:
    """
    Create a registration store backed by SQLAlchemy.

    Args:
        database_url: Async database URL (e.g., "sqlite+aiosqlite:///./registry.db")
        echo: Enable SQL logging
        create_tables: Auto-create tables if not exist

    Returns:
        Store that disposes its engine on close()
    """
    engine = create_async_engine(database_url, echo=echo)

    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return SqlAlchemyRegistrationStore(session_factory, engine=engine)
