"""
SQLAlchemy Models for the Registration Store

Async-compatible SQLAlchemy 2.0 ORM model for procedure registrations.

Designed to work with:
- SQLite (via aiosqlite)
- PostgreSQL (via asyncpg)

JSON column handling:
- PostgreSQL: Native JSONB
- SQLite: TEXT with JSON serialization
"""

import json
from datetime import datetime

from sqlalchemy import String, Text, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class JSONType(TypeDecorator):
    """
    Platform-agnostic JSON column.

    Uses JSONB on PostgreSQL, TEXT+JSON elsewhere.
    """
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if isinstance(value, str):
            return json.loads(value)
        return value


class Base(DeclarativeBase):
    pass


class RegistrationModel(Base):
    """One registered procedure."""
    __tablename__ = "mcp_registrations"

    # "<type>-<name>"
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lambda_arn: Mapped[str] = mapped_column(String(512), nullable=False)
    parameters: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )
