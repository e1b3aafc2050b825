from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class LocalBlob(SQLModel, table=True):
    """One key of the local key-value store; the value is a JSON list of records."""

    __tablename__ = "local_blob"

    key: str = Field(primary_key=True)  # collection name: students, zones, entries
    value: str = Field(default="[]")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Document(SQLModel, table=True):
    """One record of a per-account remote collection."""

    __tablename__ = "document"

    seq: int | None = Field(default=None, primary_key=True)  # insertion order
    key: str = Field(default_factory=lambda: uuid4().hex, index=True)  # record id, unique per account
    account_id: str = Field(index=True)
    collection: str = Field(index=True)
    name: str | None = Field(default=None, index=True)  # listing order for students/zones
    data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
