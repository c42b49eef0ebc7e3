from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Bucket(SQLModel, table=True):
    __tablename__ = "bucket"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=63, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StorageObject(SQLModel, table=True):
    __tablename__ = "storage_object"
    __table_args__ = (UniqueConstraint("bucket_id", "key", name="uq_object_bucket_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    bucket_id: int = Field(foreign_key="bucket.id", ondelete="CASCADE", index=True)
    key: str = Field(max_length=1024)
    # Non-owning pointer to object_version.id; kept out of the FK graph so the
    # ownership cascade only ever runs parent -> child.
    current_version_id: Optional[int] = Field(default=None, index=True)
    # Highest version number ever issued for this object; never decreases, so a
    # deleted number is not handed out again.
    last_version_number: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ObjectVersion(SQLModel, table=True):
    __tablename__ = "object_version"
    __table_args__ = (UniqueConstraint("object_id", "version_number", name="uq_version_object_number"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    object_id: int = Field(foreign_key="storage_object.id", ondelete="CASCADE", index=True)
    version_number: int = Field(ge=1)
    content: bytes
    content_type: str = Field(default="application/octet-stream", max_length=255)
    size: int = Field(default=0)
    etag: str = Field(default="", max_length=64)
    is_latest: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class ObjectMetadata(SQLModel, table=True):
    __tablename__ = "object_metadata"
    __table_args__ = (UniqueConstraint("version_id", "meta_key", name="uq_metadata_version_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    version_id: int = Field(foreign_key="object_version.id", ondelete="CASCADE", index=True)
    meta_key: str = Field(max_length=255)
    meta_value: Optional[str] = Field(default=None)


class Owner:
    ID = "00000000000000000000000000000000"
    DisplayName = "objectstore"
