"""Queries against the four record sets. Callers own the session and transaction."""

from typing import Optional, Sequence

from sqlalchemy import delete, func
from sqlmodel import Session, col, select

from objectstore.models import Bucket, ObjectMetadata, ObjectVersion, StorageObject


# --- Buckets ---

def find_bucket(session: Session, name: str) -> Optional[Bucket]:
    stmt = select(Bucket).where(Bucket.name == name)
    return session.exec(stmt).first()


def bucket_page(session: Session, after_id: int, limit: int) -> Sequence[Bucket]:
    stmt = select(Bucket).where(Bucket.id > after_id).order_by(Bucket.id).limit(limit)
    return session.exec(stmt).all()


# --- Objects ---

def find_object(session: Session, bucket_id: int, key: str, for_update: bool = False) -> Optional[StorageObject]:
    stmt = select(StorageObject).where(StorageObject.bucket_id == bucket_id, StorageObject.key == key)
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def objects_in_bucket(session: Session, bucket_id: int) -> Sequence[StorageObject]:
    stmt = select(StorageObject).where(StorageObject.bucket_id == bucket_id).order_by(StorageObject.key)
    return session.exec(stmt).all()


def versions_in_bucket(
    session: Session, bucket_id: int, latest_only: bool = False
) -> Sequence[tuple[StorageObject, ObjectVersion]]:
    stmt = (
        select(StorageObject, ObjectVersion)
        .join(ObjectVersion, ObjectVersion.object_id == StorageObject.id)
        .where(StorageObject.bucket_id == bucket_id)
        .order_by(StorageObject.key, col(ObjectVersion.version_number).desc())
    )
    if latest_only:
        stmt = stmt.where(ObjectVersion.is_latest == True)  # noqa: E712
    return session.exec(stmt).all()


# --- Versions ---

def find_version(session: Session, object_id: int, version_number: int) -> Optional[ObjectVersion]:
    stmt = select(ObjectVersion).where(
        ObjectVersion.object_id == object_id,
        ObjectVersion.version_number == version_number,
    )
    return session.exec(stmt).first()


def find_version_by_id(session: Session, version_id: int) -> Optional[ObjectVersion]:
    return session.get(ObjectVersion, version_id)


def versions_newest_first(session: Session, object_id: int) -> Sequence[ObjectVersion]:
    stmt = (
        select(ObjectVersion)
        .where(ObjectVersion.object_id == object_id)
        .order_by(col(ObjectVersion.version_number).desc())
    )
    return session.exec(stmt).all()


def latest_versions(session: Session, object_id: int) -> Sequence[ObjectVersion]:
    stmt = select(ObjectVersion).where(ObjectVersion.object_id == object_id, ObjectVersion.is_latest == True)  # noqa: E712
    return session.exec(stmt).all()


def max_version_number(session: Session, object_id: int) -> int:
    stmt = select(func.max(ObjectVersion.version_number)).where(ObjectVersion.object_id == object_id)
    return session.exec(stmt).one() or 0


def count_versions(session: Session, object_id: int) -> int:
    stmt = select(func.count()).select_from(ObjectVersion).where(ObjectVersion.object_id == object_id)
    return session.exec(stmt).one()


# --- Metadata ---

def find_metadata(session: Session, version_id: int, key: str) -> Optional[ObjectMetadata]:
    stmt = select(ObjectMetadata).where(ObjectMetadata.version_id == version_id, ObjectMetadata.meta_key == key)
    return session.exec(stmt).first()


def metadata_for_version(session: Session, version_id: int) -> Sequence[ObjectMetadata]:
    stmt = select(ObjectMetadata).where(ObjectMetadata.version_id == version_id).order_by(ObjectMetadata.meta_key)
    return session.exec(stmt).all()


def _bulk_delete(session: Session, model, *criteria) -> int:
    # Plain DELETE; rows loaded in this session are not touched again before commit
    stmt = delete(model).where(*criteria).execution_options(synchronize_session=False)
    return session.exec(stmt).rowcount


def delete_metadata_for_version(session: Session, version_id: int) -> int:
    return _bulk_delete(session, ObjectMetadata, col(ObjectMetadata.version_id) == version_id)


# --- Cascades: children first, parent last, all inside the caller's transaction ---

def purge_version(session: Session, version: ObjectVersion) -> None:
    delete_metadata_for_version(session, version.id)
    session.delete(version)
    session.flush()


def purge_object(session: Session, object_id: int) -> int:
    version_ids = select(ObjectVersion.id).where(ObjectVersion.object_id == object_id)
    _bulk_delete(session, ObjectMetadata, col(ObjectMetadata.version_id).in_(version_ids))
    removed = _bulk_delete(session, ObjectVersion, col(ObjectVersion.object_id) == object_id)
    _bulk_delete(session, StorageObject, col(StorageObject.id) == object_id)
    return removed


def purge_bucket(session: Session, bucket_id: int) -> int:
    object_ids = select(StorageObject.id).where(StorageObject.bucket_id == bucket_id)
    version_ids = select(ObjectVersion.id).where(col(ObjectVersion.object_id).in_(object_ids))
    _bulk_delete(session, ObjectMetadata, col(ObjectMetadata.version_id).in_(version_ids))
    _bulk_delete(session, ObjectVersion, col(ObjectVersion.object_id).in_(object_ids))
    removed = _bulk_delete(session, StorageObject, col(StorageObject.bucket_id) == bucket_id)
    _bulk_delete(session, Bucket, col(Bucket.id) == bucket_id)
    return removed
