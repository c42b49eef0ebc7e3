"""
Lifecycle coordinator for buckets, objects, versions and version metadata.

Each public method is one transaction against the backing store. Nothing is
cached between calls; every read goes back to the store.
"""

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from objectstore import repository
from objectstore.config import Settings, get_settings
from objectstore.database import create_db_and_tables, create_db_engine, session_scope
from objectstore.errors import AlreadyExists, Conflict, NotFound, StoreError
from objectstore.fingerprint import compute_fingerprint, verify_fingerprint
from objectstore.logging import get_logger
from objectstore.models import Bucket, ObjectMetadata, ObjectVersion, StorageObject, utcnow
from objectstore.validation import (
    validate_bucket_name,
    validate_content,
    validate_content_type,
    validate_key,
    validate_metadata_key,
)

logger = get_logger("service")

T = TypeVar("T")


class _ConstraintRace(Exception):
    """A concurrent writer took the same unique slot first; the transaction may be replayed."""


class BucketListing:
    """
    Lazy view over all buckets in insertion order.

    Every ``iter()`` starts a new scan, so the listing can be walked more than once.
    Rows are pulled a page at a time, each page in its own short transaction.
    """

    def __init__(self, service: "ObjectStorageService", page_size: int):
        self._service = service
        self._page_size = page_size

    def __iter__(self) -> Iterator[Bucket]:
        after_id = 0
        while True:
            with self._service._transaction() as session:
                page = list(repository.bucket_page(session, after_id, self._page_size))
            yield from page
            if len(page) < self._page_size:
                return
            after_id = page[-1].id


class ObjectStorageService:
    def __init__(self, engine: Optional[Engine] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = engine if engine is not None else create_db_engine(self.settings.database)

    def init_schema(self) -> None:
        try:
            create_db_and_tables(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError("Could not create tables") from exc

    def close(self) -> None:
        self.engine.dispose()

    # --- Transactions ---

    @contextmanager
    def _transaction(
        self, on_integrity: Optional[Callable[[IntegrityError], Exception]] = None
    ) -> Iterator[Session]:
        try:
            with session_scope(self.engine) as session:
                yield session
        except IntegrityError as exc:
            if on_integrity is not None:
                raise on_integrity(exc) from exc
            logger.error("store_constraint_violation", error=str(exc.orig))
            raise StoreError("Transaction violated a store constraint") from exc
        except SQLAlchemyError as exc:
            logger.error("store_failure", error=str(exc))
            raise StoreError("Backing store failure") from exc

    def _replaying(self, operation: str, work: Callable[[Session], T], **context) -> T:
        # Unique constraints are the final guard against concurrent writers;
        # the loser rolls back and replays against the new state.
        attempts = self.settings.put_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self._transaction(on_integrity=_ConstraintRace) as session:
                    return work(session)
            except _ConstraintRace:
                logger.warning("constraint_race_retry", operation=operation, attempt=attempt, **context)
        logger.error("constraint_race_exhausted", operation=operation, attempts=attempts, **context)
        raise StoreError(f"{operation} kept conflicting with concurrent writers after {attempts} attempts")

    # --- Lookups (inside an open session) ---

    def _require_bucket(self, session: Session, name: str) -> Bucket:
        bucket = repository.find_bucket(session, name)
        if bucket is None:
            raise NotFound(f"Bucket {name!r} does not exist", code="NoSuchBucket")
        return bucket

    def _require_object(self, session: Session, bucket_name: str, key: str, for_update: bool = False) -> StorageObject:
        bucket = self._require_bucket(session, bucket_name)
        obj = repository.find_object(session, bucket.id, key, for_update=for_update)
        if obj is None:
            raise NotFound(f"Object {key!r} does not exist in bucket {bucket_name!r}", code="NoSuchKey")
        return obj

    def _require_version(self, session: Session, obj: StorageObject, version_number: int) -> ObjectVersion:
        version = repository.find_version(session, obj.id, version_number)
        if version is None:
            raise NotFound(f"Version {version_number} of {obj.key!r} does not exist", code="NoSuchVersion")
        return version

    def _require_version_id(self, session: Session, version_id: int) -> ObjectVersion:
        version = repository.find_version_by_id(session, version_id)
        if version is None:
            raise NotFound(f"Version id {version_id} does not exist", code="NoSuchVersion")
        return version

    # --- Buckets ---

    def create_bucket(self, name: str) -> Bucket:
        validate_bucket_name(name)

        def already_exists(exc: IntegrityError) -> Exception:
            return AlreadyExists(f"Bucket {name!r} already exists", code="BucketAlreadyExists")

        # No existence read first: the unique index on name decides
        with self._transaction(on_integrity=already_exists) as session:
            bucket = Bucket(name=name)
            session.add(bucket)
            session.flush()

        logger.info("bucket_created", bucket=name, bucket_id=bucket.id)
        return bucket

    def get_bucket(self, name: str) -> Bucket:
        with self._transaction() as session:
            return self._require_bucket(session, name)

    def delete_bucket(self, name: str) -> None:
        with self._transaction() as session:
            bucket = self._require_bucket(session, name)
            removed = repository.purge_bucket(session, bucket.id)
        logger.info("bucket_deleted", bucket=name, objects_removed=removed)

    def list_buckets(self) -> BucketListing:
        return BucketListing(self, self.settings.list_page_size)

    # --- Objects and versions ---

    def _append_version(
        self,
        session: Session,
        bucket_name: str,
        key: str,
        content: bytes,
        content_type: str,
        etag: str,
        metadata: Mapping[str, Optional[str]],
    ) -> ObjectVersion:
        bucket = self._require_bucket(session, bucket_name)
        obj = repository.find_object(session, bucket.id, key, for_update=True)
        if obj is None:
            obj = StorageObject(bucket_id=bucket.id, key=key)
            session.add(obj)
            session.flush()

        for previous in repository.latest_versions(session, obj.id):
            previous.is_latest = False
            session.add(previous)

        version_number = max(obj.last_version_number, repository.max_version_number(session, obj.id)) + 1
        version = ObjectVersion(
            object_id=obj.id,
            version_number=version_number,
            content=content,
            content_type=content_type,
            size=len(content),
            etag=etag,
            is_latest=True,
        )
        session.add(version)
        session.flush()

        obj.current_version_id = version.id
        obj.last_version_number = version_number
        obj.updated_at = utcnow()
        session.add(obj)
        for meta_key, meta_value in metadata.items():
            session.add(ObjectMetadata(version_id=version.id, meta_key=meta_key, meta_value=meta_value))
        session.flush()
        return version

    def put_object(
        self,
        bucket_name: str,
        key: str,
        content: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Mapping[str, Optional[str]]] = None,
    ) -> ObjectVersion:
        validate_key(key)
        content = validate_content(content, self.settings.max_object_size)
        content_type = validate_content_type(content_type or self.settings.default_content_type)
        metadata = dict(metadata or {})
        for meta_key in metadata:
            validate_metadata_key(meta_key)
        etag = compute_fingerprint(content)

        version = self._replaying(
            "put_object",
            lambda session: self._append_version(session, bucket_name, key, content, content_type, etag, metadata),
            bucket=bucket_name,
            key=key,
        )
        logger.info(
            "object_version_appended",
            bucket=bucket_name,
            key=key,
            version=version.version_number,
            size=version.size,
            etag=version.etag,
        )
        return version

    def _current_version(self, session: Session, obj: StorageObject) -> ObjectVersion:
        version = None
        if obj.current_version_id is not None:
            version = repository.find_version_by_id(session, obj.current_version_id)
        if version is None:
            raise NotFound(f"Object {obj.key!r} has no current version", code="NoSuchKey")
        return version

    def get_object(self, bucket_name: str, key: str) -> ObjectVersion:
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key)
            return self._current_version(session, obj)

    def get_object_version(self, bucket_name: str, key: str, version_number: int) -> ObjectVersion:
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key)
            return self._require_version(session, obj, version_number)

    def read_object(
        self, bucket_name: str, key: str, version_number: Optional[int] = None
    ) -> tuple[ObjectVersion, dict[str, Optional[str]]]:
        """The current (or given) version together with its metadata, read in one transaction."""
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key)
            if version_number is None:
                version = self._current_version(session, obj)
            else:
                version = self._require_version(session, obj, version_number)
            metadata = {m.meta_key: m.meta_value for m in repository.metadata_for_version(session, version.id)}
            return version, metadata

    def list_versions(self, bucket_name: str, key: str) -> list[ObjectVersion]:
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key)
            return list(repository.versions_newest_first(session, obj.id))

    def list_objects(self, bucket_name: str) -> list[StorageObject]:
        with self._transaction() as session:
            bucket = self._require_bucket(session, bucket_name)
            return list(repository.objects_in_bucket(session, bucket.id))

    def list_bucket_versions(
        self, bucket_name: str, latest_only: bool = False
    ) -> list[tuple[StorageObject, ObjectVersion]]:
        """(object, version) pairs ordered by key, newest version first within a key."""
        with self._transaction() as session:
            bucket = self._require_bucket(session, bucket_name)
            return [tuple(row) for row in repository.versions_in_bucket(session, bucket.id, latest_only)]

    def delete_object(self, bucket_name: str, key: str) -> None:
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key, for_update=True)
            removed = repository.purge_object(session, obj.id)
        logger.info("object_deleted", bucket=bucket_name, key=key, versions_removed=removed)

    def delete_version(self, bucket_name: str, key: str, version_number: int) -> None:
        promoted = None
        with self._transaction() as session:
            obj = self._require_object(session, bucket_name, key, for_update=True)
            version = self._require_version(session, obj, version_number)
            if repository.count_versions(session, obj.id) <= 1:
                raise Conflict(
                    f"Version {version_number} is the only version of {key!r}; delete the object instead",
                    code="LastVersion",
                )

            was_current = obj.current_version_id == version.id
            repository.purge_version(session, version)

            if was_current:
                # Highest remaining number takes over; the old LATEST row is already gone
                successor = repository.versions_newest_first(session, obj.id)[0]
                successor.is_latest = True
                obj.current_version_id = successor.id
                obj.updated_at = utcnow()
                session.add(successor)
                session.add(obj)
                promoted = successor.version_number

        logger.info("version_deleted", bucket=bucket_name, key=key, version=version_number, promoted=promoted)

    def restore_version(self, bucket_name: str, key: str, version_number: int) -> ObjectVersion:
        def restore(session: Session) -> ObjectVersion:
            obj = self._require_object(session, bucket_name, key, for_update=True)
            source = self._require_version(session, obj, version_number)
            # Content only; metadata belongs to the source version and stays there
            return self._append_version(
                session, bucket_name, key, source.content, source.content_type, source.etag, {}
            )

        version = self._replaying("restore_version", restore, bucket=bucket_name, key=key)
        logger.info(
            "version_restored",
            bucket=bucket_name,
            key=key,
            restored_from=version_number,
            version=version.version_number,
        )
        return version

    def verify_object(self, bucket_name: str, key: str, version_number: Optional[int] = None) -> bool:
        if version_number is None:
            version = self.get_object(bucket_name, key)
        else:
            version = self.get_object_version(bucket_name, key, version_number)
        intact = verify_fingerprint(version.content, version.etag)
        if not intact:
            logger.error("fingerprint_mismatch", bucket=bucket_name, key=key, version=version.version_number)
        return intact

    # --- Version metadata ---

    def set_metadata(self, version_id: int, key: str, value: Optional[str]) -> ObjectMetadata:
        validate_metadata_key(key)

        def upsert(session: Session) -> ObjectMetadata:
            self._require_version_id(session, version_id)
            entry = repository.find_metadata(session, version_id, key)
            if entry is None:
                entry = ObjectMetadata(version_id=version_id, meta_key=key, meta_value=value)
            else:
                entry.meta_value = value
            session.add(entry)
            session.flush()
            return entry

        entry = self._replaying("set_metadata", upsert, version_id=version_id, meta_key=key)
        logger.info("metadata_set", version_id=version_id, meta_key=key)
        return entry

    def get_metadata(self, version_id: int, key: str) -> Optional[str]:
        with self._transaction() as session:
            self._require_version_id(session, version_id)
            entry = repository.find_metadata(session, version_id, key)
            if entry is None:
                raise NotFound(f"No metadata key {key!r} on version id {version_id}", code="NoSuchMetadata")
            return entry.meta_value

    def list_metadata(self, version_id: int) -> dict[str, Optional[str]]:
        with self._transaction() as session:
            self._require_version_id(session, version_id)
            return {m.meta_key: m.meta_value for m in repository.metadata_for_version(session, version_id)}

    def delete_metadata(self, version_id: int, key: str) -> None:
        with self._transaction() as session:
            self._require_version_id(session, version_id)
            entry = repository.find_metadata(session, version_id, key)
            if entry is None:
                raise NotFound(f"No metadata key {key!r} on version id {version_id}", code="NoSuchMetadata")
            session.delete(entry)
        logger.info("metadata_deleted", version_id=version_id, meta_key=key)

    def clear_metadata(self, version_id: int) -> int:
        with self._transaction() as session:
            self._require_version_id(session, version_id)
            removed = repository.delete_metadata_for_version(session, version_id)
        logger.info("metadata_cleared", version_id=version_id, removed=removed)
        return removed


__all__ = ["BucketListing", "ObjectStorageService"]
