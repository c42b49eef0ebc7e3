"""Pytest configuration and shared fixtures for object store tests."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func
from sqlmodel import Session, select

from objectstore.config import DatabaseSettings, Settings, get_settings
from objectstore.database import create_db_engine
from objectstore.main import create_app
from objectstore.models import Bucket, ObjectMetadata, ObjectVersion, StorageObject
from objectstore.service import ObjectStorageService


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached per process; start every test from a clean read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """In-memory SQLite with a small listing page."""
    return Settings(database=DatabaseSettings(url="sqlite://"), list_page_size=2)


def _make_service(settings: Settings) -> ObjectStorageService:
    service = ObjectStorageService(engine=create_db_engine(settings.database), settings=settings)
    service.init_schema()
    return service


@pytest.fixture
def service(test_settings: Settings):
    """A storage service on a fresh in-memory database."""
    svc = _make_service(test_settings)
    yield svc
    svc.close()


@pytest.fixture
def file_service(tmp_path):
    """A storage service on a SQLite file, for tests that use several connections."""
    settings = Settings(
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'objectstore.db'}"),
        put_max_attempts=20,
    )
    svc = _make_service(settings)
    yield svc
    svc.close()


@pytest.fixture
def docs_bucket(service: ObjectStorageService):
    """A service with an empty 'docs' bucket."""
    service.create_bucket("docs")
    return service


@pytest.fixture
def client(service: ObjectStorageService) -> TestClient:
    """HTTP client against the router, sharing the service fixture's database."""
    return TestClient(create_app(service))


@pytest.fixture
def row_counts(service: ObjectStorageService):
    """Callable returning the number of rows in each table."""

    def count() -> dict:
        with Session(service.engine) as session:
            return {
                model.__tablename__: session.exec(select(func.count()).select_from(model)).one()
                for model in (Bucket, StorageObject, ObjectVersion, ObjectMetadata)
            }

    return count


@pytest.fixture
def pdf_bytes() -> bytes:
    return b"%PDF-1.4\n% quarterly report, first draft\n"


@pytest.fixture
def pdf_bytes_v2() -> bytes:
    return b"%PDF-1.4\n% quarterly report, final\n"
