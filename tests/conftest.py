"""Shared fixtures: blob storage and metadata index under tmp_path, fake enrichers, API client."""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from lokaldrive.config import Settings
from lokaldrive.main import create_app
from lokaldrive.schemas.file import EnrichmentResult, FileCategory, FileRecord
from lokaldrive.services.file_repository import FileRepository
from lokaldrive.services.file_storage import LocalFileStorage
from lokaldrive.services.metadata_index import JsonFileMetadataIndex, SqlMetadataIndex


class FakeEnricher:
    """Stands in for the LLM-backed enricher. Records every call."""

    def __init__(self, description="Quarterly planning report.", tags=None, delay=0.0, error=None):
        self.description = description
        self.tags = tags if tags is not None else ["work", "report", "q4"]
        self.delay = delay
        self.error = error
        self.calls = []

    async def analyze(self, name, category):
        self.calls.append((name, category))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return EnrichmentResult(description=self.description, tags=list(self.tags))


@pytest.fixture
def make_record():
    """Factory for FileRecord instances with sensible defaults."""
    base_time = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(name="notes.txt", size=10, **overrides):
        counter["n"] += 1
        fields = {
            "id": uuid.uuid4().hex,
            "name": name,
            "size": size,
            "type": FileCategory.DOCUMENT,
            "storage_key": f"{counter['n']}-key-{name}",
            "uploaded_at": base_time + timedelta(seconds=counter["n"]),
        }
        fields.update(overrides)
        return FileRecord(**fields)

    return _make


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
def metadata_path(tmp_path):
    return tmp_path / "files-metadata.json"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'lokaldrive.db'}"


@pytest_asyncio.fixture(params=["json", "sql"])
async def index(request, metadata_path, database_url):
    """Each index-backed test runs against both backends."""
    if request.param == "json":
        idx = JsonFileMetadataIndex(metadata_path)
    else:
        idx = SqlMetadataIndex(database_url)
    await idx.open()
    yield idx
    await idx.close()


@pytest.fixture
def repository(storage, index):
    return FileRepository(storage, index, capacity_bytes=1_000_000)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        FILE_STORAGE_PATH=str(tmp_path / "uploads"),
        METADATA_BACKEND="json",
        METADATA_PATH=str(tmp_path / "files-metadata.json"),
        STORAGE_CAPACITY_BYTES=1_000_000,
        GEMINI_API_KEY="",
        OPENAI_API_KEY="",
        AUTO_ENRICH=False,
    )


@pytest.fixture
def fake_enricher():
    return FakeEnricher()


@pytest.fixture
def client(settings, fake_enricher):
    app = create_app(settings, enricher=fake_enricher)
    with TestClient(app) as test_client:
        yield test_client
