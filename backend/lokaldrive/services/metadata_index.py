"""Metadata index: the persisted, newest-first collection of file records.

Two backends share the MetadataIndex interface:

- JsonFileMetadataIndex keeps the whole collection in one JSON file. Every
  mutation writes the complete new collection to a temp file and swaps it
  in with os.replace, so a crash leaves either the old or the new file.
- SqlMetadataIndex stores rows through SQLAlchemy, one transaction per
  mutation.

Mutations are serialized per index by an asyncio.Lock and shielded from
caller cancellation once started. Reads never take the lock: the JSON
backend serves the last published snapshot, the SQL backend reads inside
its own transaction.
"""
import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import aiofiles
import aiofiles.os
from sqlalchemy import func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lokaldrive.config import Settings
from lokaldrive.database import create_engine_and_sessionmaker
from lokaldrive.errors import DuplicateIdError, PersistenceError, RecordNotFoundError
from lokaldrive.models import Base, FileRow
from lokaldrive.schemas.file import FileRecord, FileUpdate

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FORMAT_VERSION = 1


class MetadataIndex(ABC):
    """Abstract metadata index. Records are returned newest-first."""

    backend_name: str = ""

    @abstractmethod
    async def open(self) -> None:
        """Load or create the backing store. Raises PersistenceError if it is unusable."""

    async def close(self) -> None:
        pass

    @abstractmethod
    async def insert(self, record: FileRecord) -> FileRecord:
        """Add a record at the front. Raises DuplicateIdError if the id exists."""

    @abstractmethod
    async def get(self, file_id: str) -> FileRecord:
        """Raises RecordNotFoundError if absent."""

    @abstractmethod
    async def update(self, file_id: str, changes: FileUpdate) -> FileRecord:
        """Apply a partial change to description/tags/enriched. Returns the new record."""

    @abstractmethod
    async def delete(self, file_id: str) -> None:
        """Raises RecordNotFoundError if absent."""

    @abstractmethod
    async def list_all(self) -> list[FileRecord]:
        pass

    async def count(self) -> int:
        return len(await self.list_all())

    def backing_paths(self) -> list[Path]:
        """Files this index owns on disk. Reconciliation never treats them as blobs."""
        return []


@dataclass(frozen=True)
class _Snapshot:
    records: tuple[FileRecord, ...] = ()
    by_id: dict[str, FileRecord] = field(default_factory=dict)

    @classmethod
    def of(cls, records: tuple[FileRecord, ...]) -> "_Snapshot":
        return cls(records=records, by_id={r.id: r for r in records})


class JsonFileMetadataIndex(MetadataIndex):
    """Whole collection in one JSON file, rewritten atomically on every mutation.

    Layout: {"version": 1, "files": [<record>, ...]} with records newest-first.
    """

    backend_name = "json"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._tmp_path = self.path.with_name(self.path.name + ".tmp")
        self._snapshot = _Snapshot()
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if await aiofiles.os.path.exists(self._tmp_path):
            # Left behind by a crash before the swap; the main file is still authoritative
            logger.warning("Removing stale metadata temp file: %s", self._tmp_path)
            await aiofiles.os.remove(self._tmp_path)

        if not await aiofiles.os.path.exists(self.path):
            logger.info("Metadata file not found, starting empty: %s", self.path)
            await self._write(())
            self._snapshot = _Snapshot()
            return

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                raw = await f.read()
            data = json.loads(raw)
            records = tuple(FileRecord.model_validate(item) for item in data["files"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt or unreadable metadata file {self.path}: {e}") from e

        snapshot = _Snapshot.of(records)
        if len(snapshot.by_id) != len(records):
            raise PersistenceError(f"Metadata file {self.path} contains duplicate file ids")
        self._snapshot = snapshot
        logger.info("Loaded %d file record(s) from %s", len(records), self.path)

    async def _write(self, records: tuple[FileRecord, ...]) -> None:
        payload = json.dumps(
            {"version": _FORMAT_VERSION, "files": [r.model_dump(mode="json") for r in records]},
            ensure_ascii=False,
            indent=2,
        )
        try:
            async with aiofiles.open(self._tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(self._tmp_path, self.path)
        except OSError as e:
            logger.exception("Failed to persist metadata to %s", self.path)
            try:
                await aiofiles.os.remove(self._tmp_path)
            except FileNotFoundError:
                pass
            raise PersistenceError(f"Failed to write metadata file {self.path}: {e}") from e

    async def _mutate(
        self, change: Callable[[_Snapshot], tuple[tuple[FileRecord, ...], T]]
    ) -> T:
        """Compute, persist, then publish a new collection under the lock.

        The in-memory snapshot only changes after the file swap succeeded.
        """
        async def _locked() -> T:
            async with self._lock:
                records, result = change(self._snapshot)
                await self._write(records)
                self._snapshot = _Snapshot.of(records)
                return result

        return await asyncio.shield(_locked())

    async def insert(self, record: FileRecord) -> FileRecord:
        def _insert(snapshot: _Snapshot):
            if record.id in snapshot.by_id:
                raise DuplicateIdError(record.id)
            return (record.model_copy(deep=True), *snapshot.records), record

        return await self._mutate(_insert)

    async def get(self, file_id: str) -> FileRecord:
        record = self._snapshot.by_id.get(file_id)
        if record is None:
            raise RecordNotFoundError(file_id)
        # Copies, so callers cannot reach into the published snapshot
        return record.model_copy(deep=True)

    async def update(self, file_id: str, changes: FileUpdate) -> FileRecord:
        def _update(snapshot: _Snapshot):
            current = snapshot.by_id.get(file_id)
            if current is None:
                raise RecordNotFoundError(file_id)
            updated = changes.apply(current)
            records = tuple(updated if r.id == file_id else r for r in snapshot.records)
            return records, updated.model_copy(deep=True)

        return await self._mutate(_update)

    async def delete(self, file_id: str) -> None:
        def _delete(snapshot: _Snapshot):
            if file_id not in snapshot.by_id:
                raise RecordNotFoundError(file_id)
            return tuple(r for r in snapshot.records if r.id != file_id), None

        await self._mutate(_delete)

    async def list_all(self) -> list[FileRecord]:
        return [r.model_copy(deep=True) for r in self._snapshot.records]

    async def count(self) -> int:
        return len(self._snapshot.records)

    def backing_paths(self) -> list[Path]:
        return [self.path, self._tmp_path]


class SqlMetadataIndex(MetadataIndex):
    """Records stored as rows of the `files` table."""

    backend_name = "sql"

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = None
        self._session_factory = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self._engine, self._session_factory = create_engine_and_sessionmaker(self.database_url)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to open metadata database: {e}") from e
        logger.info("Metadata database ready: %s", url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    def backing_paths(self) -> list[Path]:
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return []
        db = Path(url.database)
        return [db, *(db.with_name(db.name + suffix) for suffix in ("-journal", "-wal", "-shm"))]

    async def _mutate(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _locked() -> T:
            async with self._lock:
                try:
                    async with self._session_factory() as session:
                        async with session.begin():
                            return await work(session)
                except SQLAlchemyError as e:
                    logger.exception("Metadata transaction failed")
                    raise PersistenceError(f"Failed to write metadata: {e}") from e

        return await asyncio.shield(_locked())

    async def insert(self, record: FileRecord) -> FileRecord:
        async def _insert(session: AsyncSession) -> FileRecord:
            if await session.get(FileRow, record.id) is not None:
                raise DuplicateIdError(record.id)
            max_seq = await session.scalar(select(func.max(FileRow.seq)))
            session.add(FileRow.from_record(record, (max_seq or 0) + 1))
            return record

        return await self._mutate(_insert)

    async def get(self, file_id: str) -> FileRecord:
        try:
            async with self._session_factory() as session:
                row = await session.get(FileRow, file_id)
                record = row.to_record() if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read metadata: {e}") from e
        if record is None:
            raise RecordNotFoundError(file_id)
        return record

    async def update(self, file_id: str, changes: FileUpdate) -> FileRecord:
        async def _update(session: AsyncSession) -> FileRecord:
            row = await session.get(FileRow, file_id)
            if row is None:
                raise RecordNotFoundError(file_id)
            updated = changes.apply(row.to_record())
            row.description = updated.description
            row.tags = list(updated.tags)
            row.enriched = updated.enriched
            return updated

        return await self._mutate(_update)

    async def delete(self, file_id: str) -> None:
        async def _delete(session: AsyncSession) -> None:
            row = await session.get(FileRow, file_id)
            if row is None:
                raise RecordNotFoundError(file_id)
            await session.delete(row)

        await self._mutate(_delete)

    async def list_all(self) -> list[FileRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(FileRow).order_by(FileRow.seq.desc()))
                return [row.to_record() for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read metadata: {e}") from e

    async def count(self) -> int:
        try:
            async with self._session_factory() as session:
                return await session.scalar(select(func.count()).select_from(FileRow)) or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read metadata: {e}") from e


def create_metadata_index(settings: Settings) -> MetadataIndex:
    if settings.METADATA_BACKEND == "json":
        return JsonFileMetadataIndex(settings.METADATA_PATH)
    if settings.METADATA_BACKEND == "sql":
        return SqlMetadataIndex(settings.DATABASE_URL)
    raise ValueError(f"Unknown metadata backend: {settings.METADATA_BACKEND}")
