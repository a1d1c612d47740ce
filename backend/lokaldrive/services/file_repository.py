"""File repository: blob store + metadata index as one unit of work.

Upload writes the blob first, then inserts the record; delete removes the
blob first, then the record. Either way the index never points at a blob
that was already removed, and a failed upload removes its own blob.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from lokaldrive.errors import BlobNotFoundError, BlobStoreError, LokalDriveError
from lokaldrive.schemas.file import CategoryUsage, FileCategory, FileRecord, FileUpdate, StorageStats
from lokaldrive.services.classifier import classify
from lokaldrive.services.file_storage import LocalFileStorage
from lokaldrive.services.metadata_index import MetadataIndex

logger = logging.getLogger(__name__)

# Stats buckets in display order. Archives and everything else share "Others".
_STATS_BUCKETS = (
    ("image", "Images", "#f43f5e", (FileCategory.IMAGE,)),
    ("video", "Videos", "#8b5cf6", (FileCategory.VIDEO,)),
    ("document", "Docs", "#3b82f6", (FileCategory.DOCUMENT,)),
    ("other", "Others", "#10b981", (FileCategory.ARCHIVE, FileCategory.OTHER)),
)


def new_file_id() -> str:
    return uuid.uuid4().hex


def _clean_name(name: Optional[str]) -> str:
    # Browsers may send a full client path; keep the last component only
    base = (name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return base or "unnamed"


@dataclass
class BatchUploadResult:
    """Outcome of upload_many: the stored prefix and, on failure, where it stopped."""
    uploaded: list[FileRecord] = field(default_factory=list)
    failed_name: Optional[str] = None
    error: Optional[Exception] = None
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReconcileReport:
    orphaned_blobs: list[str] = field(default_factory=list)
    missing_blobs: list[str] = field(default_factory=list)
    size_mismatches: list[str] = field(default_factory=list)


class FileRepository:
    """Coordinates LocalFileStorage and a MetadataIndex.

    The instance is built once at startup and injected into the routes.
    """

    def __init__(self, storage: LocalFileStorage, index: MetadataIndex, capacity_bytes: int):
        self.storage = storage
        self.index = index
        self.capacity_bytes = capacity_bytes

    async def upload(self, name: Optional[str], content: bytes) -> FileRecord:
        """Store content and index a new record for it.

        Once started the upload runs to completion even if the caller is
        cancelled, so it cannot stop between blob write and insert.
        """
        return await asyncio.shield(self._upload(_clean_name(name), content))

    async def _upload(self, name: str, content: bytes) -> FileRecord:
        category = classify(name)
        storage_key = await self.storage.put(content, name)
        try:
            size = await self.storage.size_of(storage_key)
            if size != len(content):
                raise BlobStoreError(
                    storage_key, f"Stored size {size} does not match uploaded size {len(content)}"
                )
            record = FileRecord(
                id=new_file_id(),
                name=name,
                size=size,
                type=category,
                storage_key=storage_key,
                uploaded_at=datetime.now(timezone.utc),
            )
            await self.index.insert(record)
        except Exception:
            logger.exception("Upload of %s failed after blob write, cleaning up", name)
            await self.storage.rollback_put(storage_key)
            raise
        logger.info("Uploaded %s as %s (%d bytes, %s)", name, record.id, record.size, record.type.value)
        return record

    async def upload_many(self, files: Iterable[tuple[Optional[str], bytes]]) -> BatchUploadResult:
        """Upload files one at a time in the given order, stopping at the first failure."""
        result = BatchUploadResult()
        pending = list(files)
        for position, (name, content) in enumerate(pending):
            try:
                result.uploaded.append(await self.upload(name, content))
            except LokalDriveError as e:
                result.failed_name = _clean_name(name)
                result.error = e
                result.skipped = [_clean_name(n) for n, _ in pending[position + 1:]]
                logger.warning(
                    "Batch upload stopped at %s after %d file(s): %s",
                    result.failed_name, len(result.uploaded), e,
                )
                break
        return result

    async def delete(self, file_id: str) -> None:
        """Remove the blob, then the record. Raises RecordNotFoundError for unknown ids."""
        await asyncio.shield(self._delete(file_id))

    async def _delete(self, file_id: str) -> None:
        record = await self.index.get(file_id)
        try:
            await self.storage.remove(record.storage_key)
        except BlobNotFoundError:
            logger.warning("Blob %s for file %s was already gone", record.storage_key, file_id)
        await self.index.delete(file_id)
        logger.info("Deleted %s (%s)", record.name, file_id)

    async def get(self, file_id: str) -> FileRecord:
        return await self.index.get(file_id)

    async def open_blob(self, file_id: str):
        """Record plus an open read handle on its blob, for downloads. The caller closes it."""
        record = await self.index.get(file_id)
        return record, await self.storage.open(record.storage_key)

    async def list_files(self, query: Optional[str] = None) -> list[FileRecord]:
        """All records newest-first, optionally narrowed by a case-insensitive
        substring match on the name or any tag."""
        records = await self.index.list_all()
        needle = (query or "").strip().lower()
        if not needle:
            return records
        return [
            r for r in records
            if needle in r.name.lower() or any(needle in tag.lower() for tag in r.tags)
        ]

    async def update_metadata(
        self, file_id: str, description: Optional[str] = None, tags: Optional[list[str]] = None
    ) -> FileRecord:
        """Manual description/tags edit. Marks the record enriched like an analysis would."""
        return await self.index.update(
            file_id, FileUpdate(description=description, tags=tags, enriched=True)
        )

    async def stats(self) -> StorageStats:
        records = await self.index.list_all()
        totals: dict[FileCategory, int] = {}
        for record in records:
            totals[record.type] = totals.get(record.type, 0) + record.size

        by_type = []
        for key, label, color, categories in _STATS_BUCKETS:
            value = sum(totals.get(c, 0) for c in categories)
            if value > 0:
                by_type.append(CategoryUsage(category=key, name=label, value=value, color=color))

        used = sum(totals.values())
        return StorageStats(
            used=used,
            total=self.capacity_bytes,
            available=max(0, self.capacity_bytes - used),
            file_count=len(records),
            by_type=by_type,
        )

    async def reconcile(self) -> ReconcileReport:
        """Repair blob/record drift left by a crash.

        Blobs without a record are removed, except files the metadata index
        itself keeps in the blob directory. Records without a blob, or whose
        size disagrees with the blob, are reported and kept.
        """
        report = ReconcileReport()
        records = await self.index.list_all()
        keys = set(await self.storage.list_keys())
        known = {r.storage_key for r in records}
        reserved = {p.resolve() for p in self.index.backing_paths()}

        for key in sorted(keys - known):
            if self.storage.base_path / key in reserved:
                continue
            logger.warning("Removing orphaned blob with no file record: %s", key)
            try:
                await self.storage.remove(key)
            except BlobNotFoundError:
                continue
            report.orphaned_blobs.append(key)

        for record in records:
            if record.storage_key not in keys:
                logger.warning(
                    "File record %s (%s) has no blob at %s", record.id, record.name, record.storage_key
                )
                report.missing_blobs.append(record.id)
                continue
            size = await self.storage.size_of(record.storage_key)
            if size != record.size:
                logger.warning(
                    "File record %s says %d bytes but blob has %d", record.id, record.size, size
                )
                report.size_mismatches.append(record.id)

        if report.orphaned_blobs or report.missing_blobs or report.size_mismatches:
            logger.info(
                "Reconcile: removed %d orphaned blob(s), %d record(s) missing blobs, %d size mismatch(es)",
                len(report.orphaned_blobs), len(report.missing_blobs), len(report.size_mismatches),
            )
        return report
