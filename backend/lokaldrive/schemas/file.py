"""File record, storage statistics and file API schemas."""
import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from lokaldrive.schemas.base import CamelModel, CamelORMModel


class FileCategory(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    OTHER = "other"


class FileRecord(BaseModel):
    """One indexed file.

    Only description, tags and enriched change after creation; updates go
    through the metadata index and produce a new record via model_copy.
    """
    model_config = {"frozen": True}

    id: str
    name: str
    size: int = Field(ge=0)
    type: FileCategory
    storage_key: str
    uploaded_at: datetime
    description: Optional[str] = None
    tags: list[str] = []
    enriched: bool = False


class FileUpdate(BaseModel):
    """Partial change accepted by MetadataIndex.update. Unset fields are left alone."""
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    enriched: Optional[bool] = None

    def apply(self, record: FileRecord) -> FileRecord:
        changes = self.model_dump(exclude_none=True)
        # enriched is monotonic: false -> true only
        if record.enriched:
            changes.pop("enriched", None)
        if "tags" in changes:
            changes["tags"] = list(changes["tags"])
        return record.model_copy(update=changes)


class EnrichmentResult(BaseModel):
    description: str
    tags: list[str] = []


class CategoryUsage(CamelORMModel):
    category: str
    name: str
    value: int
    color: str


class StorageStats(CamelORMModel):
    used: int
    total: int
    available: int
    file_count: int
    by_type: list[CategoryUsage] = []


class FileResponse(CamelORMModel):
    id: str
    name: str
    size: int
    type: FileCategory
    uploaded_at: datetime
    url: str
    description: Optional[str] = None
    tags: list[str] = []
    enriched: bool = False

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileResponse":
        return cls(
            id=record.id,
            name=record.name,
            size=record.size,
            type=record.type,
            uploaded_at=record.uploaded_at,
            url=f"/api/files/{record.id}/download",
            description=record.description,
            tags=list(record.tags),
            enriched=record.enriched,
        )


class FileMetadataUpdate(CamelModel):
    description: Optional[str] = None
    tags: Optional[list[str]] = None


class BatchUploadFailure(CamelORMModel):
    name: str
    error: str


class BatchUploadResponse(CamelORMModel):
    uploaded: list[FileResponse] = []
    failed: Optional[BatchUploadFailure] = None
    skipped: list[str] = []
