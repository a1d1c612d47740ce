"""FileRow model - file metadata for the SQL index (actual bytes live in the blob store)."""
from datetime import datetime, timezone
from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from lokaldrive.models.base import Base
from lokaldrive.schemas.file import FileCategory, FileRecord


class FileRow(Base):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Insertion sequence; listing is ordered by seq descending (newest first)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(1000), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    enriched: Mapped[bool] = mapped_column(Boolean, default=False)

    @classmethod
    def from_record(cls, record: FileRecord, seq: int) -> "FileRow":
        return cls(
            id=record.id,
            seq=seq,
            name=record.name,
            size=record.size,
            type=record.type.value,
            storage_key=record.storage_key,
            uploaded_at=record.uploaded_at,
            description=record.description,
            tags=list(record.tags),
            enriched=record.enriched,
        )

    def to_record(self) -> FileRecord:
        uploaded_at = self.uploaded_at
        # SQLite hands back naive datetimes; values are always stored as UTC
        if uploaded_at.tzinfo is None:
            uploaded_at = uploaded_at.replace(tzinfo=timezone.utc)
        return FileRecord(
            id=self.id,
            name=self.name,
            size=self.size,
            type=FileCategory(self.type),
            storage_key=self.storage_key,
            uploaded_at=uploaded_at,
            description=self.description,
            tags=list(self.tags or []),
            enriched=self.enriched,
        )
