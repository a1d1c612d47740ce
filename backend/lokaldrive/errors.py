"""Exceptions raised by the file repository and its collaborators."""


class LokalDriveError(Exception):
    """Base class for all repository errors."""
    pass


class RecordNotFoundError(LokalDriveError):
    """Raised when no file record exists for the given id."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


class DuplicateIdError(LokalDriveError):
    """Raised when inserting a record whose id is already indexed."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(f"Duplicate file id: {file_id}")


class BlobStoreError(LokalDriveError):
    """Raised when writing, reading or removing a blob fails."""

    def __init__(self, storage_key: str, message: str = "Blob store operation failed"):
        self.storage_key = storage_key
        super().__init__(f"{message}: {storage_key}")


class BlobNotFoundError(BlobStoreError):
    """Raised when a blob is absent. Callers removing blobs treat this as done."""

    def __init__(self, storage_key: str):
        super().__init__(storage_key, "Blob not found")


class InvalidStorageKeyError(BlobStoreError):
    """Raised for keys that would resolve outside the storage root."""

    def __init__(self, storage_key: str):
        super().__init__(storage_key, "Invalid storage key")


class PersistenceError(LokalDriveError):
    """Raised when the metadata collection cannot be loaded or saved."""
    pass


class EnrichmentUnavailable(LokalDriveError):
    """Raised when the enrichment collaborator is missing, failing or timing out.

    Never leaves the enrichment gateway; it falls back to local metadata.
    """
    pass
