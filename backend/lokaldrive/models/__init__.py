"""Import all models so SQLAlchemy metadata knows about them."""
from lokaldrive.models.base import Base
from lokaldrive.models.file_record import FileRow

__all__ = ["Base", "FileRow"]
