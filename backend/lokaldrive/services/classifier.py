"""Map file names to a semantic category from their extension."""
from lokaldrive.schemas.file import FileCategory

_EXTENSIONS: dict[FileCategory, frozenset[str]] = {
    FileCategory.IMAGE: frozenset({"jpg", "jpeg", "png", "gif", "svg", "webp"}),
    FileCategory.VIDEO: frozenset({"mp4", "mov", "avi", "mkv"}),
    FileCategory.DOCUMENT: frozenset({"pdf", "doc", "docx", "txt", "md"}),
    FileCategory.ARCHIVE: frozenset({"zip", "rar", "7z", "tar", "gz"}),
}


def extension_of(name: str) -> str:
    """Lowercased text after the last '.', or '' when there is none.

    'report.PDF' -> 'pdf', 'backup.tar.gz' -> 'gz', 'README' -> ''.
    """
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def classify(name: str) -> FileCategory:
    """Category for a file name. Unknown or missing extensions are OTHER."""
    ext = extension_of(name)
    for category, extensions in _EXTENSIONS.items():
        if ext in extensions:
            return category
    return FileCategory.OTHER
