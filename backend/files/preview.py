# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261017v1
# ---------------------------------------------------------------------------
"""Preview kind from MIME type and file extension."""

from pathlib import PurePosixPath
from typing import Optional

_CODE_EXTENSIONS = {
    ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".c", ".h", ".cpp", ".hpp", ".cs",
    ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".scala", ".sh", ".sql", ".html",
    ".css", ".scss", ".json", ".xml", ".yaml", ".yml", ".toml", ".ini",
}
_TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".log", ".rtf"}
_DOCUMENT_EXTENSIONS = {".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp"}
_DOCUMENT_MIME_HINTS = ("msword", "officedocument", "opendocument", "ms-excel", "ms-powerpoint")

PREVIEW_TYPES = ("text", "code", "image", "pdf", "document", "video", "audio", "unsupported")


def detect_preview_type(mime_type: Optional[str], file_name: Optional[str]) -> str:
    """One of :data:`PREVIEW_TYPES`.  MIME type wins; the extension breaks ties."""
    mime = (mime_type or "").lower()
    ext = PurePosixPath(file_name or "").suffix.lower()

    if mime.startswith("image/"):
        return "image"
    if mime == "application/pdf" or ext == ".pdf":
        return "pdf"
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    if ext in _CODE_EXTENSIONS:
        return "code"
    if mime.startswith("text/") or ext in _TEXT_EXTENSIONS:
        return "text"
    if any(hint in mime for hint in _DOCUMENT_MIME_HINTS) or ext in _DOCUMENT_EXTENSIONS:
        return "document"
    return "unsupported"
