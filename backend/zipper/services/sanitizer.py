"""
Archive-safe names.

Filenames from the manifest are free text. Everything that could change
path structure or trip up an extractor on another OS is stripped; folder
nesting comes only from the Folder field.
"""
import re
from typing import Optional

from zipper.core.config import settings
from zipper.models.manifest import FileDescriptor

# Characters removed from every name component
UNSAFE_NAME_CHARS = re.compile(r'[#<>:"/\\|?*]')

# Folder separators accepted from the manifest
FOLDER_SEPARATORS = re.compile(r'[/\\]')


def sanitize(raw: str) -> str:
    """Remove every unsafe character. Idempotent; may return an empty string."""
    return UNSAFE_NAME_CHARS.sub("", raw)


def sanitize_folder(folder: str) -> str:
    """
    Turn a manifest Folder into an archive directory prefix.

    Each segment is sanitized on its own so "a/b" stays nested, while
    empty, "." and ".." segments are dropped so nothing can climb out of
    the archive root. Returns "" or a prefix ending in exactly one "/".
    """
    segments = []
    for segment in FOLDER_SEPARATORS.split(folder):
        segment = sanitize(segment)
        if segment in ("", ".", ".."):
            continue
        segments.append(segment)
    if not segments:
        return ""
    return "/".join(segments) + "/"


def archive_path(descriptor: FileDescriptor, fallback: Optional[str] = None) -> str:
    """Name of the descriptor's entry inside the archive"""
    file_name = sanitize(descriptor.file_name)
    if not file_name:
        file_name = fallback or settings.FALLBACK_FILE_NAME
    return sanitize_folder(descriptor.folder) + file_name


def download_name(raw: Optional[str], default: Optional[str] = None) -> str:
    """Attachment filename for the Content-Disposition header"""
    name = sanitize(raw or "")
    if not name:
        name = default or settings.DEFAULT_DOWNLOAD_NAME
    return name
