"""Data models for remote Dropbox metadata."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from dropbox import files

from .utils import REMOTE_ROOT, format_size

DIRECTORY_SIZE = "-"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # The SDK returns naive datetimes expressed in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Entry:
    """Snapshot of one remote file or directory.

    Entries are returned by the storage client and never modified
    afterwards. ``children`` is only populated for directories, and only one
    level deep.
    """

    path: str
    is_dir: bool = False
    is_deleted: bool = False
    size: str = ""
    byte_size: int = 0
    modified: Optional[datetime] = None
    revision: str = ""
    children: tuple["Entry", ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        """Last path component ("/" for the root)."""
        if self.path == REMOTE_ROOT:
            return REMOTE_ROOT
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @classmethod
    def root(cls, children: tuple["Entry", ...] = ()) -> "Entry":
        """The account root, which has no metadata of its own."""
        return cls(path=REMOTE_ROOT, is_dir=True, size=DIRECTORY_SIZE, children=children)

    @classmethod
    def from_metadata(cls, metadata: Any, children: tuple["Entry", ...] = ()) -> "Entry":
        """Create an Entry from Dropbox SDK metadata.

        Args:
            metadata: FileMetadata, FolderMetadata or DeletedMetadata
            children: Entries of the folder contents, if fetched

        Returns:
            Entry instance
        """
        if not isinstance(
            metadata, (files.FileMetadata, files.FolderMetadata, files.DeletedMetadata)
        ):
            raise TypeError(f"Unsupported metadata type: {type(metadata).__name__}")

        path = metadata.path_display or metadata.path_lower or f"/{metadata.name}"
        if isinstance(metadata, files.FileMetadata):
            return cls(
                path=path,
                size=format_size(metadata.size),
                byte_size=metadata.size,
                modified=_as_utc(metadata.server_modified),
                revision=metadata.rev,
            )
        if isinstance(metadata, files.FolderMetadata):
            return cls(path=path, is_dir=True, size=DIRECTORY_SIZE, children=children)
        return cls(path=path, is_deleted=True, size=format_size(0))


@dataclass(frozen=True)
class Link:
    """A shareable or direct-access URL."""

    url: str
    expires: Optional[datetime] = None


@dataclass(frozen=True)
class CopyRef:
    """A copy reference usable to copy a file into another account."""

    ref: str
    expires: Optional[datetime] = None


@dataclass(frozen=True)
class DeltaEntry:
    """One change reported by a delta page (``entry`` is None when deleted)."""

    path: str
    entry: Optional[Entry] = None


@dataclass(frozen=True)
class DeltaPage:
    """A page of remote changes since a cursor."""

    entries: tuple[DeltaEntry, ...]
    cursor: str
    has_more: bool = False
    reset: bool = False


@dataclass(frozen=True)
class DeltaPoll:
    """Result of a long poll on a delta cursor."""

    changes: bool
    backoff: Optional[int] = None
