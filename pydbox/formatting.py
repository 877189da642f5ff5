"""Rendering of remote entries for directory listings.

Two listing formats are supported:

* short: one name per line, relative to a prefix
* long: name, size, modification time, revision and deletion marker in
  aligned columns

Names are shown relative to a prefix length. When listing the contents of a
directory, :func:`prefix_length` gives the offset that skips the directory
path and its separator, so ``/docs/readme.txt`` listed under ``/docs`` shows
as ``readme.txt`` and ``/docs`` listed under ``/`` shows as ``docs/``.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from enum import Enum

from .models import Entry
from .utils import REMOTE_ROOT

DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"
DATE_WIDTH = len(datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone.utc).strftime(DATE_FORMAT))
DELETED_MARKER = "[deleted]"
COLUMN_SEPARATOR = "  "


class ListingFormat(Enum):
    """Listing output format."""

    SHORT = "short"
    LONG = "long"


def prefix_length(directory: str) -> int:
    """Offset that strips a directory and its separator from child paths.

    Args:
        directory: Cleaned absolute directory path (no trailing separator)

    Returns:
        Number of leading characters to drop from each child path
    """
    if directory == REMOTE_ROOT:
        return len(REMOTE_ROOT)
    return len(directory) + 1


def display_name(entry: Entry, prefix_len: int = 0) -> str:
    """Entry path with the prefix removed and a separator after directories."""
    name = entry.path[prefix_len:]
    if entry.is_dir and entry.path != REMOTE_ROOT:
        name += "/"
    return name


def format_entry(entry: Entry, prefix_len: int = 0) -> str:
    """Short form: name only, with the deleted marker when relevant."""
    line = display_name(entry, prefix_len)
    if entry.is_deleted:
        line += " " + DELETED_MARKER
    return line


def format_time(value: datetime) -> str:
    """Format a timestamp; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.strftime(DATE_FORMAT)


def format_modified(entry: Entry) -> str:
    """Modification time, or blanks of the same width when unknown."""
    if entry.modified is None:
        return " " * DATE_WIDTH
    return format_time(entry.modified)


def format_entries_long(entries: Iterable[Entry], prefix_len: int = 0) -> list[str]:
    """Long form for a batch of sibling entries.

    The whole batch is buffered so that the name, size and revision
    columns get the width of their widest value.

    Args:
        entries: Entries to render
        prefix_len: Number of leading characters to strip from each path

    Returns:
        One line per entry, in input order
    """
    rows = [
        (display_name(entry, prefix_len), entry.size, format_modified(entry), entry.revision, entry)
        for entry in entries
    ]
    if not rows:
        return []

    name_width = max(len(row[0]) for row in rows)
    size_width = max(len(row[1]) for row in rows)
    revision_width = max(len(row[3]) for row in rows)

    lines = []
    for name, size, modified, revision, entry in rows:
        cells = [
            name.ljust(name_width),
            size.rjust(size_width),
            modified,
            revision.ljust(revision_width),
        ]
        if entry.is_deleted:
            cells.append(DELETED_MARKER)
        lines.append(COLUMN_SEPARATOR.join(cells).rstrip())
    return lines


def format_entry_long(entry: Entry, prefix_len: int = 0) -> str:
    """Long form for a single entry."""
    return format_entries_long([entry], prefix_len)[0]


def format_entries(
    entries: Sequence[Entry], prefix_len: int, listing_format: ListingFormat
) -> list[str]:
    """Render entries in the requested format."""
    if listing_format is ListingFormat.LONG:
        return format_entries_long(entries, prefix_len)
    return [format_entry(entry, prefix_len) for entry in entries]
