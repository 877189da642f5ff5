"""Utility functions for pydbox."""

import posixpath

# =============================================================================
# Constants for file operations
# =============================================================================

# Chunk size for upload sessions (4 MB, Dropbox recommends multiples of 4 MB)
DEFAULT_CHUNK_SIZE: int = 4 * 1024 * 1024

# Largest file accepted by a single-request upload (150 MB)
MAX_SINGLE_UPLOAD_SIZE: int = 150 * 1024 * 1024

# Read size when streaming downloads to disk
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024

# Length of generated symmetric keys (AES-256)
DEFAULT_KEY_LENGTH: int = 32

# Default number of revisions returned by the revisions command
DEFAULT_REVISION_LIMIT: int = 10

# Default timeout for long poll delta requests (seconds)
DEFAULT_LONGPOLL_TIMEOUT: int = 30

REMOTE_ROOT = "/"


# =============================================================================
# Remote path utilities
# =============================================================================


def clean_remote_path(path: str) -> str:
    """Normalize a remote path to an absolute path without trailing separator.

    Args:
        path: Remote path as typed by the user (may be relative)

    Returns:
        Absolute, normalized path; the root is returned as "/"

    Examples:
        >>> clean_remote_path("docs/")
        '/docs'
        >>> clean_remote_path("//docs//a/../b")
        '/docs/b'
        >>> clean_remote_path("")
        '/'
    """
    # posixpath keeps a leading "//", so strip it and re-anchor
    normalized = posixpath.normpath("/" + path).lstrip("/")
    return REMOTE_ROOT + normalized


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
