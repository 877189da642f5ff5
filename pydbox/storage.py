"""Remote storage client.

:class:`StorageClient` is the interface the command handlers and the
transfer orchestrator consume. :class:`DropboxStorageClient` implements it
on top of the official Dropbox SDK, which handles the wire protocol, and
``httpx`` for ranged downloads.

All SDK failures are translated into :mod:`pydbox.exceptions` errors. No
retries happen here.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Optional, Protocol

import dropbox
import httpx
import requests
from dropbox import files
from dropbox.exceptions import ApiError, AuthError, DropboxException

from .exceptions import (
    DboxAPIError,
    DboxAuthenticationError,
    DboxDownloadError,
    DboxNetworkError,
    DboxNotFoundError,
    DboxUploadError,
)
from .models import CopyRef, DeltaEntry, DeltaPage, DeltaPoll, Entry, Link
from .utils import DOWNLOAD_CHUNK_SIZE, REMOTE_ROOT, clean_remote_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# Thumbnail size names accepted on the command line
THUMBNAIL_SIZES = {
    "xs": "w32h32",
    "s": "w64h64",
    "m": "w128h128",
    "l": "w640h480",
    "xl": "w1024h768",
}
THUMBNAIL_FORMATS = ("jpeg", "png")

# Dropbox temporary links are valid for four hours
TEMPORARY_LINK_LIFETIME = timedelta(hours=4)

DEFAULT_SEARCH_LIMIT = 100


class StorageClient(Protocol):
    """Operations on a remote storage account."""

    def metadata(
        self,
        path: str,
        include_children: bool = True,
        include_deleted: bool = False,
        revision: Optional[str] = None,
    ) -> Entry: ...

    def upload_whole(
        self,
        reader: BinaryIO,
        destination: str,
        overwrite: bool = True,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry: ...

    def upload_chunked(
        self,
        reader: BinaryIO,
        chunk_size: int,
        destination: str,
        overwrite: bool = True,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
        total: Optional[int] = None,
    ) -> Entry: ...

    def download_whole(
        self,
        source: str,
        fileobj: BinaryIO,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry: ...

    def download_resumable(
        self,
        source: str,
        fileobj: BinaryIO,
        offset: int,
        revision: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry: ...

    def copy(self, from_path: str, to_path: str) -> Entry: ...

    def copy_from_ref(self, ref: str, to_path: str) -> Entry: ...

    def copy_ref(self, path: str) -> CopyRef: ...

    def move(self, from_path: str, to_path: str) -> Entry: ...

    def delete(self, path: str) -> Entry: ...

    def create_folder(self, path: str) -> Entry: ...

    def search(
        self, path: str, query: str, limit: int = 0, include_deleted: bool = False
    ) -> list[Entry]: ...

    def list_revisions(self, path: str, limit: int) -> list[Entry]: ...

    def restore(self, path: str, revision: str) -> Entry: ...

    def get_share_link(self, path: str, short_url: bool = True) -> Link: ...

    def get_media_link(self, path: str) -> Link: ...

    def get_thumbnail(
        self, path: str, fileobj: BinaryIO, fmt: str = "png", size: str = "s"
    ) -> Entry: ...

    def get_delta(self, cursor: str = "", prefix: str = "") -> DeltaPage: ...

    def get_delta_longpoll(self, cursor: str, timeout: int) -> DeltaPoll: ...

    def close(self) -> None: ...


def _is_not_found(error: Any) -> bool:
    """Check whether an SDK error union describes a missing path."""
    for tag in ("path", "path_lookup", "from_lookup"):
        is_tag = getattr(error, f"is_{tag}", None)
        if is_tag is None or not is_tag():
            continue
        lookup = getattr(error, f"get_{tag}")()
        is_not_found = getattr(lookup, "is_not_found", None)
        if is_not_found is not None and is_not_found():
            return True
    return False


def _describe(error: ApiError) -> str:
    if error.user_message_text:
        return str(error.user_message_text)
    return f"API request failed: {error.error}"


def _write_mode(overwrite: bool, revision: Optional[str]) -> tuple[Any, bool]:
    """Select the SDK write mode and whether to autorename on conflict."""
    if revision:
        return files.WriteMode.update(revision), False
    if not overwrite:
        return files.WriteMode.add, True
    return files.WriteMode.overwrite, False


def _sdk_path(path: str) -> str:
    """Convert a remote path to the SDK convention (root is "")."""
    path = clean_remote_path(path)
    return "" if path == REMOTE_ROOT else path


class DropboxStorageClient:
    """StorageClient backed by the Dropbox SDK."""

    def __init__(
        self,
        token: str,
        timeout: float = 100.0,
        dbx: Optional[dropbox.Dropbox] = None,
    ):
        """Initialize the client.

        Args:
            token: OAuth2 access token
            timeout: Request timeout in seconds
            dbx: Preconfigured SDK client (built from the token if omitted)
        """
        self.timeout = timeout
        self._dbx = dbx or dropbox.Dropbox(oauth2_access_token=token, timeout=timeout)

    def close(self) -> None:
        """Release the SDK's HTTP session."""
        self._dbx.close()

    @contextmanager
    def _api_errors(self) -> Iterator[None]:
        """Translate SDK and transport errors into pydbox exceptions."""
        try:
            yield
        except AuthError as e:
            raise DboxAuthenticationError(f"Authentication failed: {e.error}") from e
        except ApiError as e:
            if _is_not_found(e.error):
                raise DboxNotFoundError("not found") from e
            raise DboxAPIError(_describe(e)) from e
        except DropboxException as e:
            raise DboxAPIError(f"API request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            raise DboxNetworkError(f"Network error: {e}") from e

    # =========================
    # Metadata
    # =========================

    def _list_children(self, path: str, include_deleted: bool) -> tuple[Entry, ...]:
        result = self._dbx.files_list_folder(path, include_deleted=include_deleted)
        metadata = list(result.entries)
        while result.has_more:
            result = self._dbx.files_list_folder_continue(result.cursor)
            metadata.extend(result.entries)
        children = [Entry.from_metadata(md) for md in metadata]
        return tuple(sorted(children, key=lambda entry: entry.path.lower()))

    def metadata(
        self,
        path: str,
        include_children: bool = True,
        include_deleted: bool = False,
        revision: Optional[str] = None,
    ) -> Entry:
        """Get metadata for a path, with directory contents one level deep.

        Args:
            path: Remote path
            include_children: Fetch directory contents
            include_deleted: Include deleted entries
            revision: Look up a specific file revision instead of the latest

        Returns:
            Entry for the path
        """
        sdk_path = _sdk_path(path)
        logger.debug(f"metadata {path!r} children={include_children} rev={revision}")

        with self._api_errors():
            if not sdk_path and not revision:
                children = (
                    self._list_children("", include_deleted) if include_children else ()
                )
                return Entry.root(children)

            lookup = f"rev:{revision}" if revision else sdk_path
            md = self._dbx.files_get_metadata(lookup, include_deleted=include_deleted)
            if isinstance(md, files.FolderMetadata) and include_children:
                return Entry.from_metadata(
                    md, self._list_children(sdk_path, include_deleted)
                )
            return Entry.from_metadata(md)

    # =========================
    # Upload Operations
    # =========================

    def upload_whole(
        self,
        reader: BinaryIO,
        destination: str,
        overwrite: bool = True,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry:
        """Upload a stream in a single request (files up to 150 MB)."""
        mode, autorename = _write_mode(overwrite, revision)
        data = reader.read()
        logger.debug(f"upload {len(data)} bytes to {destination!r}")

        with self._api_errors():
            md = self._dbx.files_upload(
                data, _sdk_path(destination), mode=mode, autorename=autorename
            )
        if progress_callback:
            progress_callback(len(data), len(data))
        return Entry.from_metadata(md)

    def upload_chunked(
        self,
        reader: BinaryIO,
        chunk_size: int,
        destination: str,
        overwrite: bool = True,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
        total: Optional[int] = None,
    ) -> Entry:
        """Upload a stream through an upload session, one chunk per request.

        Args:
            reader: Binary stream to upload
            chunk_size: Maximum bytes per request
            destination: Remote path
            overwrite: Replace an existing file (otherwise rename on conflict)
            revision: Revision the upload is expected to replace
            progress_callback: Optional callback function(bytes_sent, total_bytes)
            total: Total stream size for progress reporting

        Returns:
            Entry of the uploaded file
        """
        if chunk_size <= 0:
            raise DboxUploadError(f"Invalid chunk size: {chunk_size}")
        mode, autorename = _write_mode(overwrite, revision)
        total = total or 0

        with self._api_errors():
            data = reader.read(chunk_size)
            session = self._dbx.files_upload_session_start(data)
            cursor = files.UploadSessionCursor(
                session_id=session.session_id, offset=len(data)
            )
            if progress_callback:
                progress_callback(cursor.offset, total)

            while True:
                data = reader.read(chunk_size)
                if not data:
                    break
                self._dbx.files_upload_session_append_v2(data, cursor)
                cursor.offset += len(data)
                logger.debug(f"uploaded chunk, {cursor.offset} bytes sent")
                if progress_callback:
                    progress_callback(cursor.offset, total)

            commit = files.CommitInfo(
                path=_sdk_path(destination), mode=mode, autorename=autorename
            )
            md = self._dbx.files_upload_session_finish(b"", cursor, commit)
        return Entry.from_metadata(md)

    # =========================
    # Download Operations
    # =========================

    def _write_response(
        self,
        response: requests.Response,
        fileobj: BinaryIO,
        total: int,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        received = 0
        try:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if chunk:
                    fileobj.write(chunk)
                    received += len(chunk)
                    if progress_callback:
                        progress_callback(received, total)
        except requests.exceptions.RequestException as e:
            raise DboxNetworkError(f"Network error during download: {e}") from e
        finally:
            response.close()

    def download_whole(
        self,
        source: str,
        fileobj: BinaryIO,
        revision: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry:
        """Download a file (at an optional revision) into a writable stream."""
        with self._api_errors():
            md, response = self._dbx.files_download(_sdk_path(source), rev=revision)
        entry = Entry.from_metadata(md)
        self._write_response(response, fileobj, entry.byte_size, progress_callback)
        return entry

    def download_resumable(
        self,
        source: str,
        fileobj: BinaryIO,
        offset: int,
        revision: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry:
        """Download the bytes of a revision from ``offset`` onwards.

        The request is pinned to ``revision`` so the appended bytes belong
        to the same file version as the ones already on disk.

        Args:
            source: Remote path (used for messages)
            fileobj: Stream positioned at ``offset``
            offset: Number of bytes already downloaded
            revision: Revision being resumed
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            Entry of the downloaded revision
        """
        with self._api_errors():
            result = self._dbx.files_get_temporary_link(f"rev:{revision}")
        entry = Entry.from_metadata(result.metadata)
        logger.debug(f"resuming {source!r} rev {revision} at byte {offset}")

        try:
            with httpx.stream(
                "GET",
                result.link,
                headers={"Range": f"bytes={offset}-"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            ) as response:
                response.raise_for_status()
                if response.status_code != 206:
                    raise DboxDownloadError("Server refused to resume the download")

                received = offset
                for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        fileobj.write(chunk)
                        received += len(chunk)
                        if progress_callback:
                            progress_callback(received, entry.byte_size)
        except httpx.HTTPStatusError as e:
            raise DboxDownloadError(f"Download failed: {e}") from e
        except httpx.RequestError as e:
            raise DboxNetworkError(f"Network error during download: {e}") from e

        return entry

    def get_thumbnail(
        self, path: str, fileobj: BinaryIO, fmt: str = "png", size: str = "s"
    ) -> Entry:
        """Download a thumbnail of an image file into a writable stream."""
        with self._api_errors():
            md, response = self._dbx.files_get_thumbnail(
                _sdk_path(path),
                format=getattr(files.ThumbnailFormat, fmt),
                size=getattr(files.ThumbnailSize, THUMBNAIL_SIZES[size]),
            )
        self._write_response(response, fileobj, 0, None)
        return Entry.from_metadata(md)

    # =========================
    # File Operations
    # =========================

    def copy(self, from_path: str, to_path: str) -> Entry:
        with self._api_errors():
            result = self._dbx.files_copy_v2(_sdk_path(from_path), _sdk_path(to_path))
        return Entry.from_metadata(result.metadata)

    def copy_from_ref(self, ref: str, to_path: str) -> Entry:
        """Save a copy reference (possibly from another account) to a path."""
        with self._api_errors():
            result = self._dbx.files_copy_reference_save(ref, _sdk_path(to_path))
        return Entry.from_metadata(result.metadata)

    def copy_ref(self, path: str) -> CopyRef:
        with self._api_errors():
            result = self._dbx.files_copy_reference_get(_sdk_path(path))
        return CopyRef(ref=result.copy_reference, expires=result.expires)

    def move(self, from_path: str, to_path: str) -> Entry:
        with self._api_errors():
            result = self._dbx.files_move_v2(_sdk_path(from_path), _sdk_path(to_path))
        return Entry.from_metadata(result.metadata)

    def delete(self, path: str) -> Entry:
        """Delete a file or directory (directories recursively)."""
        with self._api_errors():
            result = self._dbx.files_delete_v2(_sdk_path(path))
        return Entry.from_metadata(result.metadata)

    def create_folder(self, path: str) -> Entry:
        with self._api_errors():
            result = self._dbx.files_create_folder_v2(_sdk_path(path))
        return Entry.from_metadata(result.metadata)

    def search(
        self, path: str, query: str, limit: int = 0, include_deleted: bool = False
    ) -> list[Entry]:
        """Search file and folder names below a path.

        Args:
            path: Directory to search in
            query: Search words
            limit: Maximum number of results (0 for the server default)
            include_deleted: Also search deleted files

        Returns:
            Matching entries, active ones first
        """
        statuses = [files.FileStatus.active]
        if include_deleted:
            statuses.append(files.FileStatus.deleted)
        max_results = limit or DEFAULT_SEARCH_LIMIT

        entries: list[Entry] = []
        with self._api_errors():
            for status in statuses:
                options = files.SearchOptions(
                    path=_sdk_path(path) or None,
                    max_results=max_results,
                    file_status=status,
                )
                result = self._dbx.files_search_v2(query, options=options)
                matches = list(result.matches)
                while result.has_more and len(matches) < max_results:
                    result = self._dbx.files_search_continue_v2(result.cursor)
                    matches.extend(result.matches)

                for match in matches:
                    entry = Entry.from_metadata(match.metadata.get_metadata())
                    if status == files.FileStatus.deleted:
                        entry = dataclasses.replace(entry, is_deleted=True)
                    entries.append(entry)

        return entries[:limit] if limit else entries

    def list_revisions(self, path: str, limit: int) -> list[Entry]:
        with self._api_errors():
            result = self._dbx.files_list_revisions(_sdk_path(path), limit=limit)
        return [Entry.from_metadata(md) for md in result.entries]

    def restore(self, path: str, revision: str) -> Entry:
        with self._api_errors():
            md = self._dbx.files_restore(_sdk_path(path), revision)
        return Entry.from_metadata(md)

    # =========================
    # Sharing
    # =========================

    def get_share_link(self, path: str, short_url: bool = True) -> Link:
        """Create a shared link to a file or folder."""
        with self._api_errors():
            result = self._dbx.sharing_create_shared_link(
                _sdk_path(path), short_url=short_url
            )
        return Link(url=result.url, expires=result.expires)

    def get_media_link(self, path: str) -> Link:
        """Get a direct (streamable) link to a file."""
        with self._api_errors():
            result = self._dbx.files_get_temporary_link(_sdk_path(path))
        expires = datetime.now(timezone.utc) + TEMPORARY_LINK_LIFETIME
        return Link(url=result.link, expires=expires)

    # =========================
    # Change tracking
    # =========================

    def get_delta(self, cursor: str = "", prefix: str = "") -> DeltaPage:
        """Get changes since a cursor (everything below prefix if no cursor)."""
        with self._api_errors():
            if cursor:
                result = self._dbx.files_list_folder_continue(cursor)
            else:
                result = self._dbx.files_list_folder(
                    _sdk_path(prefix), recursive=True, include_deleted=True
                )

        entries = []
        for md in result.entries:
            path = md.path_display or md.path_lower
            if isinstance(md, files.DeletedMetadata):
                entries.append(DeltaEntry(path=path))
            else:
                entries.append(DeltaEntry(path=path, entry=Entry.from_metadata(md)))
        return DeltaPage(
            entries=tuple(entries),
            cursor=result.cursor,
            has_more=result.has_more,
            reset=not cursor,
        )

    def get_delta_longpoll(self, cursor: str, timeout: int) -> DeltaPoll:
        """Wait up to ``timeout`` seconds for changes on a cursor."""
        with self._api_errors():
            result = self._dbx.files_list_folder_longpoll(cursor, timeout=timeout)
        return DeltaPoll(changes=result.changes, backoff=result.backoff)
