"""Transfer orchestration.

A :class:`TransferRequest` describes one upload or download. The
:class:`TransferOrchestrator` validates it, picks the strategy (plain or
encrypted, whole or chunked, fresh or resumed) and drives the storage
client. Local files are opened and closed here, on every exit path.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .config import Credentials
from .crypto import DecryptingWriter, EncryptingReader, generate_key
from .exceptions import DboxConfigError, DboxDownloadError, DboxUploadError
from .models import Entry
from .storage import ProgressCallback, StorageClient
from .utils import DEFAULT_KEY_LENGTH, MAX_SINGLE_UPLOAD_SIZE, format_size

logger = logging.getLogger(__name__)


class TransferMode(Enum):
    """Whether file contents are encrypted client side."""

    PLAIN = "plain"
    ENCRYPTED = "encrypted"


@dataclass
class TransferRequest:
    """One upload or download, built from command-line flags."""

    source: str
    destination: str
    mode: TransferMode = TransferMode.PLAIN
    chunk_size: Optional[int] = None
    """Upload chunk size, None for a single-request upload"""
    resume: bool = False
    overwrite: bool = True
    revision: Optional[str] = None

    @property
    def encrypted(self) -> bool:
        return self.mode is TransferMode.ENCRYPTED

    def validate_upload(self) -> None:
        """Reject flag combinations that make no sense for an upload.

        Raises:
            DboxConfigError: If the request is invalid
        """
        if self.resume:
            raise DboxConfigError("resuming is only supported for downloads")
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise DboxConfigError(f"invalid chunk size: {self.chunk_size}")

    def validate_download(self) -> None:
        """Reject flag combinations that make no sense for a download.

        Raises:
            DboxConfigError: If the request is invalid
        """
        if self.encrypted and self.resume:
            raise DboxConfigError("-aes and -c are mutually exclusive")
        if self.chunk_size is not None:
            raise DboxConfigError("chunked transfers are only supported for uploads")


class TransferOrchestrator:
    """Runs transfer requests against a storage client."""

    def __init__(self, client: StorageClient, credentials: Credentials):
        """Initialize the orchestrator.

        Args:
            client: Storage client performing the remote calls
            credentials: Run credentials; the encryption key is created in
                place when first needed
        """
        self.client = client
        self.credentials = credentials

    def ensure_key(self) -> bytes:
        """Return the encryption key, generating and recording it if absent.

        The key is generated at most once: later calls reuse it, and it
        stays marked for saving even when the transfer that needed it fails.
        """
        if not self.credentials.key:
            logger.debug("Generating a new encryption key")
            self.credentials.key = generate_key(DEFAULT_KEY_LENGTH)
            self.credentials.mark_dirty()
        return self.credentials.key

    def upload(
        self,
        request: TransferRequest,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry:
        """Upload a local file.

        Args:
            request: Transfer request (source is local, destination remote)
            progress_callback: Optional callback function(bytes_sent, total_bytes)

        Returns:
            Entry of the uploaded file

        Raises:
            DboxConfigError: If the request is invalid
            DboxUploadError: If the local file cannot be read, or is too large
                for a single-request upload
            DboxAPIError: If the remote operation fails
        """
        request.validate_upload()
        key = self.ensure_key() if request.encrypted else None

        try:
            fileobj = open(request.source, "rb")
        except OSError as e:
            raise DboxUploadError(f"Cannot read local file: {e.strerror or e}") from e

        with fileobj:
            size = os.fstat(fileobj.fileno()).st_size
            reader = fileobj
            if key is not None:
                reader = EncryptingReader(key, fileobj, size)
                size = reader.size

            logger.debug(
                f"upload {request.source!r} -> {request.destination!r} "
                f"mode={request.mode.value} chunk_size={request.chunk_size}"
            )
            if request.chunk_size is None:
                if size > MAX_SINGLE_UPLOAD_SIZE:
                    raise DboxUploadError(
                        f"File too large for a single upload "
                        f"({format_size(size)} > {format_size(MAX_SINGLE_UPLOAD_SIZE)}), "
                        f"use cput"
                    )
                return self.client.upload_whole(
                    reader,
                    request.destination,
                    overwrite=request.overwrite,
                    revision=request.revision,
                    progress_callback=progress_callback,
                )
            return self.client.upload_chunked(
                reader,
                request.chunk_size,
                request.destination,
                overwrite=request.overwrite,
                revision=request.revision,
                progress_callback=progress_callback,
                total=size,
            )

    def download(
        self,
        request: TransferRequest,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Entry:
        """Download a remote file.

        Args:
            request: Transfer request (source is remote, destination local)
            progress_callback: Optional callback function(bytes_received, total_bytes)

        Returns:
            Entry of the downloaded file

        Raises:
            DboxConfigError: If the request is invalid (before any remote call)
            DboxDownloadError: If the local file cannot be written or resumed
            DboxCryptoError: If decryption fails
            DboxAPIError: If the remote operation fails
        """
        request.validate_download()

        if request.encrypted:
            return self._download_encrypted(request, progress_callback)
        if request.resume:
            return self._download_resumed(request, progress_callback)

        with self._open_destination(request.destination, "wb") as fileobj:
            return self.client.download_whole(
                request.source,
                fileobj,
                revision=request.revision,
                progress_callback=progress_callback,
            )

    def _open_destination(self, destination: str, mode: str):
        try:
            return open(destination, mode)
        except OSError as e:
            raise DboxDownloadError(
                f"Cannot write local file: {e.strerror or e}"
            ) from e

    def _download_encrypted(
        self,
        request: TransferRequest,
        progress_callback: Optional[ProgressCallback],
    ) -> Entry:
        # A freshly generated key cannot decrypt files encrypted with another
        key = self.ensure_key()
        fileobj = self._open_destination(request.destination, "wb")
        completed = False
        try:
            with fileobj:
                writer = DecryptingWriter(key, fileobj)
                entry = self.client.download_whole(
                    request.source,
                    writer,
                    revision=request.revision,
                    progress_callback=progress_callback,
                )
                writer.finalize()
            completed = True
        finally:
            if not completed:
                self._discard(request.destination)
        return entry

    def _download_resumed(
        self,
        request: TransferRequest,
        progress_callback: Optional[ProgressCallback],
    ) -> Entry:
        remote = self.client.metadata(
            request.source, include_children=False, revision=request.revision
        )
        if remote.is_dir:
            raise DboxDownloadError("cannot download a directory")

        with self._open_destination(request.destination, "ab") as fileobj:
            offset = fileobj.tell()
            if offset > remote.byte_size:
                raise DboxDownloadError(
                    f"local file is larger than the remote file "
                    f"({offset} > {remote.byte_size} bytes), cannot resume"
                )
            if offset == remote.byte_size:
                logger.debug(f"{request.destination} is already complete")
                return remote

            logger.debug(f"resuming {request.source!r} at byte {offset}")
            return self.client.download_resumable(
                request.source,
                fileobj,
                offset,
                remote.revision,
                progress_callback=progress_callback,
            )

    def download_thumbnail(
        self, source: str, destination: str, fmt: str, size: str
    ) -> Entry:
        """Download the thumbnail of a remote image to a local file."""
        with self._open_destination(destination, "wb") as fileobj:
            return self.client.get_thumbnail(source, fileobj, fmt=fmt, size=size)

    @staticmethod
    def _discard(path: str) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")
