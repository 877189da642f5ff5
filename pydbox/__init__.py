"""pydbox - command-line client for Dropbox."""

from .config import CredentialStore, Credentials
from .exceptions import (
    DboxAPIError,
    DboxAuthenticationError,
    DboxConfigError,
    DboxCryptoError,
    DboxDownloadError,
    DboxError,
    DboxNetworkError,
    DboxNotFoundError,
    DboxUploadError,
)
from .models import Entry
from .storage import DropboxStorageClient, StorageClient
from .transfers import TransferMode, TransferOrchestrator, TransferRequest

__all__ = [
    "CredentialStore",
    "Credentials",
    "DboxAPIError",
    "DboxAuthenticationError",
    "DboxConfigError",
    "DboxCryptoError",
    "DboxDownloadError",
    "DboxError",
    "DboxNetworkError",
    "DboxNotFoundError",
    "DboxUploadError",
    "DropboxStorageClient",
    "Entry",
    "StorageClient",
    "TransferMode",
    "TransferOrchestrator",
    "TransferRequest",
]
