"""Exceptions raised by the Dropbox command-line client."""


class DboxError(Exception):
    """Base exception for all pydbox errors."""


class DboxConfigError(DboxError):
    """Raised for configuration problems.

    Covers an unwritable credentials file, missing application keys and
    invalid flag combinations on a transfer request.
    """


class DboxCryptoError(DboxError):
    """Raised when encrypting or decrypting a stream fails."""


class DboxAPIError(DboxError):
    """Raised when a remote storage operation fails."""


class DboxAuthenticationError(DboxAPIError):
    """Raised when authentication fails or the token is rejected."""


class DboxNotFoundError(DboxAPIError):
    """Raised when a remote path does not exist."""


class DboxNetworkError(DboxAPIError):
    """Raised on transport failures (connection, timeout)."""


class DboxUploadError(DboxAPIError):
    """Raised when an upload cannot be completed."""


class DboxDownloadError(DboxAPIError):
    """Raised when a download cannot be completed."""
