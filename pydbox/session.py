"""State shared by all commands of one invocation."""

import logging
from typing import Optional

from .auth import run_oauth_flow
from .config import CredentialStore, Credentials, config
from .exceptions import DboxError
from .output import OutputFormatter
from .storage import DropboxStorageClient, StorageClient

logger = logging.getLogger(__name__)


class Session:
    """Credentials and storage client for the running command.

    The client is created on first use, so commands that fail argument
    validation, and ``help``, never trigger authentication. Credentials are
    written back at most once, in :meth:`close`, and only if they changed.
    """

    def __init__(
        self,
        store: CredentialStore,
        credentials: Credentials,
        out: OutputFormatter,
        show_progress: bool = True,
    ):
        self.store = store
        self.credentials = credentials
        self.out = out
        self.show_progress = show_progress
        self._client: Optional[StorageClient] = None

    @classmethod
    def open(cls, store: CredentialStore, out: OutputFormatter, **kwargs) -> "Session":
        """Create a session from the persisted credentials (if any)."""
        credentials = store.load() or Credentials()
        return cls(store, credentials, out, **kwargs)

    @property
    def client(self) -> StorageClient:
        """Authenticated storage client.

        Raises:
            DboxAuthenticationError: If interactive authentication fails
            DboxConfigError: If the application is not configured
        """
        if self._client is None:
            if not self.credentials.token:
                self.credentials.token = run_oauth_flow(config.app_key, config.app_secret)
                self.credentials.mark_dirty()
            self._client = DropboxStorageClient(self.credentials.token)
        return self._client

    def close(self) -> None:
        """Release the client and persist credentials if they changed."""
        if self._client is not None:
            self._client.close()
            self._client = None

        if self.credentials.dirty:
            try:
                self.store.save(self.credentials)
            except DboxError as e:
                self.out.error(str(e))
