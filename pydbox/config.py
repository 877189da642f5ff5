"""Configuration and credential storage for pydbox.

The credentials file is a small JSON document stored in the user's home
directory (``~/.dbox`` by default)::

    {
     "key": "<base64 encoded symmetric key or null>",
     "token": "<OAuth2 access token>"
    }

It is readable and writable by its owner only. The symmetric key encrypts
files uploaded with ``-aes``; once generated it must never change, or the
files encrypted with it can no longer be decrypted.
"""

import base64
import binascii
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import DboxConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".dbox"
CONFIG_FILE_MODE = 0o600


@dataclass
class Credentials:
    """In-memory copy of the persisted credentials."""

    token: str = ""
    """OAuth2 access token"""

    key: bytes = b""
    """Symmetric encryption key, empty until the first encrypted transfer"""

    dirty: bool = False
    """True when the record changed since it was loaded (never persisted)"""

    def mark_dirty(self) -> None:
        self.dirty = True

    def to_dict(self) -> dict:
        """Convert credentials to dictionary for JSON serialization."""
        return {
            "key": base64.b64encode(self.key).decode("ascii") if self.key else None,
            "token": self.token,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        """Create Credentials from dictionary.

        Raises:
            ValueError: If the key is not valid base64
        """
        key = data.get("key") or ""
        return cls(
            token=data.get("token") or "",
            key=base64.b64decode(key, validate=True) if key else b"",
        )


class CredentialStore:
    """Reads and writes the credentials file."""

    def __init__(self, path: Optional[Path] = None):
        """Initialize the store.

        Args:
            path: Credentials file. Defaults to ``~/.dbox``.
        """
        self.path = Path(path) if path is not None else config.get_config_path()

    def load(self) -> Optional[Credentials]:
        """Load credentials from disk.

        Returns:
            Credentials if the file exists and parses, None otherwise
        """
        if not self.path.exists():
            logger.debug(f"No credentials file at {self.path}")
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("credentials file does not contain an object")
            credentials = Credentials.from_dict(data)
        except (OSError, ValueError, binascii.Error) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None

        logger.debug(f"Loaded credentials from {self.path}")
        return credentials

    def dumps(self, credentials: Credentials) -> str:
        """Serialize credentials exactly as they are written to disk."""
        return json.dumps(credentials.to_dict(), indent=1, sort_keys=True) + "\n"

    def save(self, credentials: Credentials) -> None:
        """Write credentials to disk, replacing the previous file atomically.

        The record is written to a temporary file in the same directory,
        restricted to the owner, then renamed over the target.

        Raises:
            DboxConfigError: If the file cannot be written
        """
        payload = self.dumps(credentials)
        directory = self.path.parent
        tmp_name = None

        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self.path.name}.", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                os.chmod(tmp_name, CONFIG_FILE_MODE)
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise DboxConfigError(
                f"Failed to write credentials to {self.path}: {e}"
            ) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        credentials.dirty = False
        logger.debug(f"Saved credentials to {self.path}")


class Config:
    """Application settings read from the environment."""

    @property
    def app_key(self) -> Optional[str]:
        """Dropbox application key (``DBOX_APP_KEY``)."""
        return os.environ.get("DBOX_APP_KEY") or None

    @property
    def app_secret(self) -> Optional[str]:
        """Dropbox application secret (``DBOX_APP_SECRET``)."""
        return os.environ.get("DBOX_APP_SECRET") or None

    def get_config_path(self) -> Path:
        """Get the credentials file path.

        ``DBOX_CONFIG`` overrides the default ``~/.dbox``.
        """
        override = os.environ.get("DBOX_CONFIG")
        if override:
            return Path(override).expanduser()
        return Path.home() / CONFIG_FILENAME


config = Config()
