"""Client-side encryption of transferred files.

Encrypted files are stored remotely as::

    nonce (12 bytes) || AES-256-GCM ciphertext || tag (16 bytes)

Encryption wraps the local file in a reader so it can be streamed to any
upload strategy; decryption wraps the local destination in a writer so it
can receive any download stream.
"""

import logging
import secrets
from typing import BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import DboxCryptoError
from .utils import DEFAULT_KEY_LENGTH

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
READ_BLOCK_SIZE = 64 * 1024


def generate_key(length: int = DEFAULT_KEY_LENGTH) -> bytes:
    """Generate a random symmetric key from the OS CSPRNG."""
    return secrets.token_bytes(length)


def encrypted_size(plaintext_size: int) -> int:
    """Size of the encrypted stream for a plaintext of the given size."""
    return NONCE_SIZE + plaintext_size + TAG_SIZE


def _cipher(key: bytes, nonce: bytes) -> Cipher:
    try:
        return Cipher(algorithms.AES(key), modes.GCM(nonce))
    except ValueError as e:
        raise DboxCryptoError(f"Invalid encryption key: {e}") from e


class EncryptingReader:
    """File-like reader producing the encrypted form of a plaintext stream.

    The plaintext size frames the stream: the reader reports the exact
    encrypted length up front and fails if the source does not deliver
    exactly that many bytes.
    """

    def __init__(self, key: bytes, source: BinaryIO, plaintext_size: int):
        nonce = secrets.token_bytes(NONCE_SIZE)
        self._encryptor = _cipher(key, nonce).encryptor()
        self._source = source
        self._plaintext_size = plaintext_size
        self._consumed = 0
        self._buffer = bytearray(nonce)
        self._finished = False
        self.size = encrypted_size(plaintext_size)

    def __len__(self) -> int:
        return self.size

    def _fill(self) -> None:
        chunk = self._source.read(READ_BLOCK_SIZE)
        if chunk:
            self._consumed += len(chunk)
            if self._consumed > self._plaintext_size:
                raise DboxCryptoError("Source grew while it was being encrypted")
            self._buffer += self._encryptor.update(chunk)
            return

        if self._consumed != self._plaintext_size:
            raise DboxCryptoError(
                f"Source shrank while it was being encrypted "
                f"({self._consumed} of {self._plaintext_size} bytes)"
            )
        self._buffer += self._encryptor.finalize()
        self._buffer += self._encryptor.tag
        self._finished = True

    def read(self, size: int = -1) -> bytes:
        while not self._finished and (size < 0 or len(self._buffer) < size):
            self._fill()

        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data


class DecryptingWriter:
    """File-like writer decrypting an encrypted stream into a destination.

    The tag is only known once the stream ends, so the last bytes written
    are held back until :meth:`finalize` verifies them.
    """

    def __init__(self, key: bytes, destination: BinaryIO):
        self._key = key
        self._destination = destination
        self._decryptor = None
        self._pending = bytearray()
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        self._pending += data

        if self._decryptor is None:
            if len(self._pending) < NONCE_SIZE:
                return len(data)
            nonce = bytes(self._pending[:NONCE_SIZE])
            del self._pending[:NONCE_SIZE]
            self._decryptor = _cipher(self._key, nonce).decryptor()

        ready = len(self._pending) - TAG_SIZE
        if ready > 0:
            plaintext = self._decryptor.update(bytes(self._pending[:ready]))
            del self._pending[:ready]
            self._destination.write(plaintext)
            self.bytes_written += len(plaintext)
        return len(data)

    def finalize(self) -> None:
        """Verify the authentication tag.

        Raises:
            DboxCryptoError: If the stream is truncated, or the key does not
                match the one used for encryption
        """
        if self._decryptor is None or len(self._pending) != TAG_SIZE:
            raise DboxCryptoError("Encrypted stream is truncated")
        try:
            self._decryptor.finalize_with_tag(bytes(self._pending))
        except InvalidTag as e:
            raise DboxCryptoError(
                "Decryption failed: wrong key or corrupted file"
            ) from e
        logger.debug(f"Decrypted {self.bytes_written} bytes")
