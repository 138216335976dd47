"""Token storage for cached OAuth tokens.

A Storage reads and writes a single Token. Two file-backed stores are
provided:
- FileStore: the token as JSON, readable only by the owner (0600)
- EncryptedFileStore: the same JSON encrypted with Fernet, with the key
  kept in the OS keyring (Keychain, libsecret, DPAPI)

Reading a file that does not exist yields None. Any other failure
(permissions, corruption, undecryptable data) raises TokenStoreError so
that a broken cache is never mistaken for an empty one.
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Protocol

import keyring
from cryptography.fernet import Fernet, InvalidToken

from ..platform import get_state_dir, get_user_config_dir
from .tokens import Token

logger = logging.getLogger(__name__)

# File locking support
if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire an advisory lock next to filepath (fcntl)."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(mode=0o600, exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a lock next to filepath (msvcrt, always exclusive)."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


KEYRING_SERVICE = "deskauth"
KEYRING_USERNAME = "token-encryption-key"

TOKEN_FILENAME = "oauth.json"

FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0600
DIR_MODE = stat.S_IRWXU  # 0700


class TokenStoreError(Exception):
    """Error in token storage operations."""

    pass


class TokenDecryptionError(TokenStoreError):
    """Failed to decrypt the token file.

    The encryption key has changed (keyring cleared, different machine)
    or the file was tampered with. Delete the file and re-authenticate.
    """

    pass


class Storage(Protocol):
    """Stores and retrieves a cached OAuth token."""

    def read(self) -> Token | None:
        ...

    def write(self, token: Token) -> None:
        ...


def _make_private_dirs(directory: Path) -> None:
    """Create directory and any missing parents with mode 0700."""
    if directory.exists():
        return
    _make_private_dirs(directory.parent)
    directory.mkdir(mode=DIR_MODE, exist_ok=True)


class FileStore:
    """Stores a token as JSON in a single file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"

    def _encode(self, text: str) -> bytes:
        return text.encode("utf-8")

    def _decode(self, raw: bytes) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TokenStoreError(f"Token file {self.path} is not valid UTF-8") from e

    def read(self) -> Token | None:
        """Read the cached token.

        Returns:
            The stored Token, or None if nothing has been stored yet

        Raises:
            TokenStoreError: If the file exists but cannot be read or parsed
        """
        if not self.path.exists():
            return None

        try:
            with _file_lock(self.path, exclusive=False):
                raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise TokenStoreError(f"Cannot read token file {self.path}: {e}") from e

        text = self._decode(raw)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TokenStoreError(
                f"Token file {self.path} is corrupted. Delete it and re-authenticate."
            ) from e

        if not isinstance(data, dict):
            raise TokenStoreError(f"Token file {self.path} does not contain a token object")

        try:
            return Token.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise TokenStoreError(f"Invalid token data in {self.path}: {e}") from e

    def write(self, token: Token) -> None:
        """Persist token, creating missing parent directories (mode 0700).

        Raises:
            TokenStoreError: If the file cannot be written
        """
        payload = self._encode(json.dumps(token.to_dict(), indent=2))

        try:
            _make_private_dirs(self.path.parent)
        except OSError as e:
            raise TokenStoreError(f"Creating parent dirs for {self.path}: {e}") from e

        try:
            with _file_lock(self.path, exclusive=True):
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
        except OSError as e:
            raise TokenStoreError(f"Saving OAuth token to {self.path}: {e}") from e

        # os.open only applies the mode to new files
        try:
            self.path.chmod(FILE_MODE)
        except OSError as e:
            logger.warning(f"Could not set file permissions on {self.path}: {e}")

        logger.debug(f"Stored token in {self.path}")

    def delete(self) -> bool:
        """Delete the cached token.

        Returns:
            True if a token file was removed, False if none existed
        """
        if not self.path.exists():
            return False

        try:
            with _file_lock(self.path, exclusive=True):
                self.path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStoreError(f"Deleting token file {self.path}: {e}") from e

        logger.debug(f"Deleted token file {self.path}")
        return True


def _derive_fallback_key() -> bytes:
    """Derive a fallback encryption key from machine-specific data.

    Used when keyring is not available. Less secure than keyring but
    still provides encryption at rest.

    Returns:
        32-byte key suitable for Fernet
    """
    components = []

    # Machine ID (Linux)
    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "deskauth")))

    key_bytes = hashlib.sha256(":".join(components).encode()).digest()

    # Fernet requires base64-encoded 32-byte key
    return base64.urlsafe_b64encode(key_bytes)


class EncryptedFileStore(FileStore):
    """Stores a token as Fernet-encrypted JSON in a single file."""

    def __init__(self, path: Path | str, keyring_service: str = KEYRING_SERVICE):
        super().__init__(path)
        self.keyring_service = keyring_service
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_encryption()

    def _init_encryption(self) -> None:
        """Initialize encryption using keyring or fallback."""
        try:
            key = keyring.get_password(self.keyring_service, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(self.keyring_service, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True
            logger.debug("Using keyring for encryption key storage")

        except Exception as e:
            logger.warning(
                f"Keyring not available: {type(e).__name__}: {e}. "
                f"Using fallback encryption (machine-derived key)."
            )
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def is_using_keyring(self) -> bool:
        """Check if the OS keyring holds the encryption key."""
        return self._using_keyring

    def _encode(self, text: str) -> bytes:
        if self._cipher is None:
            raise TokenStoreError("Encryption not initialized")
        return self._cipher.encrypt(text.encode("utf-8"))

    def _decode(self, raw: bytes) -> str:
        if self._cipher is None:
            raise TokenStoreError("Encryption not initialized")
        try:
            return self._cipher.decrypt(raw.strip()).decode("utf-8")
        except InvalidToken as e:
            raise TokenDecryptionError(
                f"Cannot decrypt {self.path}. The encryption key may have changed. "
                f"Delete the file and re-authenticate."
            ) from e


def default_token_path(app_name: str) -> Path:
    """Choose a long-term location for the token file.

    Prefers systemd's $STATE_DIRECTORY. Otherwise a subdirectory called
    app_name within the user configuration directory is used. If that is
    also unavailable, the token lives in app_name.json in the working
    directory.
    """
    state_dir = get_state_dir()
    if state_dir is not None:
        return state_dir / TOKEN_FILENAME

    config_dir = get_user_config_dir()
    if config_dir is not None:
        return config_dir / app_name / TOKEN_FILENAME

    return Path(f"{app_name}.json")


def default_file_store(app_name: str, encrypted: bool = False) -> FileStore:
    """Create a file store at the default location for app_name."""
    path = default_token_path(app_name)
    if encrypted:
        return EncryptedFileStore(path)
    return FileStore(path)
