"""Tests for token storage."""

import json
import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from deskauth.oauth.store import (
    EncryptedFileStore,
    FileStore,
    TokenDecryptionError,
    TokenStoreError,
    default_file_store,
    default_token_path,
)
from deskauth.oauth.tokens import Token

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")


@pytest.fixture
def memory_keyring():
    """Patch keyring with an in-memory password store."""
    passwords: dict[tuple[str, str], str] = {}

    with patch("deskauth.oauth.store.keyring") as mock_keyring:
        mock_keyring.get_password.side_effect = lambda service, user: passwords.get((service, user))
        mock_keyring.set_password.side_effect = lambda service, user, pw: passwords.__setitem__(
            (service, user), pw
        )
        yield passwords


@pytest.fixture
def broken_keyring():
    """Patch keyring so every call fails."""
    with patch("deskauth.oauth.store.keyring") as mock_keyring:
        mock_keyring.get_password.side_effect = RuntimeError("No keyring backend")
        yield mock_keyring


class TestFileStore:
    """Tests for FileStore."""

    def test_read_missing_file(self, tmp_path: Path):
        """Test a missing file means no cached token."""
        assert FileStore(tmp_path / "oauth.json").read() is None

    def test_write_then_read(self, tmp_path: Path, valid_token: Token):
        """Test a written token reads back equal."""
        store = FileStore(tmp_path / "oauth.json")
        store.write(valid_token)

        assert store.read() == valid_token

    def test_file_is_json(self, tmp_path: Path, valid_token: Token):
        """Test the on-disk format is the token's JSON."""
        path = tmp_path / "oauth.json"
        FileStore(path).write(valid_token)

        data = json.loads(path.read_text())
        assert data["access_token"] == "cached_access_token"
        assert data["refresh_token"] == "cached_refresh_token"
        assert "expiry" in data

    def test_overwrite(self, tmp_path: Path, valid_token: Token):
        """Test a second write replaces the first."""
        store = FileStore(tmp_path / "oauth.json")
        store.write(valid_token)
        store.write(Token(access_token="second"))

        assert store.read() == Token(access_token="second")

    @posix_only
    def test_creates_private_directories_and_file(self, tmp_path: Path, valid_token: Token):
        """Test new directories are 0700 and the file is 0600."""
        path = tmp_path / "a" / "b" / "oauth.json"
        FileStore(path).write(valid_token)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert stat.S_IMODE((tmp_path / "a").stat().st_mode) == 0o700
        assert stat.S_IMODE((tmp_path / "a" / "b").stat().st_mode) == 0o700

    @posix_only
    def test_existing_file_permissions_tightened(self, tmp_path: Path, valid_token: Token):
        """Test an existing world-readable file is reset to 0600."""
        path = tmp_path / "oauth.json"
        path.write_text("{}")
        path.chmod(0o644)

        FileStore(path).write(valid_token)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_corrupted_file(self, tmp_path: Path):
        """Test invalid JSON is an error, not an empty cache."""
        path = tmp_path / "oauth.json"
        path.write_text("not json {")

        with pytest.raises(TokenStoreError, match="corrupted"):
            FileStore(path).read()

    def test_non_object_json(self, tmp_path: Path):
        """Test JSON that is not an object is rejected."""
        path = tmp_path / "oauth.json"
        path.write_text("[1, 2]")

        with pytest.raises(TokenStoreError):
            FileStore(path).read()

    def test_missing_access_token(self, tmp_path: Path):
        """Test a token object without access_token is rejected."""
        path = tmp_path / "oauth.json"
        path.write_text('{"token_type": "Bearer"}')

        with pytest.raises(TokenStoreError, match="Invalid token data"):
            FileStore(path).read()

    def test_write_failure(self, tmp_path: Path, valid_token: Token):
        """Test an unwritable location raises TokenStoreError."""
        blocker = tmp_path / "file"
        blocker.write_text("")

        with pytest.raises(TokenStoreError):
            FileStore(blocker / "oauth.json").write(valid_token)

    def test_delete(self, tmp_path: Path, valid_token: Token):
        """Test delete removes the file once."""
        store = FileStore(tmp_path / "oauth.json")
        store.write(valid_token)

        assert store.delete() is True
        assert store.read() is None
        assert store.delete() is False


class TestEncryptedFileStore:
    """Tests for EncryptedFileStore."""

    def test_write_then_read(self, tmp_path: Path, valid_token: Token, memory_keyring):
        """Test encrypted round trip with a keyring-held key."""
        path = tmp_path / "oauth.json"
        store = EncryptedFileStore(path)
        store.write(valid_token)

        assert store.is_using_keyring()
        assert b"cached_access_token" not in path.read_bytes()
        assert EncryptedFileStore(path).read() == valid_token

    def test_key_generated_once(self, tmp_path: Path, memory_keyring):
        """Test the key is created on first use and then reused."""
        EncryptedFileStore(tmp_path / "oauth.json")
        assert len(memory_keyring) == 1
        key = next(iter(memory_keyring.values()))

        EncryptedFileStore(tmp_path / "oauth.json")
        assert list(memory_keyring.values()) == [key]

    def test_keyring_fallback(self, tmp_path: Path, valid_token: Token, broken_keyring):
        """Test a machine-derived key is used when keyring fails."""
        store = EncryptedFileStore(tmp_path / "oauth.json")
        store.write(valid_token)

        assert not store.is_using_keyring()
        assert store.read() == valid_token

    def test_wrong_key(self, tmp_path: Path, valid_token: Token, memory_keyring):
        """Test data encrypted under another key cannot be read."""
        path = tmp_path / "oauth.json"
        EncryptedFileStore(path).write(valid_token)

        memory_keyring.clear()
        memory_keyring[("deskauth", "token-encryption-key")] = Fernet.generate_key().decode()

        with pytest.raises(TokenDecryptionError):
            EncryptedFileStore(path).read()

    def test_plaintext_file_rejected(self, tmp_path: Path, memory_keyring):
        """Test an unencrypted file is reported as undecryptable."""
        path = tmp_path / "oauth.json"
        path.write_text('{"access_token": "plain"}')

        with pytest.raises(TokenStoreError):
            EncryptedFileStore(path).read()


class TestDefaultTokenPath:
    """Tests for default_token_path."""

    def test_state_directory(self, monkeypatch, tmp_path: Path):
        """Test systemd's STATE_DIRECTORY wins."""
        monkeypatch.setenv("STATE_DIRECTORY", f"{tmp_path}/state:/other")
        assert default_token_path("myapp") == tmp_path / "state" / "oauth.json"

    def test_user_config_dir(self, monkeypatch, tmp_path: Path):
        """Test the per-user config directory is used next."""
        monkeypatch.delenv("STATE_DIRECTORY", raising=False)
        with patch("deskauth.oauth.store.get_user_config_dir", return_value=tmp_path):
            assert default_token_path("myapp") == tmp_path / "myapp" / "oauth.json"

    def test_working_directory_fallback(self, monkeypatch):
        """Test app.json in the working directory as last resort."""
        monkeypatch.delenv("STATE_DIRECTORY", raising=False)
        with patch("deskauth.oauth.store.get_user_config_dir", return_value=None):
            assert default_token_path("myapp") == Path("myapp.json")

    def test_default_file_store(self, monkeypatch, tmp_path: Path, memory_keyring):
        """Test default_file_store picks the store type."""
        monkeypatch.setenv("STATE_DIRECTORY", str(tmp_path))

        plain = default_file_store("myapp")
        encrypted = default_file_store("myapp", encrypted=True)

        assert type(plain) is FileStore
        assert isinstance(encrypted, EncryptedFileStore)
        assert plain.path == tmp_path / "oauth.json"
