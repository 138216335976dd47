"""Tests for DesktopAuth, the cache-first entry point."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from deskauth.oauth.exchange import HttpTokenExchanger
from deskauth.oauth.flow import InteractiveAuthUnavailableError
from deskauth.oauth.manager import DesktopAuth, _format_timedelta, describe_token
from deskauth.oauth.source import TokenSource
from deskauth.oauth.store import FileStore, TokenStoreError
from deskauth.oauth.tokens import Token


def browser(http_get):
    """Presenter that follows the authorization URL like a consenting user."""
    presented = []

    async def present(url: str) -> None:
        presented.append(url)
        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        redirect = urlparse(query["redirect_uri"])
        await http_get(redirect.port, f"{redirect.path}?state={query['state']}&code=ABC123")

    present.presented = presented  # type: ignore
    return present


class TestTokenSource:
    """Tests for DesktopAuth.token_source()."""

    @pytest.mark.asyncio
    async def test_cached_token_skips_flow(self, tmp_path: Path, auth_config, valid_token, mock_exchanger) -> None:
        """Test a cached token is used without listening or presenting."""
        storage = FileStore(tmp_path / "oauth.json")
        storage.write(valid_token)
        present = MagicMock()

        auth = DesktopAuth(auth_config, storage=storage, present=present, exchanger=mock_exchanger)
        with patch("deskauth.oauth.flow.LocalhostCallbackServer") as server_cls:
            source = await auth.token_source()

        assert isinstance(source, TokenSource)
        assert source.current == valid_token
        server_cls.assert_not_called()
        present.assert_not_called()
        mock_exchanger.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cached_token_without_presenter(self, tmp_path: Path, auth_config, valid_token, mock_exchanger) -> None:
        """Test non-interactive use works when a token is cached."""
        storage = FileStore(tmp_path / "oauth.json")
        storage.write(valid_token)

        auth = DesktopAuth(auth_config, storage=storage, exchanger=mock_exchanger)
        source = await auth.token_source()

        assert (await source.token()).access_token == "cached_access_token"

    @pytest.mark.asyncio
    async def test_no_cache_no_presenter(self, tmp_path: Path, auth_config, mock_exchanger) -> None:
        """Test non-interactive use fails when nothing is cached."""
        auth = DesktopAuth(auth_config, storage=FileStore(tmp_path / "oauth.json"), exchanger=mock_exchanger)

        with pytest.raises(InteractiveAuthUnavailableError):
            await auth.token_source()

    @pytest.mark.asyncio
    async def test_no_storage_no_presenter(self, auth_config, mock_exchanger) -> None:
        """Test DesktopAuth with neither storage nor presenter cannot produce tokens."""
        with pytest.raises(InteractiveAuthUnavailableError):
            await DesktopAuth(auth_config, exchanger=mock_exchanger).token_source()

    @pytest.mark.asyncio
    async def test_interactive_flow_saves_token(self, tmp_path: Path, auth_config, mock_exchanger, http_get) -> None:
        """Test an empty cache runs the flow and stores the result."""
        storage = FileStore(tmp_path / "oauth.json")
        present = browser(http_get)

        auth = DesktopAuth(
            auth_config, storage=storage, present=present, exchanger=mock_exchanger, callback_timeout=5
        )
        source = await auth.token_source()

        assert source.current.access_token == "exchanged_access_token"
        assert len(present.presented) == 1
        assert storage.read().access_token == "exchanged_access_token"

    @pytest.mark.asyncio
    async def test_interactive_without_storage(self, auth_config, mock_exchanger, http_get) -> None:
        """Test the flow works with no storage configured."""
        auth = DesktopAuth(auth_config, present=browser(http_get), exchanger=mock_exchanger, callback_timeout=5)
        source = await auth.token_source()
        assert source.current.access_token == "exchanged_access_token"

    @pytest.mark.asyncio
    async def test_corrupt_cache_raises(self, tmp_path: Path, auth_config, mock_exchanger) -> None:
        """Test an unreadable cache is reported rather than silently replaced."""
        path = tmp_path / "oauth.json"
        path.write_text("garbage")
        present = MagicMock()

        auth = DesktopAuth(auth_config, storage=FileStore(path), present=present, exchanger=mock_exchanger)
        with pytest.raises(TokenStoreError):
            await auth.token_source()
        present.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_unrefreshable_cache_reauthenticates(
        self, tmp_path: Path, auth_config, mock_exchanger, http_get
    ) -> None:
        """Test a dead cached token leads to the interactive flow."""
        storage = FileStore(tmp_path / "oauth.json")
        storage.write(Token(access_token="dead", expires_at=datetime.now(timezone.utc) - timedelta(days=1)))

        auth = DesktopAuth(
            auth_config, storage=storage, present=browser(http_get), exchanger=mock_exchanger, callback_timeout=5
        )
        source = await auth.token_source()

        assert source.current.access_token == "exchanged_access_token"

    @pytest.mark.asyncio
    async def test_refreshed_token_is_saved(self, tmp_path: Path, auth_config, expired_token, mock_exchanger) -> None:
        """Test refreshed tokens are written back to storage."""
        storage = FileStore(tmp_path / "oauth.json")
        storage.write(expired_token)

        auth = DesktopAuth(auth_config, storage=storage, exchanger=mock_exchanger)
        source = await auth.token_source()
        token = await source.token()

        assert token.access_token == "refreshed_access_token"
        assert storage.read().access_token == "refreshed_access_token"


class TestDesktopAuth:
    """Tests for the remaining DesktopAuth helpers."""

    def test_logout(self, tmp_path: Path, auth_config, valid_token) -> None:
        """Test logout deletes the cache."""
        storage = FileStore(tmp_path / "oauth.json")
        storage.write(valid_token)
        auth = DesktopAuth(auth_config, storage=storage)

        assert auth.logout() is True
        assert auth.cached_token() is None
        assert auth.logout() is False

    def test_logout_without_delete(self, auth_config) -> None:
        """Test logout with a storage that cannot delete."""
        storage = MagicMock(spec=["read", "write"])
        assert DesktopAuth(auth_config, storage=storage).logout() is False

    def test_default_exchanger(self, auth_config) -> None:
        """Test an HTTP exchanger is created by default."""
        assert isinstance(DesktopAuth(auth_config).exchanger, HttpTokenExchanger)

    @pytest.mark.asyncio
    async def test_authenticate_failure_saves_nothing(self, auth_config) -> None:
        """Test a failed flow leaves storage untouched."""
        storage = MagicMock()
        auth = DesktopAuth(auth_config, storage=storage, present=lambda url: None)

        with patch("deskauth.oauth.manager.InteractiveFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(side_effect=RuntimeError("boom"))
            with pytest.raises(RuntimeError):
                await auth.authenticate()

        storage.write.assert_not_called()


class TestDescribeToken:
    """Tests for describe_token and its formatting."""

    def test_describe_token_has_no_secrets(self, valid_token: Token) -> None:
        """Test token metadata omits the token values."""
        info = describe_token(valid_token)

        assert info["has_refresh_token"] is True
        assert info["is_expired"] is False
        assert info["scope"] == "read write"
        assert "cached_access_token" not in str(info)
        assert "cached_refresh_token" not in str(info)

    def test_describe_token_without_expiry(self) -> None:
        """Test tokens without expiry."""
        info = describe_token(Token(access_token="a"))
        assert info["expires_at"] is None
        assert info["expires_in_human"] is None

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (-5, "Expired"),
            (30, "30 seconds"),
            (60, "1 minute"),
            (45 * 60, "45 minutes"),
            (2 * 3600, "2 hours"),
            (3 * 86400, "3 days"),
        ],
    )
    def test_format_timedelta(self, seconds: int, expected: str) -> None:
        """Test human-readable durations."""
        assert _format_timedelta(timedelta(seconds=seconds)) == expected
