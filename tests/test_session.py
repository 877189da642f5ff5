"""Unit tests for the command session and authentication."""

from unittest.mock import Mock, patch

import pytest
import requests

from pydbox.auth import run_oauth_flow
from pydbox.config import CredentialStore, Credentials
from pydbox.exceptions import DboxAuthenticationError, DboxConfigError
from pydbox.session import Session


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "dbox.json")


@pytest.fixture
def out():
    return Mock()


class TestSession:
    """Tests for Session."""

    def test_open_without_file(self, store, out):
        session = Session.open(store, out)

        assert session.credentials.token == ""
        assert session.credentials.dirty is False

    def test_open_loads_credentials(self, store, out):
        store.save(Credentials(token="tok", key=b"k" * 32))

        session = Session.open(store, out)

        assert session.credentials.token == "tok"
        assert session.credentials.key == b"k" * 32

    @patch("pydbox.session.run_oauth_flow")
    @patch("pydbox.session.DropboxStorageClient")
    def test_client_created_once(self, mock_client_class, mock_flow, store, out):
        """Test the client is built lazily and reused."""
        session = Session(store, Credentials(token="tok"), out)
        mock_client_class.assert_not_called()

        first = session.client
        second = session.client

        assert first is second
        mock_client_class.assert_called_once_with("tok")
        mock_flow.assert_not_called()

    @patch("pydbox.session.run_oauth_flow", return_value="fresh")
    @patch("pydbox.session.DropboxStorageClient")
    def test_missing_token_authenticates(self, mock_client_class, mock_flow, store, out):
        session = Session(store, Credentials(), out)

        session.client

        assert session.credentials.token == "fresh"
        assert session.credentials.dirty is True

    @patch("pydbox.session.DropboxStorageClient")
    def test_close_saves_dirty_credentials(self, mock_client_class, store, out):
        credentials = Credentials(token="tok")
        session = Session(store, credentials, out)
        session.client
        credentials.mark_dirty()

        session.close()

        mock_client_class.return_value.close.assert_called_once()
        assert store.load().token == "tok"
        assert credentials.dirty is False

    def test_close_skips_clean_credentials(self, store, out):
        session = Session(store, Credentials(token="tok"), out)

        session.close()

        assert not store.path.exists()

    def test_close_reports_save_failure(self, store, out):
        credentials = Credentials(token="tok", dirty=True)
        session = Session(store, credentials, out)

        with patch.object(store, "save", side_effect=DboxConfigError("read-only")):
            session.close()

        out.error.assert_called_once_with("read-only")


class TestOAuthFlow:
    """Tests for run_oauth_flow."""

    def test_requires_app_credentials(self):
        with pytest.raises(DboxConfigError, match="DBOX_APP_KEY"):
            run_oauth_flow(None, "secret")

    @patch("pydbox.auth.click.prompt", return_value=" code123 ")
    @patch("pydbox.auth.dropbox.DropboxOAuth2FlowNoRedirect")
    def test_returns_access_token(self, mock_flow_class, mock_prompt):
        flow = mock_flow_class.return_value
        flow.start.return_value = "https://www.dropbox.com/oauth2/authorize?x"
        flow.finish.return_value = Mock(access_token="token123", account_id="dbid:1")

        assert run_oauth_flow("key", "secret") == "token123"
        mock_flow_class.assert_called_once_with("key", "secret")
        flow.finish.assert_called_once_with("code123")

    @patch("pydbox.auth.click.prompt", return_value="bad")
    @patch("pydbox.auth.dropbox.DropboxOAuth2FlowNoRedirect")
    def test_rejected_code(self, mock_flow_class, mock_prompt):
        mock_flow_class.return_value.finish.side_effect = requests.exceptions.HTTPError(
            "400 Client Error: invalid_grant"
        )

        with pytest.raises(DboxAuthenticationError, match="invalid_grant"):
            run_oauth_flow("key", "secret")

    @patch("pydbox.auth.click.prompt", return_value="code")
    @patch("pydbox.auth.dropbox.DropboxOAuth2FlowNoRedirect")
    def test_unexpected_errors_propagate(self, mock_flow_class, mock_prompt):
        """Test only SDK and transport failures become authentication errors."""
        mock_flow_class.return_value.finish.side_effect = KeyError("access_token")

        with pytest.raises(KeyError):
            run_oauth_flow("key", "secret")
