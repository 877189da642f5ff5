"""Unit tests for the Dropbox storage client."""

import io
from datetime import datetime
from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest
import requests
from dropbox import files, sharing
from dropbox.exceptions import ApiError, AuthError

from pydbox.exceptions import (
    DboxAPIError,
    DboxAuthenticationError,
    DboxDownloadError,
    DboxNetworkError,
    DboxNotFoundError,
)
from pydbox.storage import DropboxStorageClient, _sdk_path, _write_mode

MODIFIED = datetime(2024, 3, 1, 12, 0, 0)


def file_md(path: str, size: int = 10, rev: str = "015f2a3b4c5d6") -> files.FileMetadata:
    return files.FileMetadata(
        name=path.rsplit("/", 1)[-1],
        id="id:" + path,
        client_modified=MODIFIED,
        server_modified=MODIFIED,
        rev=rev,
        size=size,
        path_lower=path.lower(),
        path_display=path,
    )


def folder_md(path: str) -> files.FolderMetadata:
    return files.FolderMetadata(
        name=path.rsplit("/", 1)[-1],
        id="id:" + path,
        path_lower=path.lower(),
        path_display=path,
    )


@pytest.fixture
def dbx():
    """Mock Dropbox SDK client."""
    return Mock()


@pytest.fixture
def client(dbx):
    return DropboxStorageClient("token", dbx=dbx)


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        "path,expected",
        [("/", ""), ("", ""), ("docs/", "/docs"), ("/a//b/../c", "/a/c")],
    )
    def test_sdk_path(self, path, expected):
        assert _sdk_path(path) == expected

    def test_write_mode_overwrite(self):
        assert _write_mode(True, None) == (files.WriteMode.overwrite, False)

    def test_write_mode_keep(self):
        """Test keeping an existing file renames the upload instead."""
        assert _write_mode(False, None) == (files.WriteMode.add, True)

    def test_write_mode_revision(self):
        mode, autorename = _write_mode(True, "015f2a3b4c5d6")
        assert mode.is_update()
        assert mode.get_update() == "015f2a3b4c5d6"
        assert autorename is False


class TestErrorTranslation:
    """Tests for SDK error translation."""

    def test_not_found(self, client, dbx):
        error = files.DeleteError.path_lookup(files.LookupError.not_found)
        dbx.files_delete_v2.side_effect = ApiError("req", error, None, None)

        with pytest.raises(DboxNotFoundError, match="not found"):
            client.delete("/missing")

    def test_other_api_error(self, client, dbx):
        error = files.DeleteError.too_many_write_operations
        dbx.files_delete_v2.side_effect = ApiError("req", error, None, None)

        with pytest.raises(DboxAPIError) as exc_info:
            client.delete("/busy")

        assert not isinstance(exc_info.value, DboxNotFoundError)

    def test_user_message_preferred(self, client, dbx):
        error = files.DeleteError.too_many_write_operations
        dbx.files_delete_v2.side_effect = ApiError("req", error, "Try later", "en")

        with pytest.raises(DboxAPIError, match="Try later"):
            client.delete("/busy")

    def test_auth_error(self, client, dbx):
        dbx.files_create_folder_v2.side_effect = AuthError("req", "invalid_access_token")

        with pytest.raises(DboxAuthenticationError):
            client.create_folder("/new")

    def test_network_error(self, client, dbx):
        dbx.files_move_v2.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(DboxNetworkError):
            client.move("/a", "/b")


class TestMetadata:
    """Tests for metadata lookups."""

    def test_root_children_sorted(self, client, dbx):
        """Test the root lists its children sorted case-insensitively."""
        dbx.files_list_folder.return_value = files.ListFolderResult(
            entries=[file_md("/b.txt"), folder_md("/Apps"), file_md("/a.txt")],
            cursor="c1",
            has_more=False,
        )

        entry = client.metadata("/")

        assert entry.path == "/"
        assert entry.is_dir
        assert [child.path for child in entry.children] == ["/a.txt", "/Apps", "/b.txt"]
        dbx.files_list_folder.assert_called_once_with("", include_deleted=False)
        dbx.files_get_metadata.assert_not_called()

    def test_folder_pagination(self, client, dbx):
        dbx.files_get_metadata.return_value = folder_md("/Docs")
        dbx.files_list_folder.return_value = files.ListFolderResult(
            entries=[file_md("/Docs/one")], cursor="c1", has_more=True
        )
        dbx.files_list_folder_continue.return_value = files.ListFolderResult(
            entries=[file_md("/Docs/two")], cursor="c2", has_more=False
        )

        entry = client.metadata("docs", include_deleted=True)

        assert [child.name for child in entry.children] == ["one", "two"]
        dbx.files_get_metadata.assert_called_once_with("/docs", include_deleted=True)
        dbx.files_list_folder_continue.assert_called_once_with("c1")

    def test_file_entry(self, client, dbx):
        dbx.files_get_metadata.return_value = file_md("/a.txt", size=2048)

        entry = client.metadata("/a.txt")

        assert entry.byte_size == 2048
        assert entry.revision == "015f2a3b4c5d6"
        assert entry.modified.tzinfo is not None
        assert not entry.is_dir
        dbx.files_list_folder.assert_not_called()

    def test_revision_lookup(self, client, dbx):
        dbx.files_get_metadata.return_value = file_md("/a.txt")

        client.metadata("/a.txt", include_children=False, revision="015f2a3b4c5d6")

        assert dbx.files_get_metadata.call_args[0][0] == "rev:015f2a3b4c5d6"


class TestUpload:
    """Tests for uploads."""

    def test_upload_whole(self, client, dbx):
        dbx.files_upload.return_value = file_md("/dest.txt", size=5)
        progress = Mock()

        entry = client.upload_whole(
            io.BytesIO(b"hello"), "dest.txt", overwrite=False, progress_callback=progress
        )

        assert entry.path == "/dest.txt"
        dbx.files_upload.assert_called_once_with(
            b"hello", "/dest.txt", mode=files.WriteMode.add, autorename=True
        )
        progress.assert_called_once_with(5, 5)

    def test_upload_chunked(self, client, dbx):
        """Test each chunk is sent in its own request."""
        dbx.files_upload_session_start.return_value = files.UploadSessionStartResult(
            session_id="sid"
        )
        dbx.files_upload_session_finish.return_value = file_md("/big.bin", size=25)
        progress = Mock()

        client.upload_chunked(
            io.BytesIO(b"x" * 25), 10, "/big.bin", progress_callback=progress, total=25
        )

        dbx.files_upload_session_start.assert_called_once_with(b"x" * 10)
        appended = [c[0][0] for c in dbx.files_upload_session_append_v2.call_args_list]
        assert appended == [b"x" * 10, b"x" * 5]
        data, cursor, commit = dbx.files_upload_session_finish.call_args[0]
        assert data == b""
        assert cursor.session_id == "sid"
        assert cursor.offset == 25
        assert commit.path == "/big.bin"
        assert [c[0] for c in progress.call_args_list] == [(10, 25), (20, 25), (25, 25)]

    def test_upload_chunked_small_file(self, client, dbx):
        dbx.files_upload_session_start.return_value = files.UploadSessionStartResult(
            session_id="sid"
        )
        dbx.files_upload_session_finish.return_value = file_md("/small", size=3)

        client.upload_chunked(io.BytesIO(b"abc"), 10, "/small")

        dbx.files_upload_session_append_v2.assert_not_called()
        assert dbx.files_upload_session_finish.call_args[0][1].offset == 3


class TestDownload:
    """Tests for downloads."""

    def test_download_whole(self, client, dbx):
        response = Mock()
        response.iter_content.return_value = [b"abc", b"", b"def"]
        dbx.files_download.return_value = (file_md("/a.txt", size=6), response)
        dest = io.BytesIO()

        entry = client.download_whole("/a.txt", dest, revision="015f2a3b4c5d6")

        assert dest.getvalue() == b"abcdef"
        assert entry.byte_size == 6
        dbx.files_download.assert_called_once_with("/a.txt", rev="015f2a3b4c5d6")
        response.close.assert_called_once()

    def test_download_resumable(self, client, dbx):
        """Test a resumed download requests the remaining byte range."""
        dbx.files_get_temporary_link.return_value = files.GetTemporaryLinkResult(
            metadata=file_md("/a.txt", size=10), link="https://dl.example/a"
        )
        response = MagicMock()
        response.status_code = 206
        response.iter_bytes.return_value = [b"56789"]
        dest = io.BytesIO(b"01234")
        dest.seek(5)

        with patch("pydbox.storage.httpx.stream") as mock_stream:
            mock_stream.return_value.__enter__.return_value = response
            client.download_resumable("/a.txt", dest, 5, "015f2a3b4c5d6")

        assert dest.getvalue() == b"0123456789"
        dbx.files_get_temporary_link.assert_called_once_with("rev:015f2a3b4c5d6")
        assert mock_stream.call_args[1]["headers"] == {"Range": "bytes=5-"}

    def test_download_resumable_range_ignored(self, client, dbx):
        dbx.files_get_temporary_link.return_value = files.GetTemporaryLinkResult(
            metadata=file_md("/a.txt", size=10), link="https://dl.example/a"
        )
        response = MagicMock()
        response.status_code = 200

        with patch("pydbox.storage.httpx.stream") as mock_stream:
            mock_stream.return_value.__enter__.return_value = response
            with pytest.raises(DboxDownloadError, match="refused"):
                client.download_resumable("/a.txt", io.BytesIO(), 5, "015f2a3b4c5d6")

    def test_download_resumable_network_error(self, client, dbx):
        dbx.files_get_temporary_link.return_value = files.GetTemporaryLinkResult(
            metadata=file_md("/a.txt", size=10), link="https://dl.example/a"
        )

        with patch(
            "pydbox.storage.httpx.stream", side_effect=httpx.ConnectError("refused")
        ):
            with pytest.raises(DboxNetworkError):
                client.download_resumable("/a.txt", io.BytesIO(), 5, "015f2a3b4c5d6")

    def test_thumbnail(self, client, dbx):
        response = Mock()
        response.iter_content.return_value = [b"img"]
        dbx.files_get_thumbnail.return_value = (file_md("/p.jpg"), response)
        dest = io.BytesIO()

        client.get_thumbnail("/p.jpg", dest, fmt="jpeg", size="m")

        assert dest.getvalue() == b"img"
        kwargs = dbx.files_get_thumbnail.call_args[1]
        assert kwargs["format"] == files.ThumbnailFormat.jpeg
        assert kwargs["size"] == files.ThumbnailSize.w128h128


class TestOperations:
    """Tests for the remaining remote operations."""

    def test_copy(self, client, dbx):
        dbx.files_copy_v2.return_value = files.RelocationResult(metadata=file_md("/b"))

        entry = client.copy("a", "b")

        assert entry.path == "/b"
        dbx.files_copy_v2.assert_called_once_with("/a", "/b")

    def test_copy_ref(self, client, dbx):
        dbx.files_copy_reference_get.return_value = files.GetCopyReferenceResult(
            metadata=file_md("/a"), copy_reference="REF", expires=MODIFIED
        )

        ref = client.copy_ref("/a")

        assert ref.ref == "REF"
        assert ref.expires == MODIFIED

    def test_search_marks_deleted(self, client, dbx):
        """Test results of the deleted pass are marked deleted."""
        active = files.SearchV2Result(
            matches=[
                files.SearchMatchV2(metadata=files.MetadataV2.metadata(file_md("/d/x")))
            ],
            has_more=False,
        )
        deleted = files.SearchV2Result(
            matches=[
                files.SearchMatchV2(metadata=files.MetadataV2.metadata(file_md("/d/y")))
            ],
            has_more=False,
        )
        dbx.files_search_v2.side_effect = [active, deleted]

        entries = client.search("/d", "q", include_deleted=True)

        assert [(e.path, e.is_deleted) for e in entries] == [
            ("/d/x", False),
            ("/d/y", True),
        ]
        options = dbx.files_search_v2.call_args_list[0][1]["options"]
        assert options.path == "/d"

    def test_search_limit(self, client, dbx):
        dbx.files_search_v2.return_value = files.SearchV2Result(
            matches=[
                files.SearchMatchV2(metadata=files.MetadataV2.metadata(file_md(f"/f{i}")))
                for i in range(5)
            ],
            has_more=False,
        )

        assert len(client.search("/", "f", limit=2)) == 2

    def test_share_link(self, client, dbx):
        dbx.sharing_create_shared_link.return_value = sharing.PathLinkMetadata(
            url="https://db.tt/x", visibility=sharing.Visibility.public, path="/a"
        )

        link = client.get_share_link("/a", short_url=False)

        assert link.url == "https://db.tt/x"
        dbx.sharing_create_shared_link.assert_called_once_with("/a", short_url=False)

    def test_media_link_expires(self, client, dbx):
        dbx.files_get_temporary_link.return_value = files.GetTemporaryLinkResult(
            metadata=file_md("/a"), link="https://dl.example/a"
        )

        link = client.get_media_link("/a")

        assert link.url == "https://dl.example/a"
        assert link.expires is not None

    def test_delta_initial(self, client, dbx):
        """Test a first delta lists everything below the prefix."""
        dbx.files_list_folder.return_value = files.ListFolderResult(
            entries=[
                files.DeletedMetadata(name="gone", path_lower="/p/gone", path_display="/p/gone"),
                file_md("/p/new"),
            ],
            cursor="c1",
            has_more=True,
        )

        page = client.get_delta(prefix="/p")

        assert page.reset is True
        assert page.has_more is True
        assert page.cursor == "c1"
        assert page.entries[0].entry is None
        assert page.entries[1].entry.path == "/p/new"
        dbx.files_list_folder.assert_called_once_with(
            "/p", recursive=True, include_deleted=True
        )

    def test_delta_continue(self, client, dbx):
        dbx.files_list_folder_continue.return_value = files.ListFolderResult(
            entries=[], cursor="c2", has_more=False
        )

        page = client.get_delta("c1")

        assert page.reset is False
        assert page.cursor == "c2"

    def test_longpoll(self, client, dbx):
        dbx.files_list_folder_longpoll.return_value = files.ListFolderLongpollResult(
            changes=True, backoff=60
        )

        poll = client.get_delta_longpoll("c1", 90)

        assert poll.changes is True
        assert poll.backoff == 60
        dbx.files_list_folder_longpoll.assert_called_once_with("c1", timeout=90)
