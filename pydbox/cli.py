"""CLI interface for the Dropbox command-line client."""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional

import click

from .cli_progress import TransferProgressDisplay
from .config import CredentialStore
from .exceptions import DboxConfigError, DboxError
from .formatting import (
    ListingFormat,
    format_entries,
    format_entries_long,
    format_entry_long,
    format_time,
    prefix_length,
)
from .models import Link
from .output import OutputFormatter
from .registry import HELP_COMMAND, DboxGroup, DboxUsageError
from .session import Session
from .storage import THUMBNAIL_FORMATS, THUMBNAIL_SIZES, StorageClient
from .transfers import TransferMode, TransferOrchestrator, TransferRequest
from .utils import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_LONGPOLL_TIMEOUT,
    DEFAULT_REVISION_LIMIT,
    REMOTE_ROOT,
    clean_remote_path,
)

logger = logging.getLogger(__name__)


def _session(ctx: Any) -> Session:
    return ctx.obj


def _client(ctx: Any) -> StorageClient:
    """Get the authenticated client, exiting with status 1 on failure."""
    session = _session(ctx)
    try:
        return session.client
    except DboxError as e:
        session.out.error(str(e))
        ctx.exit(1)


def _require_count(ctx: Any, args: Sequence[str], count: int, message: str) -> None:
    if len(args) != count:
        raise DboxUsageError(message, ctx=ctx)


def _require_some(ctx: Any, args: Sequence[str], message: str) -> None:
    if not args:
        raise DboxUsageError(message, ctx=ctx)


def _link_message(path: str, link: Link) -> str:
    message = f"{path} is now available using {link.url}"
    if link.expires is not None:
        message += f", this link expires on {format_time(link.expires)}"
    return message


def _run_transfer(ctx: Any, request: TransferRequest, upload: bool) -> None:
    """Validate and run one transfer, printing the destination on success."""
    session = _session(ctx)
    out = session.out

    try:
        if upload:
            request.validate_upload()
        else:
            request.validate_download()
    except DboxConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    orchestrator = TransferOrchestrator(_client(ctx), session.credentials)
    label = f"{'Uploading' if upload else 'Downloading'} {Path(request.source).name}"

    try:
        with TransferProgressDisplay(label, enabled=session.show_progress) as progress:
            if upload:
                orchestrator.upload(request, progress_callback=progress.update)
            else:
                orchestrator.download(request, progress_callback=progress.update)
    except KeyboardInterrupt:
        out.warning("Transfer cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except DboxError as e:
        out.item_error(request.source, e)
        ctx.exit(1)

    out.echo(request.destination)


@click.group(
    cls=DboxGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Credentials file (default: $DBOX_CONFIG or ~/.dbox)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@click.version_option(package_name="pydbox")
@click.pass_context
def main(ctx: Any, config_path: Optional[Path], verbose: bool, no_progress: bool) -> None:
    """dbox - command-line client for Dropbox."""
    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pydbox").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    if ctx.invoked_subcommand is None:
        ctx.command.exit_with_usage(ctx)

    session = Session.open(
        CredentialStore(config_path),
        OutputFormatter(),
        show_progress=not no_progress,
    )
    ctx.obj = session
    # Runs on every exit path, including ctx.exit() and errors
    ctx.call_on_close(session.close)


@main.command(usage_hint="[-r] from_file to_file")
@click.option(
    "-r", "from_ref", is_flag=True, help="From is a reference obtained by copyref."
)
@click.argument("paths", nargs=-1)
@click.pass_context
def copy(ctx: Any, from_ref: bool, paths: tuple[str, ...]) -> None:
    """Copy file or directory."""
    _require_count(
        ctx, paths, 2, "exactly two parameters needed for copy (from path and to path)"
    )
    out = _session(ctx).out
    client = _client(ctx)

    try:
        if from_ref:
            entry = client.copy_from_ref(paths[0], paths[1])
        else:
            entry = client.copy(paths[0], paths[1])
    except DboxError as e:
        out.item_error(paths[0], e)
        ctx.exit(1)
    out.echo(entry.path)


@main.command(usage_hint="file [files...]")
@click.argument("files", nargs=-1)
@click.pass_context
def copyref(ctx: Any, files: tuple[str, ...]) -> None:
    """Get a copy reference of a file."""
    _require_some(ctx, files, "at least one file needed for copyref")
    out = _session(ctx).out
    client = _client(ctx)

    for file in files:
        try:
            ref = client.copy_ref(file)
        except DboxError as e:
            out.item_error(file, e)
            continue
        line = f"{file}: ref: {ref.ref}"
        if ref.expires is not None:
            line += f" expires on {format_time(ref.expires)}"
        out.echo(line)


@main.command(usage_hint="[-aes] [-c chunksize] [-k] [-r rev] file destination")
@click.option(
    "-aes", "--aes", "aes", is_flag=True, help="Crypt file with AES before sending it."
)
@click.option(
    "-c",
    "chunk_size",
    type=click.IntRange(min=1),
    default=DEFAULT_CHUNK_SIZE,
    show_default=True,
    help="Size of the chunks in bytes.",
)
@click.option("-k", "keep", is_flag=True, help="Do not overwrite if exists.")
@click.option("-r", "revision", default=None, help="Revision of the file overwritten.")
@click.argument("files", nargs=-1)
@click.pass_context
def cput(
    ctx: Any,
    aes: bool,
    chunk_size: int,
    keep: bool,
    revision: Optional[str],
    files: tuple[str, ...],
) -> None:
    """Upload a file in chunks.

    Large files are sent through an upload session, one chunk per request.
    """
    _require_count(
        ctx,
        files,
        2,
        "exactly two parameters needed for cput (source and destination)",
    )
    request = TransferRequest(
        source=files[0],
        destination=files[1],
        mode=TransferMode.ENCRYPTED if aes else TransferMode.PLAIN,
        chunk_size=chunk_size,
        overwrite=not keep,
        revision=revision,
    )
    _run_transfer(ctx, request, upload=True)


@main.command(usage_hint="[-c cursor] [-p path_prefix]")
@click.option("-c", "cursor", default="", help="Cursor of the current state.")
@click.option("-p", "prefix", default="", help="Path prefix for deltas.")
@click.pass_context
def delta(ctx: Any, cursor: str, prefix: str) -> None:
    """Get modifications."""
    out = _session(ctx).out
    client = _client(ctx)

    try:
        page = client.get_delta(cursor, prefix)
    except DboxError as e:
        out.error(str(e))
        ctx.exit(1)

    for change in page.entries:
        if change.entry is None:
            out.echo(f"{change.path}: deleted")
        else:
            out.echo(format_entry_long(change.entry))
    out.echo(f"cursor: {page.cursor}")
    if page.has_more:
        out.info(f"More changes available, run delta -c {page.cursor}")


@main.command(usage_hint="file [files...]")
@click.argument("files", nargs=-1)
@click.pass_context
def delete(ctx: Any, files: tuple[str, ...]) -> None:
    """Remove file or directory (Warning this remove is recursive)."""
    _require_some(ctx, files, "at least one file needed for delete")
    out = _session(ctx).out
    client = _client(ctx)

    for file in files:
        try:
            entry = client.delete(file)
        except DboxError as e:
            out.item_error(file, e)
            continue
        out.echo(entry.path)


@main.command(usage_hint="[-aes] [-c] [-r rev] file destination")
@click.option(
    "-aes", "--aes", "aes", is_flag=True, help="Decrypt file with AES after receiving it."
)
@click.option("-c", "resume", is_flag=True, help="Resume download.")
@click.option(
    "-r", "revision", default=None, help="Download the file at the specified revision."
)
@click.argument("files", nargs=-1)
@click.pass_context
def get(
    ctx: Any,
    aes: bool,
    resume: bool,
    revision: Optional[str],
    files: tuple[str, ...],
) -> None:
    """Download a file."""
    _require_count(
        ctx,
        files,
        2,
        "exactly two parameters needed for get (source and destination)",
    )
    request = TransferRequest(
        source=files[0],
        destination=files[1],
        mode=TransferMode.ENCRYPTED if aes else TransferMode.PLAIN,
        resume=resume,
        revision=revision,
    )
    _run_transfer(ctx, request, upload=False)


@main.command("list", usage_hint="[-a] [-d] [-l] [files...]")
@click.option("-a", "show_deleted", is_flag=True, help="Show deleted entries.")
@click.option(
    "-d", "no_children", is_flag=True, help="Do not show children for a directory."
)
@click.option("-l", "long_format", is_flag=True, help="Display long format.")
@click.argument("files", nargs=-1)
@click.pass_context
def list_(
    ctx: Any,
    show_deleted: bool,
    no_children: bool,
    long_format: bool,
    files: tuple[str, ...],
) -> None:
    """List files from directories.

    Each argument is listed with its contents, one level deep and relative
    to the directory. Without arguments the root directory is listed.
    """
    out = _session(ctx).out
    listing_format = ListingFormat.LONG if long_format else ListingFormat.SHORT
    paths = [clean_remote_path(file) for file in files] or [REMOTE_ROOT]
    client = _client(ctx)

    for index, path in enumerate(paths):
        if index > 0:
            out.echo()
        try:
            entry = client.metadata(
                path, include_children=not no_children, include_deleted=show_deleted
            )
        except DboxError as e:
            out.item_error(path, e)
            continue

        out.lines(format_entries([entry], 0, listing_format))
        if entry.is_dir and entry.children:
            out.echo()
            out.lines(
                format_entries(entry.children, prefix_length(entry.path), listing_format)
            )


@main.command(usage_hint="[-t timeout] cursor")
@click.option(
    "-t",
    "timeout",
    type=click.IntRange(30, 480),
    default=DEFAULT_LONGPOLL_TIMEOUT,
    show_default=True,
    help="Timeout in seconds.",
)
@click.argument("cursor", nargs=-1)
@click.pass_context
def ldelta(ctx: Any, timeout: int, cursor: tuple[str, ...]) -> None:
    """Get modifications with timeout."""
    _require_count(ctx, cursor, 1, "exactly one parameter needed for ldelta (cursor)")
    out = _session(ctx).out
    client = _client(ctx)

    try:
        poll = client.get_delta_longpoll(cursor[0], timeout)
    except DboxError as e:
        out.error(str(e))
        ctx.exit(1)

    if poll.changes:
        out.echo(f"You may now call delta with cursor {cursor[0]}")
    else:
        out.echo("No changes")
    if poll.backoff:
        out.info(f"Wait {poll.backoff} seconds before polling again")


@main.command(usage_hint="file [files...]")
@click.argument("files", nargs=-1)
@click.pass_context
def media(ctx: Any, files: tuple[str, ...]) -> None:
    """Shares files with direct access."""
    _require_some(ctx, files, "at least one file needed for media")
    out = _session(ctx).out
    client = _client(ctx)

    for file in files:
        try:
            link = client.get_media_link(file)
        except DboxError as e:
            out.item_error(file, e)
            continue
        out.echo(_link_message(file, link))


@main.command(usage_hint="directory [directories...]")
@click.argument("directories", nargs=-1)
@click.pass_context
def mkdir(ctx: Any, directories: tuple[str, ...]) -> None:
    """Create directories."""
    _require_some(ctx, directories, "at least one directory needed for mkdir")
    out = _session(ctx).out
    client = _client(ctx)

    for directory in directories:
        try:
            entry = client.create_folder(directory)
        except DboxError as e:
            out.item_error(directory, e)
            continue
        out.echo(entry.path)


@main.command(usage_hint="from_file to_file")
@click.argument("paths", nargs=-1)
@click.pass_context
def move(ctx: Any, paths: tuple[str, ...]) -> None:
    """Move file or directory."""
    _require_count(
        ctx, paths, 2, "exactly two parameters needed for move (from path and to path)"
    )
    out = _session(ctx).out
    client = _client(ctx)

    try:
        entry = client.move(paths[0], paths[1])
    except DboxError as e:
        out.item_error(paths[0], e)
        ctx.exit(1)
    out.echo(entry.path)


@main.command(usage_hint="[-aes] [-k] [-r rev] file destination")
@click.option(
    "-aes", "--aes", "aes", is_flag=True, help="Crypt file with AES before sending it."
)
@click.option("-k", "keep", is_flag=True, help="Do not overwrite if exists.")
@click.option("-r", "revision", default=None, help="Revision of the file overwritten.")
@click.argument("files", nargs=-1)
@click.pass_context
def put(
    ctx: Any,
    aes: bool,
    keep: bool,
    revision: Optional[str],
    files: tuple[str, ...],
) -> None:
    """Upload a file."""
    _require_count(
        ctx,
        files,
        2,
        "exactly two parameters needed for put (source and destination)",
    )
    request = TransferRequest(
        source=files[0],
        destination=files[1],
        mode=TransferMode.ENCRYPTED if aes else TransferMode.PLAIN,
        overwrite=not keep,
        revision=revision,
    )
    _run_transfer(ctx, request, upload=True)


@main.command(usage_hint="path revision")
@click.argument("params", nargs=-1)
@click.pass_context
def restore(ctx: Any, params: tuple[str, ...]) -> None:
    """Restore a file to a previous revision."""
    _require_count(
        ctx, params, 2, "exactly two parameters needed for restore (path and revision)"
    )
    out = _session(ctx).out
    client = _client(ctx)

    try:
        entry = client.restore(params[0], params[1])
    except DboxError as e:
        out.item_error(params[0], e)
        ctx.exit(1)
    out.echo(f"{entry.path} restored to revision {entry.revision}")


@main.command(usage_hint="[-l limit] file [files...]")
@click.option(
    "-l",
    "limit",
    type=click.IntRange(1, 100),
    default=DEFAULT_REVISION_LIMIT,
    show_default=True,
    help="Maximum number of revisions.",
)
@click.argument("files", nargs=-1)
@click.pass_context
def revisions(ctx: Any, limit: int, files: tuple[str, ...]) -> None:
    """Get revisions of files."""
    _require_some(ctx, files, "at least one file needed for revisions")
    out = _session(ctx).out
    client = _client(ctx)

    for index, file in enumerate(files):
        if index > 0:
            out.echo()
        try:
            entries = client.list_revisions(file, limit)
        except DboxError as e:
            out.item_error(file, e)
            continue
        out.lines(format_entries_long(entries))


@main.command(usage_hint='[-a] [-l] [-m limit] path "query words"')
@click.option("-a", "show_deleted", is_flag=True, help="Show deleted entries.")
@click.option("-l", "long_format", is_flag=True, help="Display long format.")
@click.option(
    "-m",
    "limit",
    type=click.IntRange(min=0),
    default=0,
    help="Maximum number of entries (0 for no limit).",
)
@click.argument("params", nargs=-1)
@click.pass_context
def search(
    ctx: Any,
    show_deleted: bool,
    long_format: bool,
    limit: int,
    params: tuple[str, ...],
) -> None:
    """Search files."""
    _require_count(
        ctx, params, 2, "exactly two parameters needed for search (path and query)"
    )
    out = _session(ctx).out
    listing_format = ListingFormat.LONG if long_format else ListingFormat.SHORT
    directory = clean_remote_path(params[0])
    client = _client(ctx)

    try:
        entries = client.search(directory, params[1], limit, show_deleted)
    except DboxError as e:
        out.item_error(directory, e)
        ctx.exit(1)

    out.echo(f"{directory}:")
    out.lines(format_entries(entries, prefix_length(directory), listing_format))


@main.command(usage_hint="[-o|-s] file [files...]")
@click.option(
    "-o/-s",
    "original",
    default=True,
    show_default=True,
    help="Get the original URL (-s for a shortened one).",
)
@click.argument("files", nargs=-1)
@click.pass_context
def shares(ctx: Any, original: bool, files: tuple[str, ...]) -> None:
    """Share files."""
    _require_some(ctx, files, "at least one file needed for shares")
    out = _session(ctx).out
    client = _client(ctx)

    for file in files:
        try:
            link = client.get_share_link(file, short_url=not original)
        except DboxError as e:
            out.item_error(file, e)
            continue
        out.echo(_link_message(file, link))


@main.command(usage_hint="[-s size] [-f format] file destination")
@click.option(
    "-s",
    "size",
    type=click.Choice(list(THUMBNAIL_SIZES)),
    default="s",
    show_default=True,
    help="Size of the thumbnail.",
)
@click.option(
    "-f",
    "fmt",
    type=click.Choice(THUMBNAIL_FORMATS),
    default="png",
    show_default=True,
    help="Format of the thumbnail.",
)
@click.argument("files", nargs=-1)
@click.pass_context
def thumbnails(ctx: Any, size: str, fmt: str, files: tuple[str, ...]) -> None:
    """Download a thumbnail."""
    _require_count(
        ctx,
        files,
        2,
        "exactly two parameters needed for thumbnails (source and destination)",
    )
    session = _session(ctx)
    orchestrator = TransferOrchestrator(_client(ctx), session.credentials)

    try:
        orchestrator.download_thumbnail(files[0], files[1], fmt, size)
    except DboxError as e:
        session.out.item_error(files[0], e)
        ctx.exit(1)
    session.out.echo(files[1])


@main.command(HELP_COMMAND)
@click.pass_context
def help_(ctx: Any) -> None:
    """Show this help message"""
    group_ctx = ctx.parent
    _session(ctx).out.lines(group_ctx.command.format_command_list(group_ctx))


if __name__ == "__main__":
    main()
