import typer, getpass, mimetypes, pathlib

from .config import load_settings
from .directory import FolderDirectory
from .errors import (
    AccessDenied,
    CipherdirError,
    IncorrectPassword,
    IntegrityInconsistency,
    MalformedEnvelope,
    NotFound,
)
from .index import INDEX_KEY
from .logging import configure_logging, get_logger
from .session import Session, SORT_KEYS, sort_entries

app = typer.Typer(no_args_is_help=True)
LOG = get_logger()


@app.callback()
def main():
    """Encrypted, content-addressed file storage inside a plain folder."""
    settings = load_settings()
    configure_logging(settings.debug, settings.log_path)


def _log_error(event: str, message: str, **details):
    LOG.error(event, message=message, **details)


def ask_pw(prompt="Password: ") -> str:
    """Prompt for the folder password without echoing it."""
    return getpass.getpass(prompt)


def ask_new_password() -> str:
    """Prompt twice for a new password and ensure the entries match."""
    first = ask_pw("New password: ")
    second = ask_pw("Confirm password: ")
    if first != second:
        typer.echo("✖ Passwords did not match. Aborting.")
        raise typer.Exit(1)
    return first


def _bind(folder: str) -> Session:
    session = Session(load_settings().kdf)
    try:
        session.bind_directory(FolderDirectory(pathlib.Path(folder)))
    except (NotFound, AccessDenied) as exc:
        _log_error("bind_failed", message="Cannot use folder", folder=folder, error=str(exc))
        typer.echo(f"✖ Cannot use folder {folder}: {exc}")
        raise typer.Exit(1)
    return session


def _unlock_or_exit(session: Session, password: str) -> bool:
    try:
        return session.unlock(password)
    except IncorrectPassword:
        _log_error("auth_failed", message="Incorrect password", folder=repr(session.directory))
        typer.echo("✖ Incorrect password.")
        raise typer.Exit(1)
    except (AccessDenied, ValueError) as exc:
        _log_error("unlock_failed", message="Failed to load index", folder=repr(session.directory), error=str(exc))
        typer.echo(f"✖ Failed to load index: {exc}")
        raise typer.Exit(1)


def _open(folder: str) -> Session:
    session = _bind(folder)
    created = _unlock_or_exit(session, ask_pw())
    if created:
        typer.echo(f"Initialized empty index in {folder}.")
    return session


@app.command()
def init(folder: str):
    """Create an empty encrypted index in FOLDER (or verify the password of an existing one)."""
    session = _bind(folder)
    exists = session.directory.exists(INDEX_KEY)
    password = ask_pw() if exists else ask_new_password()
    created = _unlock_or_exit(session, password)
    if created:
        typer.echo(f"Initialized empty index in {folder}.")
    else:
        typer.echo(f"Index already present in {folder}; password accepted ({len(session.entries)} files).")


@app.command("ls")
def ls_cmd(
    folder: str,
    search: str = typer.Option("", "--search", "-s", help="Filter by name, type or date"),
    sort: str = typer.Option("date", "--sort", help=f"Sort by one of: {', '.join(SORT_KEYS)}"),
    reverse: bool = typer.Option(False, "--reverse", help="Reverse the sort order"),
):
    """List stored files with type, size, date and content id."""
    if sort not in SORT_KEYS:
        raise typer.BadParameter(f"--sort must be one of {', '.join(SORT_KEYS)}")
    session = _open(folder)
    entries = sort_entries(session.search(search), sort, reverse)
    if not entries:
        typer.echo("(empty)")
        return
    for e in entries:
        ts = e.created.strftime("%H:%M:%S %d.%m.%Y")
        typer.echo(f"{e.name}\t{e.media_type}\t{e.size} bytes\tadded={ts}\tid={e.content_id}")


@app.command()
def add(
    folder: str,
    paths: list[str] = typer.Argument(..., metavar="PATH", help="One or more files to add"),
    media_type: str = typer.Option(None, "--type", help="Media type (guessed from the name when omitted)"),
):
    """Encrypt and store one or more files."""
    session = _open(folder)
    errors = 0
    for raw_path in paths:
        p = pathlib.Path(raw_path)
        if not p.is_file():
            _log_error("add_not_a_file", message="Not a regular file", folder=folder, path=str(p))
            typer.echo(f"✖ Add failed for {p}: not a file")
            errors += 1
            continue
        guessed = media_type or mimetypes.guess_type(p.name)[0]
        try:
            entry = session.add_file(p.name, guessed, p.read_bytes())
        except AccessDenied as exc:
            _log_error("add_denied", message="Write access denied", folder=folder, path=str(p), error=str(exc))
            typer.echo(f"✖ Write access denied: {exc}")
            raise typer.Exit(1)
        except (OSError, ValueError) as exc:
            _log_error("add_failed", message="Add failed", folder=folder, path=str(p), error=str(exc))
            typer.echo(f"✖ Add failed for {p}: {exc}")
            errors += 1
            continue
        typer.echo(f"✔ Added {p} as {entry.name} id={entry.content_id}")
    if errors:
        raise typer.Exit(1)


@app.command()
def get(
    folder: str,
    content_id: str = typer.Argument(..., metavar="ID"),
    out: str = typer.Option("-", "--out", help="Destination path, '-' for stdout"),
):
    """Decrypt one stored file."""
    session = _open(folder)
    try:
        data = session.read_file(content_id)
    except NotFound:
        _log_error("get_not_found", message="Requested file not found", folder=folder, content_id=content_id)
        typer.echo(f"✖ No file with id {content_id}")
        raise typer.Exit(1)
    except (AccessDenied, IntegrityInconsistency, IncorrectPassword, MalformedEnvelope) as exc:
        _log_error("get_failed", message="Failed to retrieve file", folder=folder, content_id=content_id, error=str(exc))
        typer.echo(f"✖ Failed to retrieve {content_id}: {exc}")
        raise typer.Exit(1)
    if out == "-":
        typer.echo(data, nl=False)
    else:
        pathlib.Path(out).write_bytes(data)
        typer.echo(f"✔ Retrieved {content_id} -> {out}")


@app.command()
def rm(
    folder: str,
    content_ids: list[str] = typer.Argument(..., metavar="ID", help="One or more content ids to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete files from the index and remove their blobs."""
    session = _open(folder)
    if not yes and not typer.confirm(f"Delete {len(content_ids)} file(s) permanently?", default=False):
        typer.echo("↷ Aborted.")
        raise typer.Exit(0)
    errors = 0
    for content_id in content_ids:
        try:
            entry = session.delete_file(content_id)
        except NotFound:
            _log_error("rm_not_found", message="Attempted to remove missing entry", folder=folder, content_id=content_id)
            typer.echo(f"✖ No file with id {content_id}")
            errors += 1
            continue
        except CipherdirError as exc:
            _log_error("rm_failed", message="Failed to remove entry", folder=folder, content_id=content_id, error=str(exc))
            typer.echo(f"✖ Failed to remove {content_id}: {exc}")
            errors += 1
            continue
        typer.echo(f"✔ Removed {entry.name}")
    if errors:
        raise typer.Exit(1)


@app.command()
def check(folder: str):
    """Report dangling index entries and orphaned blobs."""
    session = _open(folder)
    report = session.check()
    typer.echo(f"✔ Index decryptable, {len(session.entries)} entries")
    if report.dangling:
        typer.echo(f"✖ Missing blobs: {', '.join(report.dangling)}")
    else:
        typer.echo("✔ All blobs present")
    if report.orphans:
        typer.echo(f"WARNING: {len(report.orphans)} orphaned blobs (run `gc` to remove)")
    else:
        typer.echo("✔ No orphaned blobs")
    if not report.ok:
        raise typer.Exit(1)


@app.command()
def gc(folder: str):
    """Remove orphaned blobs that no index entry references."""
    session = _open(folder)
    removed = session.collect_garbage()
    for content_id in removed:
        typer.echo(f"✔ Removed orphan {content_id}")
    typer.echo(f"{len(removed)} orphaned blob(s) removed")


if __name__ == "__main__":
    app()
